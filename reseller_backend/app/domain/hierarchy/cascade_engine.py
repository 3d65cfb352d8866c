"""
Validity Cascade Engine (Domain Logic).

Accounts expire lazily: there is no scheduler. Every time an account is
loaded, check_validity() compares valid_until with the current time and,
the first time it finds the account lapsed, walks down the hierarchy:

    Distributor -> its Resellers -> their Subscribers
    Reseller    -> its Subscribers

Active -> Inactive is the only automatic transition. Reactivation is always
an explicit administrative action and never propagates.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reseller_backend.app.core.clock import utcnow, as_utc
from reseller_backend.app.core.exceptions import ValidationFailedError
from reseller_backend.app.core.token_revocation import revoke_account_tokens, clear_account_token_revocation
from reseller_backend.app.domain.hierarchy.account_store import AccountStore
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import AccountTier, AccountStatus
from reseller_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("reseller.cascade")


@dataclass
class CascadeReport:
    """Outcome of one validity check or manual deactivation."""
    account_id: int
    fired: bool = False
    resellers_inactivated: int = 0
    subscribers_inactivated: int = 0
    inactivated_account_ids: list[int] = field(default_factory=list)


@dataclass
class SweepReport:
    distributors_checked: int = 0
    resellers_checked: int = 0
    accounts_expired: int = 0
    resellers_inactivated: int = 0
    subscribers_inactivated: int = 0


class CascadeEngine:

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def is_lapsed(account: Account, now: datetime) -> bool:
        if account.status != AccountStatus.ACTIVE or account.valid_until is None:
            return False
        return as_utc(account.valid_until) < now

    async def check_validity(self, account: Account, now: Optional[datetime] = None) -> CascadeReport:
        """
        Expire the account if its validity has passed, and cascade.

        Safe to call on every read: once the account is Inactive nothing is
        written. When two requests race, only the one whose conditional
        update flipped the status performs the walk.

        The passed account object is refreshed when anything changed.
        """
        now = now or utcnow()
        report = CascadeReport(account_id=account.id)

        if not self.is_lapsed(account, now):
            return report

        account_id, tier, name = account.id, account.tier, account.name

        try:
            report.fired = await AccountStore.expire_if_lapsed(self.db, account_id, now)
            if report.fired:
                await self._walk(account_id, tier, report)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(account)

        if not report.fired:
            return report

        logger.info(
            "Account %s (%s) expired: %s resellers and %s subscribers inactivated",
            account_id, tier.value, report.resellers_inactivated, report.subscribers_inactivated
        )
        await revoke_account_tokens(report.inactivated_account_ids)
        await log_event(
            self.db,
            action=AuditAction.ACCOUNT_EXPIRED,
            target_account_id=account_id,
            target_name=name,
            metadata={
                "resellers_inactivated": report.resellers_inactivated,
                "subscribers_inactivated": report.subscribers_inactivated
            }
        )
        return report

    async def check_hierarchy(self, account: Account, now: Optional[datetime] = None) -> Account:
        """
        Run check_validity on a reseller's distributor first, then on the account.

        A lapsed distributor that nobody has read yet still takes its
        resellers down before the reseller is judged. Returns the account,
        reloaded when the parent's walk changed it.
        """
        now = now or utcnow()
        if account.tier == AccountTier.RESELLER and account.parent_id is not None:
            account_id = account.id
            distributor = await AccountStore.find_account(self.db, account.parent_id)
            if distributor is not None:
                outcome = await self.check_validity(distributor, now)
                if outcome.fired:
                    account = await AccountStore.get_account(self.db, account_id)
        await self.check_validity(account, now)
        return account

    async def deactivate(self, account: Account, actor: Optional[Account] = None) -> CascadeReport:
        """
        Manually set an account Inactive and run the same walk as an expiry.

        The walk runs even if the account was already Inactive, so
        subordinates left Active by an earlier reactivation are caught.
        """
        if account.tier == AccountTier.ADMIN:
            raise ValidationFailedError("Admin accounts cannot be deactivated")

        account_id, tier, name = account.id, account.tier, account.name
        report = CascadeReport(account_id=account_id)

        try:
            report.fired = await AccountStore.set_status(self.db, account_id, AccountStatus.INACTIVE)
            await self._walk(account_id, tier, report)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(account)

        logger.info(
            "Account %s (%s) deactivated: %s resellers and %s subscribers inactivated",
            account_id, tier.value, report.resellers_inactivated, report.subscribers_inactivated
        )
        await revoke_account_tokens(report.inactivated_account_ids)
        await log_event(
            self.db,
            action=AuditAction.ACCOUNT_DEACTIVATED,
            actor_id=actor.id if actor else None,
            actor_name=actor.name if actor else None,
            target_account_id=account_id,
            target_name=name,
            metadata={
                "resellers_inactivated": report.resellers_inactivated,
                "subscribers_inactivated": report.subscribers_inactivated
            }
        )
        return report

    async def reactivate(
        self,
        account: Account,
        valid_until: Optional[datetime] = None,
        actor: Optional[Account] = None,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Manually set an account Active again. Subordinates stay as they are.

        valid_until must be in the future. Without one, a still-future
        validity is kept and a lapsed one removed, so the account does not
        expire again on its next read.

        Returns:
            True if the account was Inactive before
        """
        now = now or utcnow()
        valid_until = as_utc(valid_until)
        if valid_until is not None and valid_until <= now:
            raise ValidationFailedError("Validity date must be in the future to reactivate an account")

        account_id, name = account.id, account.name
        current = as_utc(account.valid_until)
        clear_lapsed = valid_until is None and current is not None and current <= now

        try:
            changed = await AccountStore.set_status(
                self.db,
                account_id,
                AccountStatus.ACTIVE,
                valid_until=valid_until,
                clear_valid_until=clear_lapsed
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(account)

        if changed:
            logger.info("Account %s reactivated until %s", account_id, valid_until or "no expiry")
            await clear_account_token_revocation(account_id)
            await log_event(
                self.db,
                action=AuditAction.ACCOUNT_REACTIVATED,
                actor_id=actor.id if actor else None,
                actor_name=actor.name if actor else None,
                target_account_id=account_id,
                target_name=name,
                metadata={"valid_until": valid_until.isoformat() if valid_until else None}
            )
        return changed

    async def check_many(self, accounts: list[Account], now: Optional[datetime] = None) -> list[CascadeReport]:
        """check_validity over a listing, with one clock reading."""
        now = now or utcnow()
        return [await self.check_validity(account, now) for account in accounts]

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Force check_validity over every distributor, then every reseller.
        """
        now = now or utcnow()
        report = SweepReport()

        for tier in (AccountTier.DISTRIBUTOR, AccountTier.RESELLER):
            result = await self.db.execute(
                select(Account)
                .where(Account.tier == tier)
                .order_by(Account.id)
                .execution_options(populate_existing=True)
            )
            accounts = list(result.scalars().all())
            if tier == AccountTier.DISTRIBUTOR:
                report.distributors_checked = len(accounts)
            else:
                report.resellers_checked = len(accounts)

            for outcome in await self.check_many(accounts, now):
                if outcome.fired:
                    report.accounts_expired += 1
                report.resellers_inactivated += outcome.resellers_inactivated
                report.subscribers_inactivated += outcome.subscribers_inactivated

        logger.info(
            "Validity sweep: %s accounts expired, %s resellers and %s subscribers inactivated",
            report.accounts_expired, report.resellers_inactivated, report.subscribers_inactivated
        )
        return report

    async def _walk(self, account_id: int, tier: AccountTier, report: CascadeReport):
        """Inactivate everything below an account. Runs inside the caller's transaction."""
        report.inactivated_account_ids.append(account_id)

        if tier == AccountTier.DISTRIBUTOR:
            reseller_ids = await AccountStore.reseller_ids_of(self.db, account_id)
            report.resellers_inactivated = await AccountStore.inactivate_resellers_of(self.db, account_id)
            report.subscribers_inactivated = await AccountStore.inactivate_subscribers_of(self.db, reseller_ids)
            report.inactivated_account_ids.extend(reseller_ids)
        elif tier == AccountTier.RESELLER:
            report.subscribers_inactivated = await AccountStore.inactivate_subscribers_of(self.db, [account_id])
        elif tier == AccountTier.ADMIN:
            pass
        else:
            raise ValueError(f"Unhandled account tier {tier!r}")
