"""
Account Manager (Domain Logic).

Creation, listing, administrative updates and deletion of distributor and
reseller accounts. Every account read goes through the validity check; status
changes go through the cascade engine.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reseller_backend.app.core.clock import utcnow, as_utc
from reseller_backend.app.core.exceptions import ValidationFailedError, InsufficientPermissionsError, ResourceNotFoundError
from reseller_backend.app.core.security import get_password_hash
from reseller_backend.app.core.token_revocation import revoke_account_tokens
from reseller_backend.app.domain.hierarchy.account_store import AccountStore
from reseller_backend.app.domain.hierarchy.cascade_engine import CascadeEngine
from reseller_backend.app.domain.ledger.ledger_service import LedgerService
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import AccountTier, AccountStatus
from reseller_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("reseller.accounts")

UNSET = object()


@dataclass
class AccountDeletion:
    account_id: int
    refunded: Decimal
    refunded_to: Optional[int] = None


def future_validity(valid_until: Optional[datetime], now: Optional[datetime] = None) -> Optional[datetime]:
    """Normalize to UTC and require a future date."""
    valid_until = as_utc(valid_until)
    if valid_until is not None and valid_until <= (now or utcnow()):
        raise ValidationFailedError("Validity date must be in the future")
    return valid_until


class AccountManager:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.cascade = CascadeEngine(db)

    async def create(
        self,
        caller: Account,
        tier: AccountTier,
        name: str,
        email: str,
        password: str,
        phone: Optional[str] = None,
        valid_until: Optional[datetime] = None,
        parent_id: Optional[int] = None,
        subscriber_limit: Optional[int] = None
    ) -> Account:
        """
        Create a distributor or reseller with a zero balance.

        Raises:
            ValidationFailedError, InsufficientPermissionsError, ResourceNotFoundError
        """
        if tier == AccountTier.DISTRIBUTOR:
            if caller.tier != AccountTier.ADMIN:
                raise InsufficientPermissionsError("Only admins can create distributors")
            parent_id, subscriber_limit = None, None
        elif tier == AccountTier.RESELLER:
            parent_id = await self._resolve_parent(caller, parent_id)
        else:
            raise ValidationFailedError(f"Accounts of tier '{tier.value}' cannot be created")

        valid_until = future_validity(valid_until)
        email = email.strip().lower()

        existing = await self.db.execute(select(Account.id).where(func.lower(Account.email) == email))
        if existing.scalar_one_or_none() is not None:
            raise ValidationFailedError("Email already registered")

        account = Account(
            name=name.strip(),
            email=email,
            phone=phone,
            hashed_password=get_password_hash(password),
            tier=tier,
            status=AccountStatus.ACTIVE,
            balance=0,
            valid_until=valid_until,
            parent_id=parent_id,
            subscriber_limit=subscriber_limit
        )
        self.db.add(account)
        await self.db.commit()
        await self.db.refresh(account)

        logger.info("Created %s account %s (parent %s)", tier.value, account.id, parent_id)
        await log_event(
            self.db,
            action=AuditAction.ACCOUNT_CREATED,
            actor_id=caller.id,
            actor_name=caller.name,
            target_account_id=account.id,
            target_name=account.name,
            metadata={"tier": tier.value, "parent_id": parent_id}
        )
        return account

    async def list_accounts(
        self,
        caller: Account,
        tier: AccountTier,
        status: Optional[AccountStatus] = None,
        search: Optional[str] = None
    ) -> list[Account]:
        """
        Accounts of a tier visible to the caller, each validity-checked
        before the status filter is applied.
        """
        query = select(Account).where(Account.tier == tier)

        if caller.tier == AccountTier.DISTRIBUTOR:
            if tier != AccountTier.RESELLER:
                raise InsufficientPermissionsError("Access denied")
            query = query.where(Account.parent_id == caller.id)
        elif caller.tier != AccountTier.ADMIN:
            raise InsufficientPermissionsError("Access denied")

        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(Account.name.ilike(pattern), Account.email.ilike(pattern)))

        result = await self.db.execute(
            query.order_by(Account.created_at.desc(), Account.id.desc())
            .execution_options(populate_existing=True)
        )
        accounts = list(result.scalars().all())

        await self.cascade.check_many(accounts)

        if status is not None:
            accounts = [account for account in accounts if account.status == status]
        return accounts

    async def get_visible(self, caller: Account, account_id: int, tier: AccountTier) -> Account:
        resource = "Distributor" if tier == AccountTier.DISTRIBUTOR else "Reseller"
        account = await AccountStore.get_account(self.db, account_id, tier, resource=resource)

        if caller.tier == AccountTier.DISTRIBUTOR:
            if account.tier != AccountTier.RESELLER or account.parent_id != caller.id:
                raise InsufficientPermissionsError(f"Access denied. You do not have permission to access this {resource.lower()}.")
        elif caller.tier != AccountTier.ADMIN:
            raise InsufficientPermissionsError("Access denied")

        await self.cascade.check_validity(account)
        return account

    async def update(
        self,
        caller: Account,
        account: Account,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        valid_until: Optional[datetime] = None,
        status: Optional[AccountStatus] = None,
        parent_id=UNSET,
        subscriber_limit=UNSET
    ) -> Account:
        """
        Administrative update.

        Active -> Inactive runs the manual cascade. Inactive -> Active
        reactivates this account only. The validity check runs last.
        """
        now = utcnow()
        valid_until = future_validity(valid_until, now)
        changes = {}

        if name is not None:
            account.name = name.strip()
            changes["name"] = account.name
        if phone is not None:
            account.phone = phone
            changes["phone"] = phone

        if parent_id is not UNSET:
            await self._change_parent(caller, account, parent_id)
            changes["parent_id"] = parent_id

        if subscriber_limit is not UNSET:
            if account.tier != AccountTier.RESELLER:
                raise ValidationFailedError("Subscriber limit applies to resellers only")
            account.subscriber_limit = subscriber_limit
            changes["subscriber_limit"] = subscriber_limit

        reactivating = status == AccountStatus.ACTIVE and account.status == AccountStatus.INACTIVE
        if valid_until is not None and not reactivating:
            account.valid_until = valid_until
            changes["valid_until"] = valid_until.isoformat()

        if changes:
            try:
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            await self.db.refresh(account)
            await log_event(
                self.db,
                action=AuditAction.ACCOUNT_UPDATED,
                actor_id=caller.id,
                actor_name=caller.name,
                target_account_id=account.id,
                target_name=account.name,
                metadata=changes
            )

        if status == AccountStatus.INACTIVE:
            await self.cascade.deactivate(account, actor=caller)
        elif reactivating:
            await self.cascade.reactivate(account, valid_until, actor=caller, now=now)

        await self.cascade.check_validity(account)
        return account

    async def delete(self, caller: Account, account: Account, ledger: LedgerService) -> AccountDeletion:
        """
        Hard-delete a distributor or reseller.

        Refused while a distributor still has resellers or a reseller still
        has subscribers. A remaining balance is refunded first, a reseller's
        to its distributor and anything else to the admin deleting it. The
        refund and the deletion share one transaction.

        Raises:
            ValidationFailedError, InsufficientPermissionsError
        """
        if account.tier == AccountTier.DISTRIBUTOR:
            if caller.tier != AccountTier.ADMIN:
                raise InsufficientPermissionsError("Only admins can delete distributors")
            resellers = len(await AccountStore.reseller_ids_of(self.db, account.id))
            if resellers:
                raise ValidationFailedError(f"Cannot delete distributor with {resellers} reseller(s)")
        elif account.tier == AccountTier.RESELLER:
            subscribers = await AccountStore.count_subscribers(self.db, account.id)
            if subscribers:
                raise ValidationFailedError(f"Cannot delete reseller with {subscribers} subscriber(s)")
        else:
            raise ValidationFailedError(f"Accounts of tier '{account.tier.value}' cannot be deleted")

        account_id, name, tier = account.id, account.name, account.tier
        recipient_id = account.parent_id if tier == AccountTier.RESELLER and account.parent_id else caller.id
        caller_id, caller_name = caller.id, caller.name

        try:
            entry = await ledger.refund_balance(account_id, recipient_id)
            refunded = Decimal(entry.amount) if entry else Decimal("0")
            if not await AccountStore.delete_account(self.db, account_id):
                raise ResourceNotFoundError("Account", account_id)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationFailedError(f"{name} still has accounts or subscribers attached")
        except Exception:
            await self.db.rollback()
            raise
        self.db.expunge(account)

        logger.info("Deleted %s account %s, %s refunded to %s", tier.value, account_id, refunded, recipient_id)
        await revoke_account_tokens([account_id])
        await log_event(
            self.db,
            action=AuditAction.ACCOUNT_DELETED,
            actor_id=caller_id,
            actor_name=caller_name,
            target_account_id=account_id,
            target_name=name,
            metadata={"tier": tier.value, "refunded": str(refunded), "refunded_to": recipient_id if refunded else None}
        )
        return AccountDeletion(account_id, refunded, recipient_id if refunded else None)

    async def counts(self, account: Account) -> dict:
        if account.tier == AccountTier.DISTRIBUTOR:
            reseller_ids = await AccountStore.reseller_ids_of(self.db, account.id)
            return {"reseller_count": len(reseller_ids)}
        if account.tier == AccountTier.RESELLER:
            return {"subscriber_count": await AccountStore.count_subscribers(self.db, account.id)}
        return {}

    # Internals

    async def _resolve_parent(self, caller: Account, parent_id: Optional[int]) -> Optional[int]:
        if caller.tier == AccountTier.DISTRIBUTOR:
            return caller.id
        if caller.tier != AccountTier.ADMIN:
            raise InsufficientPermissionsError("Only admins and distributors can create resellers")
        if parent_id is None:
            return None
        parent = await AccountStore.get_account(self.db, parent_id, AccountTier.DISTRIBUTOR, resource="Distributor")
        await self.cascade.check_validity(parent)
        if parent.status != AccountStatus.ACTIVE:
            raise ValidationFailedError(f"Distributor {parent.name} is inactive")
        return parent.id

    async def _change_parent(self, caller: Account, account: Account, parent_id: Optional[int]):
        if caller.tier != AccountTier.ADMIN:
            raise InsufficientPermissionsError("Only admins can move a reseller to another distributor")
        if account.tier != AccountTier.RESELLER:
            raise ValidationFailedError("Only resellers have a parent distributor")
        if parent_id == account.parent_id:
            return
        if await AccountStore.count_subscribers(self.db, account.id) > 0:
            raise ValidationFailedError("Parent cannot be changed while the reseller has subscribers")
        if parent_id is not None:
            await AccountStore.get_account(self.db, parent_id, AccountTier.DISTRIBUTOR, resource="Distributor")
        account.parent_id = parent_id
