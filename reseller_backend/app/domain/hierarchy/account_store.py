"""
Account Store.

Persistence operations on accounts and subscribers. Every balance or status
write here is a single SQL statement so concurrent requests cannot lose
each other's updates.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from reseller_backend.app.core.exceptions import ResourceNotFoundError
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.subscriber import Subscriber
from reseller_backend.app.models.enums import AccountTier, AccountStatus, SubscriberStatus


class AccountStore:

    @staticmethod
    async def find_account(db: AsyncSession, account_id: int) -> Optional[Account]:
        """Load an account with its current row values, or None."""
        result = await db.execute(
            select(Account)
            .where(Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_account(
        db: AsyncSession,
        account_id: int,
        tier: Optional[AccountTier] = None,
        resource: str = "Account"
    ) -> Account:
        """
        Load an account, optionally requiring a tier.

        Raises:
            ResourceNotFoundError: If the account does not exist or has another tier
        """
        account = await AccountStore.find_account(db, account_id)
        if account is None or (tier is not None and account.tier != tier):
            raise ResourceNotFoundError(resource, account_id)
        return account

    @staticmethod
    async def get_accounts(db: AsyncSession, account_ids: Sequence[int]) -> dict[int, Account]:
        ids = {account_id for account_id in account_ids if account_id is not None}
        if not ids:
            return {}
        result = await db.execute(select(Account).where(Account.id.in_(ids)))
        return {account.id: account for account in result.scalars().all()}

    @staticmethod
    async def get_subscriber(db: AsyncSession, subscriber_id: int) -> Subscriber:
        result = await db.execute(
            select(Subscriber)
            .where(Subscriber.id == subscriber_id)
            .execution_options(populate_existing=True)
        )
        subscriber = result.scalar_one_or_none()
        if subscriber is None:
            raise ResourceNotFoundError("Subscriber", subscriber_id)
        return subscriber

    @staticmethod
    async def reseller_ids_of(db: AsyncSession, distributor_id: int) -> list[int]:
        result = await db.execute(
            select(Account.id).where(
                Account.parent_id == distributor_id,
                Account.tier == AccountTier.RESELLER
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def count_subscribers(db: AsyncSession, reseller_id: int) -> int:
        result = await db.execute(
            select(func.count(Subscriber.id)).where(Subscriber.reseller_id == reseller_id)
        )
        return result.scalar()

    # Balance writes

    @staticmethod
    async def current_balance(db: AsyncSession, account_id: int) -> Optional[Decimal]:
        result = await db.execute(select(Account.balance).where(Account.id == account_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def take_from_balance(
        db: AsyncSession,
        account_id: int,
        amount: Decimal,
        floor: Decimal
    ) -> Optional[Decimal]:
        """
        Subtract amount where the balance still covers it and stays at or above floor.

        Returns:
            The new balance, or None when the predicate no longer holds
        """
        result = await db.execute(
            update(Account)
            .where(
                Account.id == account_id,
                Account.balance >= amount,
                Account.balance - amount >= floor
            )
            .values(balance=Account.balance - amount)
            .returning(Account.balance)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def add_to_balance(db: AsyncSession, account_id: int, amount: Decimal) -> Decimal:
        """
        Add amount (may be negative) to the balance in place.

        Raises:
            ResourceNotFoundError: If the account row is gone
        """
        result = await db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance=Account.balance + amount)
            .returning(Account.balance)
            .execution_options(synchronize_session=False)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise ResourceNotFoundError("Account", account_id)
        return balance

    # Status writes

    @staticmethod
    async def expire_if_lapsed(db: AsyncSession, account_id: int, now: datetime) -> bool:
        """
        Flip an Active account whose validity has passed to Inactive.

        Returns:
            True only for the request that performed the transition
        """
        result = await db.execute(
            update(Account)
            .where(
                Account.id == account_id,
                Account.status == AccountStatus.ACTIVE,
                Account.valid_until.is_not(None),
                Account.valid_until < now
            )
            .values(status=AccountStatus.INACTIVE)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def set_status(
        db: AsyncSession,
        account_id: int,
        status: AccountStatus,
        valid_until: Optional[datetime] = None,
        clear_valid_until: bool = False
    ) -> bool:
        values = {"status": status}
        if valid_until is not None:
            values["valid_until"] = valid_until
        elif clear_valid_until:
            values["valid_until"] = None
        result = await db.execute(
            update(Account)
            .where(Account.id == account_id, Account.status != status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def inactivate_resellers_of(db: AsyncSession, distributor_id: int) -> int:
        result = await db.execute(
            update(Account)
            .where(
                Account.parent_id == distributor_id,
                Account.tier == AccountTier.RESELLER,
                Account.status != AccountStatus.INACTIVE
            )
            .values(status=AccountStatus.INACTIVE)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def inactivate_subscribers_of(db: AsyncSession, reseller_ids: Sequence[int]) -> int:
        if not reseller_ids:
            return 0
        result = await db.execute(
            update(Subscriber)
            .where(
                Subscriber.reseller_id.in_(list(reseller_ids)),
                Subscriber.status != SubscriberStatus.INACTIVE
            )
            .values(status=SubscriberStatus.INACTIVE)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def expire_lapsed_subscribers(
        db: AsyncSession,
        now: datetime,
        subscriber_ids: Optional[Sequence[int]] = None
    ) -> int:
        """Flip Active subscribers whose own expiry has passed to Inactive."""
        query = update(Subscriber).where(
            Subscriber.status == SubscriberStatus.ACTIVE,
            Subscriber.expiry_date.is_not(None),
            Subscriber.expiry_date < now
        )
        if subscriber_ids is not None:
            if not subscriber_ids:
                return 0
            query = query.where(Subscriber.id.in_(list(subscriber_ids)))
        result = await db.execute(
            query.values(status=SubscriberStatus.INACTIVE)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # Removal

    @staticmethod
    async def delete_account(db: AsyncSession, account_id: int) -> bool:
        """
        Delete an account row. Ledger entries keep their snapshots with the
        participant set to NULL. Returns False if the row was already gone.
        """
        result = await db.execute(
            delete(Account)
            .where(Account.id == account_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
