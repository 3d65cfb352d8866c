"""
Transaction Log.

Append-only store of ledger entries. Entries are written inside the same
transaction as the balance updates they describe; the only removal path is
an admin reversal.
"""

from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from reseller_backend.app.core.exceptions import ResourceNotFoundError
from reseller_backend.app.models.ledger_entry import LedgerEntry
from reseller_backend.app.models.ledger_enums import LedgerEntryType


def entry_deltas(entry_type: LedgerEntryType, amount: Decimal) -> tuple[Decimal, Optional[Decimal]]:
    """
    Balance change an entry applied when it was written.

    Returns:
        (sender_delta, target_delta); target_delta is None for entries without a target
    """
    if entry_type == LedgerEntryType.CREDIT:
        return -amount, amount
    if entry_type in (LedgerEntryType.DEBIT, LedgerEntryType.REVERSE_CREDIT):
        return amount, -amount
    if entry_type == LedgerEntryType.SELF_CREDIT:
        return amount, None
    if entry_type == LedgerEntryType.SUBSCRIPTION_CHARGE:
        return -amount, None
    raise ValueError(f"Unhandled ledger entry type {entry_type!r}")


class TransactionLog:

    @staticmethod
    async def append(
        db: AsyncSession,
        entry_type: LedgerEntryType,
        amount: Decimal,
        sender_id: int,
        sender_balance_after: Decimal,
        target_id: Optional[int] = None,
        target_balance_after: Optional[Decimal] = None
    ) -> LedgerEntry:
        """
        Add an entry to the current transaction. The caller commits.

        Raises:
            ValueError: If target_id does not match the entry type
        """
        if entry_type.has_target and target_id is None:
            raise ValueError(f"{entry_type.value} entries need a target account")
        if not entry_type.has_target and target_id is not None:
            raise ValueError(f"{entry_type.value} entries take no target account")
        entry = LedgerEntry(
            entry_type=entry_type,
            amount=amount,
            sender_id=sender_id,
            target_id=target_id,
            sender_balance_after=sender_balance_after,
            target_balance_after=target_balance_after
        )
        db.add(entry)
        await db.flush()  # To get entry.id
        return entry

    @staticmethod
    async def get(db: AsyncSession, entry_id: int) -> LedgerEntry:
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise ResourceNotFoundError("Credit transaction", entry_id)
        return entry

    @staticmethod
    async def remove(db: AsyncSession, entry_id: int) -> bool:
        """
        Delete an entry. Returns False if another request removed it first.
        """
        result = await db.execute(
            delete(LedgerEntry)
            .where(LedgerEntry.id == entry_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def query(
        db: AsyncSession,
        participant_ids: Optional[Sequence[int]] = None,
        entry_type: Optional[LedgerEntryType] = None,
        limit: Optional[int] = None
    ) -> list[LedgerEntry]:
        """
        Entries where any of participant_ids is sender or target, newest first.

        participant_ids=None means no participant filter.
        """
        query = select(LedgerEntry)

        if participant_ids is not None:
            ids = list(participant_ids)
            query = query.where(
                or_(LedgerEntry.sender_id.in_(ids), LedgerEntry.target_id.in_(ids))
            )

        if entry_type is not None:
            query = query.where(LedgerEntry.entry_type == entry_type)

        query = query.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())

        if limit:
            query = query.limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def replay(db: AsyncSession, account_id: int, opening_balance: Decimal = Decimal("0")) -> Decimal:
        """
        Rebuild an account's balance from its entries in creation order.

        Raises:
            ValueError: If a stored snapshot disagrees with the running sum
        """
        result = await db.execute(
            select(LedgerEntry)
            .where(or_(LedgerEntry.sender_id == account_id, LedgerEntry.target_id == account_id))
            .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        )
        balance = Decimal(opening_balance)
        for entry in result.scalars().all():
            sender_delta, target_delta = entry_deltas(entry.entry_type, Decimal(entry.amount))
            if entry.sender_id == account_id:
                balance += sender_delta
                snapshot = entry.sender_balance_after
            else:
                balance += target_delta
                snapshot = entry.target_balance_after
            if Decimal(snapshot) != balance:
                raise ValueError(
                    f"Ledger entry {entry.id} records {snapshot} for account {account_id}, running sum is {balance}"
                )
        return balance
