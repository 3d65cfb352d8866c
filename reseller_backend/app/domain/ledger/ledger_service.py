"""
Ledger Service (Domain Logic).

Moves balance between accounts of the reseller hierarchy and records every
movement in the transaction log.

Each operation is one database transaction:
1. Validate input and hierarchy rights
2. Pre-check the capping floor against the loaded balances
3. Conditionally take the amount from the paying account
4. Add the amount to the receiving account
5. Append the ledger entry with the balances returned by steps 3 and 4
6. Commit, or roll everything back
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from reseller_backend.app.core.config import settings
from reseller_backend.app.core.exceptions import (
    AppException,
    ValidationFailedError,
    InsufficientPermissionsError,
    InsufficientFundsError,
    ResourceNotFoundError,
    CappingViolationError,
    ConcurrencyConflictError,
)
from reseller_backend.app.domain.hierarchy.account_store import AccountStore
from reseller_backend.app.domain.ledger.capping_policy import CappingPolicy
from reseller_backend.app.domain.ledger.transaction_log import TransactionLog, entry_deltas
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import AccountTier
from reseller_backend.app.models.ledger_entry import LedgerEntry
from reseller_backend.app.models.ledger_enums import LedgerEntryType, TRANSFER_TYPES

logger = logging.getLogger("reseller.ledger")

CENT = Decimal("0.01")


@dataclass
class Participant:
    id: int
    name: str
    tier: AccountTier

    @classmethod
    def of(cls, account: Optional[Account]) -> Optional["Participant"]:
        if account is None:
            return None
        return cls(id=account.id, name=account.name, tier=account.tier)


@dataclass
class LedgerRecord:
    """A ledger entry with its participants resolved for display."""
    entry: LedgerEntry
    sender: Optional[Participant]
    target: Optional[Participant] = None


@dataclass
class ReversalResult:
    entry_id: int
    entry_type: LedgerEntryType
    amount: Decimal
    sender: Optional[Participant]
    sender_balance: Optional[Decimal]
    target: Optional[Participant] = None
    target_balance: Optional[Decimal] = None


def parse_amount(amount: Any) -> Decimal:
    """
    Coerce an amount to a positive two-digit Decimal.

    Raises:
        ValidationFailedError: If the amount is missing, not a number or not positive
    """
    if amount is None:
        raise ValidationFailedError("Amount is required")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationFailedError("Amount must be a positive number")
    if not value.is_finite() or value <= 0:
        raise ValidationFailedError("Amount must be a positive number")
    if value != value.quantize(CENT):
        raise ValidationFailedError("Amount cannot have more than two decimal places")
    return value.quantize(CENT)


def parse_transfer_type(entry_type: Any) -> LedgerEntryType:
    if entry_type is None:
        raise ValidationFailedError("Type is required")
    try:
        parsed = LedgerEntryType(entry_type)
    except ValueError:
        raise ValidationFailedError("Type must be Credit, Debit, or Reverse Credit")
    if parsed not in TRANSFER_TYPES:
        raise ValidationFailedError("Type must be Credit, Debit, or Reverse Credit")
    return parsed


class LedgerService:

    def __init__(self, db: AsyncSession, policy: CappingPolicy, max_retries: Optional[int] = None):
        self.db = db
        self.policy = policy
        self.max_retries = max_retries or settings.ledger_max_retries

    # Authorization

    @staticmethod
    def can_manage(sender: Account, target: Account) -> bool:
        """True if sender may move balance to or from target."""
        if sender.id == target.id:
            return False
        if sender.tier == AccountTier.ADMIN:
            return target.tier in (AccountTier.DISTRIBUTOR, AccountTier.RESELLER)
        if sender.tier == AccountTier.DISTRIBUTOR:
            return target.tier == AccountTier.RESELLER and target.parent_id == sender.id
        if sender.tier == AccountTier.RESELLER:
            return False
        raise ValueError(f"Unhandled account tier {sender.tier!r}")

    # Operations

    async def transfer(
        self,
        entry_type: Any,
        amount: Any,
        sender_id: int,
        target_id: Optional[int],
        caller_id: Optional[int] = None
    ) -> LedgerRecord:
        """
        Move amount between sender and one of its subordinates.

        Credit: sender -> target. Debit / Reverse Credit: target -> sender.

        Raises:
            ValidationFailedError, ResourceNotFoundError, InsufficientPermissionsError,
            InsufficientFundsError, CappingViolationError, ConcurrencyConflictError
        """
        entry_type = parse_transfer_type(entry_type)
        amount = parse_amount(amount)
        if target_id is None:
            raise ValidationFailedError("Target user is required")
        if caller_id is not None and caller_id != sender_id:
            raise InsufficientPermissionsError("You can only transfer from your own account")

        return await self._with_retries(self._transfer_once, entry_type, amount, sender_id, target_id)

    async def self_credit(self, amount: Any, admin_id: int) -> LedgerRecord:
        """Admin adds funds to its own balance. No capping check."""
        amount = parse_amount(amount)
        admin = await AccountStore.get_account(self.db, admin_id, resource="Sender")
        if admin.tier != AccountTier.ADMIN:
            raise InsufficientPermissionsError("Only admins can perform self-credit")

        try:
            balance_after = await AccountStore.add_to_balance(self.db, admin.id, amount)
            entry = await TransactionLog.append(
                self.db,
                entry_type=LedgerEntryType.SELF_CREDIT,
                amount=amount,
                sender_id=admin.id,
                sender_balance_after=balance_after
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Self credit of %s by admin %s, balance now %s", amount, admin.id, balance_after)
        return LedgerRecord(entry=entry, sender=Participant(admin.id, admin.name, admin.tier))

    async def charge_subscription(self, reseller_id: int, amount: Any) -> LedgerEntry:
        """
        Take a subscriber activation or renewal cost from a reseller.

        Only requires the balance to cover the cost. The caller owns the
        transaction: nothing is committed here.

        Raises:
            InsufficientFundsError: If the reseller's balance cannot cover the cost
        """
        amount = parse_amount(amount)
        reseller = await AccountStore.get_account(self.db, reseller_id, resource="Reseller")
        reseller_name = reseller.name

        balance_after = await AccountStore.take_from_balance(self.db, reseller.id, amount, Decimal("0"))
        if balance_after is None:
            current = await AccountStore.current_balance(self.db, reseller.id)
            raise InsufficientFundsError(reseller_name, current, amount)

        entry = await TransactionLog.append(
            self.db,
            entry_type=LedgerEntryType.SUBSCRIPTION_CHARGE,
            amount=amount,
            sender_id=reseller.id,
            sender_balance_after=balance_after
        )
        logger.info("Subscription charge of %s to reseller %s, balance now %s", amount, reseller.id, balance_after)
        return entry

    async def refund_balance(self, account_id: int, recipient_id: int) -> Optional[LedgerEntry]:
        """
        Move an account's whole balance up to recipient ahead of its deletion.

        Recorded as a Debit from the account to the recipient, so replaying
        the recipient's entries still matches its balance. Capping floors do
        not apply. The caller owns the transaction: nothing is committed here.

        Returns:
            The ledger entry, or None when there was nothing to refund
        """
        balance = await AccountStore.current_balance(self.db, account_id)
        if balance is None:
            raise ResourceNotFoundError("Account", account_id)
        balance = Decimal(balance)
        if balance <= 0:
            return None

        remaining = await AccountStore.take_from_balance(self.db, account_id, balance, Decimal("0"))
        if remaining is None or Decimal(remaining) != 0:
            raise ConcurrencyConflictError("Balance changed while it was being refunded")
        recipient_after = await AccountStore.add_to_balance(self.db, recipient_id, balance)

        entry = await TransactionLog.append(
            self.db,
            entry_type=LedgerEntryType.DEBIT,
            amount=balance,
            sender_id=recipient_id,
            target_id=account_id,
            sender_balance_after=recipient_after,
            target_balance_after=remaining
        )
        logger.info("Refunded %s from account %s to %s", balance, account_id, recipient_id)
        return entry

    async def reverse(self, entry_id: int, admin_id: int) -> ReversalResult:
        """
        Undo a ledger entry's exact balance delta and delete it.

        Capping floors are not re-checked. There is no undo for a reversal;
        a fresh compensating transfer is needed instead. A side whose account
        has since been deleted is skipped.
        """
        admin = await AccountStore.get_account(self.db, admin_id)
        if admin.tier != AccountTier.ADMIN:
            raise InsufficientPermissionsError("Only admins can delete credit transactions")

        entry = await TransactionLog.get(self.db, entry_id)
        entry_type = entry.entry_type
        amount = Decimal(entry.amount)
        sender_id, target_id = entry.sender_id, entry.target_id

        accounts = await AccountStore.get_accounts(self.db, [sender_id, target_id])
        sender = Participant.of(accounts.get(sender_id))
        target = Participant.of(accounts.get(target_id))

        sender_delta, target_delta = entry_deltas(entry_type, amount)

        try:
            if not await TransactionLog.remove(self.db, entry_id):
                raise ConcurrencyConflictError("Credit transaction was already reversed")
            sender_balance = target_balance = None
            if sender_id is not None:
                sender_balance = await AccountStore.add_to_balance(self.db, sender_id, -sender_delta)
            if target_delta is not None and target_id is not None:
                target_balance = await AccountStore.add_to_balance(self.db, target_id, -target_delta)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Reversed ledger entry %s (%s of %s)", entry_id, entry_type.value, amount)
        return ReversalResult(
            entry_id=entry_id,
            entry_type=entry_type,
            amount=amount,
            sender=sender,
            sender_balance=sender_balance,
            target=target,
            target_balance=target_balance
        )

    async def history(
        self,
        account_id: int,
        entry_type: Optional[Any] = None,
        limit: Optional[int] = None
    ) -> list[LedgerRecord]:
        """
        Entries visible to an account, newest first.

        Admin sees all entries, a distributor its own and its resellers',
        a reseller only its own.
        """
        account = await AccountStore.get_account(self.db, account_id)

        parsed_type = None
        if entry_type:
            try:
                parsed_type = LedgerEntryType(entry_type)
            except ValueError:
                raise ValidationFailedError(f"Unknown transaction type '{entry_type}'")

        if account.tier == AccountTier.ADMIN:
            participant_ids = None
        elif account.tier == AccountTier.DISTRIBUTOR:
            participant_ids = [account.id] + await AccountStore.reseller_ids_of(self.db, account.id)
        elif account.tier == AccountTier.RESELLER:
            participant_ids = [account.id]
        else:
            raise ValueError(f"Unhandled account tier {account.tier!r}")

        entries = await TransactionLog.query(self.db, participant_ids, parsed_type, limit)
        accounts = await AccountStore.get_accounts(
            self.db,
            [e.sender_id for e in entries] + [e.target_id for e in entries]
        )
        return [
            LedgerRecord(
                entry=e,
                sender=Participant.of(accounts.get(e.sender_id)),
                target=Participant.of(accounts.get(e.target_id))
            )
            for e in entries
        ]

    # Internals

    async def _with_retries(self, operation, *args):
        for attempt in range(1, self.max_retries + 1):
            try:
                return await operation(*args)
            except ConcurrencyConflictError:
                if attempt == self.max_retries:
                    raise
                logger.warning("Ledger conflict on attempt %s/%s, retrying", attempt, self.max_retries)

    async def _transfer_once(
        self,
        entry_type: LedgerEntryType,
        amount: Decimal,
        sender_id: int,
        target_id: int
    ) -> LedgerRecord:
        sender = await AccountStore.get_account(self.db, sender_id, resource="Sender")
        target = await AccountStore.get_account(self.db, target_id, resource="User")

        if not self.can_manage(sender, target):
            if sender.tier == AccountTier.RESELLER:
                raise InsufficientPermissionsError("You do not have permission to create credit transactions")
            raise InsufficientPermissionsError("You can only manage credit for your resellers")

        # Keep plain values, ORM state is expired by a rollback
        sender_p = Participant.of(sender)
        target_p = Participant.of(target)

        if entry_type == LedgerEntryType.CREDIT:
            payer, payer_balance, payee = sender_p, Decimal(sender.balance), target_p
        else:
            payer, payer_balance, payee = target_p, Decimal(target.balance), sender_p
            if payer_balance < amount:
                raise InsufficientFundsError(payer.name, payer_balance, amount)

        floor = self.policy.floor(payer.tier)
        if payer_balance - amount < floor:
            raise CappingViolationError(payer.name, floor, payer_balance - amount)

        try:
            payer_after = await AccountStore.take_from_balance(self.db, payer.id, amount, floor)
            if payer_after is None:
                await self._raise_lost_race(payer, amount, floor)
            payee_after = await AccountStore.add_to_balance(self.db, payee.id, amount)

            if payer.id == sender_p.id:
                sender_after, target_after = payer_after, payee_after
            else:
                sender_after, target_after = payee_after, payer_after

            entry = await TransactionLog.append(
                self.db,
                entry_type=entry_type,
                amount=amount,
                sender_id=sender_p.id,
                target_id=target_p.id,
                sender_balance_after=sender_after,
                target_balance_after=target_after
            )
            await self.db.commit()
        except AppException:
            await self.db.rollback()
            raise
        except OperationalError as exc:
            # Lock timeouts, deadlocks and serialization failures
            await self.db.rollback()
            raise ConcurrencyConflictError() from exc
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "%s of %s from %s to %s (balances %s / %s)",
            entry_type.value, amount, sender_p.id, target_p.id, sender_after, target_after
        )
        return LedgerRecord(entry=entry, sender=sender_p, target=target_p)

    async def _raise_lost_race(self, payer: Participant, amount: Decimal, floor: Decimal):
        """
        The conditional update matched no row: the balance moved after it was read.
        Report what the balance looks like now.
        """
        current = await AccountStore.current_balance(self.db, payer.id)
        if current is None:
            raise ConcurrencyConflictError(f"{payer.name}'s account changed during the transaction")
        current = Decimal(current)
        if current < amount:
            raise InsufficientFundsError(payer.name, current, amount)
        if current - amount < floor:
            raise CappingViolationError(payer.name, floor, current - amount)
        raise ConcurrencyConflictError()
