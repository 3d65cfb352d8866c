"""
Ledger enumerations.
"""

import enum


class LedgerEntryType(str, enum.Enum):
    """Ledger entry type enumeration."""
    CREDIT = "Credit"  # Sender -> target
    DEBIT = "Debit"  # Target -> sender
    REVERSE_CREDIT = "Reverse Credit"  # Target -> sender, undoing an earlier credit
    SELF_CREDIT = "Self Credit"  # Admin funds itself, no target
    SUBSCRIPTION_CHARGE = "Subscription Charge"  # Reseller pays for a subscriber, no target

    @property
    def has_target(self) -> bool:
        return self in (LedgerEntryType.CREDIT, LedgerEntryType.DEBIT, LedgerEntryType.REVERSE_CREDIT)


# Types an operator may request through a transfer
TRANSFER_TYPES = tuple(t for t in LedgerEntryType if t.has_target)
