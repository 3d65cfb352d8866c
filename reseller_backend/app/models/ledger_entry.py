"""
Ledger Entry database model.

Immutable record of a balance movement between accounts.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Enum, Index
from reseller_backend.app.db.session import Base
from reseller_backend.app.models.ledger_enums import LedgerEntryType
from reseller_backend.app.core.clock import utcnow


class LedgerEntry(Base):
    """
    Ledger Entry model.
    
    Balance snapshots are written in the same transaction as the balance
    updates they describe. Entries are never updated; an admin reversal
    deletes the entry after undoing its delta.
    """
    __tablename__ = "ledger_entries"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    entry_type = Column(Enum(LedgerEntryType), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    
    # Participants, set to NULL when the account is deleted
    sender_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)
    target_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)
    
    # Snapshots
    sender_balance_after = Column(Numeric(14, 2), nullable=False)
    target_balance_after = Column(Numeric(14, 2), nullable=True)
    
    # Set client side for sub-second ordering (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    
    __table_args__ = (
        Index("ix_ledger_entries_sender_created", "sender_id", "created_at"),
        Index("ix_ledger_entries_target_created", "target_id", "created_at"),
    )
    
    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type='{self.entry_type.value}', amount={self.amount})>"
