"""
Account database model.

Admin, distributor and reseller accounts share one table; the tier column
decides where an account sits in the hierarchy.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.sql import func
from reseller_backend.app.db.session import Base
from reseller_backend.app.models.enums import AccountTier, AccountStatus


class Account(Base):
    """
    Account model.
    
    Balance, status and valid_until are only written by the ledger, the
    validity cascade, or an explicit administrative update.
    """
    __tablename__ = "accounts"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(30), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    
    tier = Column(Enum(AccountTier), nullable=False, index=True)
    status = Column(Enum(AccountStatus), default=AccountStatus.ACTIVE, nullable=False, index=True)
    
    # Financials
    balance = Column(Numeric(14, 2), default=0, nullable=False)
    
    # No expiry when NULL
    valid_until = Column(DateTime(timezone=True), nullable=True)
    
    # Hierarchy - reseller belongs to distributor
    parent_id = Column(Integer, ForeignKey("accounts.id"), nullable=True, index=True)
    
    # Reseller only, 0 / NULL means unlimited
    subscriber_limit = Column(Integer, nullable=True)
    
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Account(id={self.id}, name='{self.name}', tier='{self.tier.value}', status='{self.status.value}')>"
