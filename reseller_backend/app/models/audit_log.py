"""
Audit Log Database Model.

Tracks balance movements, hierarchy changes and admin actions.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from reseller_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking ledger and hierarchy events.
    
    Events logged:
    - LEDGER_TRANSFER / LEDGER_SELF_CREDIT / LEDGER_REVERSED
    - SUBSCRIBER_CREATED / SUBSCRIBER_ACTIVATED / SUBSCRIBER_RENEWED / SUBSCRIBER_RELEASED
    - ACCOUNT_CREATED / ACCOUNT_DEACTIVATED / ACCOUNT_REACTIVATED / ACCOUNT_EXPIRED
    - CAPPING_UPDATED
    - LOGIN_SUCCESS / LOGIN_FAILED
    """
    __tablename__ = "audit_logs"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # Who performed the action (None for system actions such as lazy expiry)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_name = Column(String(100), nullable=True)
    
    # What action was performed
    action = Column(String(100), nullable=False, index=True)
    
    # Account the action applied to
    target_account_id = Column(Integer, index=True, nullable=True)
    target_name = Column(String(100), nullable=True)
    
    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)
    
    # IP address for login tracking
    ip_address = Column(String(50), nullable=True)
    
    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    
    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_name}, target={self.target_name})>"
