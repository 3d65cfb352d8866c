"""
Admin API Schema Definitions.

Pydantic schemas for admin endpoints.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List


class AuditLogResponse(BaseModel):
    """Schema for audit log entry."""
    id: int
    actor_id: Optional[int]
    actor_name: Optional[str]
    action: str
    target_account_id: Optional[int]
    target_name: Optional[str]
    meta_data: Optional[dict]
    ip_address: Optional[str]
    timestamp: datetime
    
    class Config:
        from_attributes = True


class AuditTrailResponse(BaseModel):
    """Schema for audit trail list."""
    logs: List[AuditLogResponse]
    total: int


class SweepResponse(BaseModel):
    """Schema for the validity sweep result."""
    distributors_checked: int
    resellers_checked: int
    accounts_expired: int
    resellers_inactivated: int
    subscribers_inactivated: int
