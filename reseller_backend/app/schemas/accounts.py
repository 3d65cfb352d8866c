"""
Account Schemas.

Request/response models for distributor and reseller management.
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, List
from reseller_backend.app.models.enums import AccountTier, AccountStatus


class DistributorCreate(BaseModel):
    """Schema for creating a distributor (admin only)."""
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, description="Password (min 6 characters)")
    phone: Optional[str] = Field(None, max_length=30)
    valid_until: Optional[datetime] = Field(None, description="Validity end, must be in the future")


class ResellerCreate(DistributorCreate):
    """
    Schema for creating a reseller.
    
    parent_id is only honoured for admins; a distributor always becomes the parent.
    """
    parent_id: Optional[int] = Field(None, description="Owning distributor (admin only)")
    subscriber_limit: Optional[int] = Field(None, ge=0, description="Max subscribers, 0 = unlimited")


class AccountUpdate(BaseModel):
    """
    Schema for an administrative account update.
    
    status Active -> Inactive cascades down the hierarchy;
    Inactive -> Active reactivates this account only.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    valid_until: Optional[datetime] = None
    status: Optional[AccountStatus] = None
    parent_id: Optional[int] = Field(None, description="Reseller only, admin only")
    subscriber_limit: Optional[int] = Field(None, ge=0, description="Reseller only")


class AccountResponse(BaseModel):
    """Schema for account in responses."""
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    tier: AccountTier
    status: AccountStatus
    balance: float
    valid_until: Optional[datetime] = None
    parent_id: Optional[int] = None
    subscriber_limit: Optional[int] = None
    last_login: Optional[datetime] = None
    created_at: datetime
    
    class Config:
        from_attributes = True


class AccountDetailResponse(AccountResponse):
    """Account with subordinate counts."""
    reseller_count: Optional[int] = None
    subscriber_count: Optional[int] = None


class AccountListResponse(BaseModel):
    accounts: List[AccountResponse]
    total: int


class AccountDeletionResponse(BaseModel):
    id: int
    deleted: bool = True
    refunded_amount: float = 0
    refunded_to: Optional[int] = None
