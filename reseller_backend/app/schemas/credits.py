"""
Credit (ledger) Schemas.

Request/response models for balance transfers and transaction history.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from reseller_backend.app.models.enums import AccountTier


class CreditCreate(BaseModel):
    """
    Schema for a balance transfer.
    
    type and amount are validated by the ledger so that a bad value is
    reported as a ValidationError rather than a schema error.
    """
    type: Optional[str] = Field(None, description="Credit, Debit or Reverse Credit")
    amount: Optional[Decimal] = Field(None, description="Positive amount, two decimals at most")
    target_user_id: Optional[int] = Field(None, description="Account on the other side of the transfer")


class SelfCreditRequest(BaseModel):
    """Schema for admin self credit."""
    amount: Optional[Decimal] = None


class ParticipantResponse(BaseModel):
    id: int
    name: str
    tier: AccountTier


class CreditResponse(BaseModel):
    """Schema for one ledger entry with participants resolved."""
    id: int
    type: str
    amount: float
    sender: Optional[ParticipantResponse] = None
    target: Optional[ParticipantResponse] = None
    sender_balance_after: float
    target_balance_after: Optional[float] = None
    created_at: datetime


class CreditListResponse(BaseModel):
    credits: List[CreditResponse]
    total: int


class ReversalResponse(BaseModel):
    """Schema for a reversed (deleted) ledger entry."""
    id: int
    type: str
    amount: float
    sender: Optional[ParticipantResponse] = None
    sender_balance: Optional[float] = None
    target: Optional[ParticipantResponse] = None
    target_balance: Optional[float] = None


class CreditTarget(BaseModel):
    """Account the caller may transfer with."""
    id: int
    name: str
    email: str
    tier: AccountTier
    balance: float
    
    class Config:
        from_attributes = True
