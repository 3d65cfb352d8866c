"""
Subscriber Schemas.

Request/response models for subscriber devices and their activation.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict
from reseller_backend.app.models.enums import SubscriberStatus


class SubscriberCreate(BaseModel):
    """
    Schema for registering a subscriber.
    
    New subscribers start Fresh; activation is a separate, paid step.
    """
    name: str = Field(..., min_length=1, max_length=100)
    serial_number: str = Field(..., min_length=1, max_length=100)
    mac_address: str = Field(..., min_length=1, max_length=50)
    reseller_id: Optional[int] = Field(None, description="Owning reseller (admin / distributor)")


class SubscriberActivate(BaseModel):
    package_ids: List[int] = Field(..., min_length=1)
    primary_package_id: Optional[int] = None


class SubscriberUpdate(BaseModel):
    """
    Schema for editing a subscriber. Only the fields sent are changed.

    New packages and a later expiry date are charged to the owning reseller.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    serial_number: Optional[str] = Field(None, min_length=1, max_length=100)
    mac_address: Optional[str] = Field(None, min_length=1, max_length=50)
    package_ids: Optional[List[int]] = Field(None, min_length=1)
    primary_package_id: Optional[int] = None
    expiry_date: Optional[datetime] = Field(None, description="New expiry day, extended to its end")


class SubscriberStatusUpdate(BaseModel):
    status: SubscriberStatus


class SubscriberResponse(BaseModel):
    id: int
    reseller_id: Optional[int] = None
    name: str
    serial_number: str
    mac_address: str
    status: SubscriberStatus
    expiry_date: Optional[datetime] = None
    package_ids: List[int] = []
    primary_package_id: Optional[int] = None
    created_at: datetime
    
    class Config:
        from_attributes = True


class SubscriberListResponse(BaseModel):
    subscribers: List[SubscriberResponse]
    total: int


class ActivationResponse(BaseModel):
    subscriber: SubscriberResponse
    charged_amount: float
    remaining_balance: Optional[float] = None
    breakdown: Optional[Dict[str, float]] = None


class SubscriberBulkRow(BaseModel):
    # Missing fields are reported per row, not as a request error
    name: Optional[str] = None
    serial_number: Optional[str] = None
    mac_address: Optional[str] = None


class SubscriberBulkUpload(BaseModel):
    subscribers: List[SubscriberBulkRow] = Field(..., min_length=1)


class BulkUploadFailure(BaseModel):
    row: int
    mac_address: Optional[str] = None
    reason: str


class BulkUploadResponse(BaseModel):
    created: List[SubscriberResponse]
    failed: List[BulkUploadFailure]
