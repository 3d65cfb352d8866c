"""
Package Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal


class PackageCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    cost: Decimal = Field(..., ge=0)
    duration_days: int = Field(30, gt=0)


class PackageResponse(BaseModel):
    id: int
    name: str
    cost: float
    duration_days: int
    created_at: datetime
    
    class Config:
        from_attributes = True
