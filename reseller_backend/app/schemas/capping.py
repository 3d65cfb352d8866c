"""
Capping Schemas.
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional


class CappingResponse(BaseModel):
    """Current minimum balance floors per tier."""
    distributor_floor: float
    reseller_floor: float


class CappingUpdate(BaseModel):
    """Schema for storing new floors (admin only). Both are required."""
    distributor_floor: Optional[Decimal] = Field(None, description="Distributor minimum balance")
    reseller_floor: Optional[Decimal] = Field(None, description="Reseller minimum balance")
