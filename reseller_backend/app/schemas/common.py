"""
Shared response envelope.

Every successful API response is wrapped as {success, message, data}.
"""

from typing import Generic, Optional, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Schema for the success envelope."""
    success: bool = True
    message: str = ""
    data: Optional[T] = None
