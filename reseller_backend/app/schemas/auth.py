"""
Authentication Pydantic schemas.

Defines request and response schemas for authentication endpoints.
"""

from pydantic import BaseModel, Field
from reseller_backend.app.models.enums import AccountTier
from reseller_backend.app.schemas.accounts import AccountResponse


class LoginRequest(BaseModel):
    """
    Schema for login.
    
    Used by POST /auth/login endpoint.
    """
    email: str = Field(..., description="Account email")
    password: str = Field(..., description="Password")


class TokenResponse(BaseModel):
    """
    Schema for JWT token response.
    
    Returned by a successful login.
    """
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    account_id: int
    name: str
    email: str
    tier: AccountTier
    account: AccountResponse
