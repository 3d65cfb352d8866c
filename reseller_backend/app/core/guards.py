"""
Security guards for tier-based access control.

Provides dependencies for protecting endpoints.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import AccountTier
from reseller_backend.app.core.dependencies import get_current_user


def require_tier(allowed_tiers: List[AccountTier]):
    """
    Dependency factory for tier-based access control.

    Usage:
        @router.get("/resellers")
        async def list_resellers(
            current_user: Account = Depends(require_tier([AccountTier.ADMIN, AccountTier.DISTRIBUTOR]))
        ):
            ...

    Args:
        allowed_tiers: List of AccountTier enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates the account tier

    Raises:
        HTTPException 403 if the account tier is not in allowed_tiers
    """
    async def tier_checker(current_user: Account = Depends(get_current_user)) -> Account:
        if current_user.tier not in allowed_tiers:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required tier: {', '.join([t.value for t in allowed_tiers])}"
            )

        return current_user

    return tier_checker


def require_admin(current_user: Account = Depends(get_current_user)) -> Account:
    """
    Dependency for admin-only endpoints.

    Returns:
        The admin account, raises 403 otherwise
    """
    if current_user.tier != AccountTier.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return current_user

