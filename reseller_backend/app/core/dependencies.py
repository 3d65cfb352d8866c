"""
Authentication dependencies for FastAPI.

This module provides dependencies for protecting routes with JWT authentication.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from reseller_backend.app.core.jwt import decode_access_token
from reseller_backend.app.core.token_revocation import is_token_revoked, are_account_tokens_revoked
from reseller_backend.app.db.session import get_db
from reseller_backend.app.domain.hierarchy.account_store import AccountStore
from reseller_backend.app.domain.hierarchy.cascade_engine import CascadeEngine
from reseller_backend.app.domain.ledger.capping_policy import CappingPolicy, CappingResolver
from reseller_backend.app.domain.ledger.ledger_service import LedgerService
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import AccountStatus

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Account:
    """
    FastAPI dependency for JWT authentication.

    Checks:
    1. Validates JWT token signature and expiry
    2. Checks if token has been explicitly revoked
    3. Checks if all account tokens have been revoked (deactivated or cascaded)
    4. Loads the account and checks its validity and its distributor's, which may expire them
    5. Rejects Inactive accounts

    Returns:
        The current Account, loaded in the request's session

    Raises:
        HTTPException: 401 if authentication fails, 403 if the account is inactive
    """
    token = credentials.credentials

    # 1. Decode and validate JWT
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    account_id = payload.get("account_id")
    if not account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 2. Check if this specific token has been revoked
    if await is_token_revoked(token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 3. Check if all account tokens have been revoked
    if await are_account_tokens_revoked(account_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account access has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 4. Real-time database check, expiring the account if its validity passed
    account = await AccountStore.find_account(db, account_id)

    if not account:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    account = await CascadeEngine(db).check_hierarchy(account)

    if account.status != AccountStatus.ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    return account


async def get_capping_policy(db: AsyncSession = Depends(get_db)) -> CappingPolicy:
    """Floors in force for this request."""
    return await CappingResolver.resolve(db)


async def get_ledger_service(
    db: AsyncSession = Depends(get_db),
    policy: CappingPolicy = Depends(get_capping_policy)
) -> LedgerService:
    return LedgerService(db, policy)
