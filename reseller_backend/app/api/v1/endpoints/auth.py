"""
Authentication API endpoints.

Provides login, logout and current-account endpoints for the admin, distributor
and reseller apps.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from reseller_backend.app.db.session import get_db
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import AccountStatus
from reseller_backend.app.schemas.auth import LoginRequest, TokenResponse
from reseller_backend.app.schemas.accounts import AccountResponse
from reseller_backend.app.schemas.common import ApiResponse
from reseller_backend.app.core.clock import utcnow
from reseller_backend.app.core.security import verify_password
from reseller_backend.app.core.jwt import create_access_token
from reseller_backend.app.core.dependencies import get_current_user, security
from reseller_backend.app.core.token_revocation import revoke_token
from reseller_backend.app.domain.hierarchy.cascade_engine import CascadeEngine
from reseller_backend.app.services.audit import log_auth_event, AuditAction

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=ApiResponse[TokenResponse])
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Login and return a JWT token.

    Logging in is an account read: the validity check runs first, on a
    reseller's distributor and then on the account, so an account whose
    validity (or whose distributor's) has passed is expired and refused.
    """
    ip_address = request.client.host if request.client else None
    email = credentials.email.strip().lower()

    result = await db.execute(select(Account).where(func.lower(Account.email) == email))
    account = result.scalar_one_or_none()

    if not account:
        # Log failed login attempt
        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_FAILED,
            account_id=None,
            name=email,
            ip_address=ip_address,
            metadata={"reason": "Account not found"}
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    account_id, name = account.id, account.name

    if not verify_password(credentials.password, account.hashed_password):
        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_FAILED,
            account_id=account_id,
            name=name,
            ip_address=ip_address,
            metadata={"reason": "Invalid password"}
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    account = await CascadeEngine(db).check_hierarchy(account)

    if account.status != AccountStatus.ACTIVE:
        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_FAILED,
            account_id=account_id,
            name=name,
            ip_address=ip_address,
            metadata={"reason": "Account is inactive"}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account is inactive. Please contact your administrator."
        )

    account.last_login = utcnow()
    await db.commit()
    await db.refresh(account)

    access_token = create_access_token(data={
        "sub": account.email,
        "account_id": account.id,
        "tier": account.tier.value
    })

    await log_auth_event(
        db=db,
        action=AuditAction.LOGIN_SUCCESS,
        account_id=account_id,
        name=name,
        ip_address=ip_address
    )

    return ApiResponse(
        message="Login successful",
        data=TokenResponse(
            access_token=access_token,
            token_type="bearer",
            account_id=account.id,
            name=account.name,
            email=account.email,
            tier=account.tier,
            account=AccountResponse.model_validate(account)
        )
    )


@router.get("/me", response_model=ApiResponse[AccountResponse])
async def get_current_account_info(
    current_user: Account = Depends(get_current_user)
):
    """
    Get the authenticated account, after its validity check.
    """
    return ApiResponse(data=AccountResponse.model_validate(current_user))


@router.post("/logout", response_model=ApiResponse[dict])
async def logout(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    current_user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Revoke the token used for this request. Other sessions of the account
    stay valid.
    """
    account_id, name = current_user.id, current_user.name
    revoked = await revoke_token(credentials.credentials, account_id)

    await log_auth_event(
        db=db,
        action=AuditAction.LOGOUT,
        account_id=account_id,
        name=name,
        ip_address=request.client.host if request.client else None
    )
    return ApiResponse(message="Logged out successfully", data={"revoked": revoked})
