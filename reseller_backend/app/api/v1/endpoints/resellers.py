"""
Reseller API Endpoints.

Admins manage every reseller; a distributor manages its own.
"""

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from reseller_backend.app.db.session import get_db
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import AccountTier, AccountStatus
from reseller_backend.app.schemas.accounts import (
    ResellerCreate, AccountUpdate, AccountResponse, AccountDetailResponse, AccountListResponse,
    AccountDeletionResponse
)
from reseller_backend.app.schemas.common import ApiResponse
from reseller_backend.app.core.guards import require_tier
from reseller_backend.app.core.dependencies import get_ledger_service
from reseller_backend.app.domain.hierarchy.account_manager import AccountManager, UNSET
from reseller_backend.app.domain.ledger.ledger_service import LedgerService

router = APIRouter(prefix="/resellers", tags=["Resellers"])

managers = require_tier([AccountTier.ADMIN, AccountTier.DISTRIBUTOR])


@router.post("", response_model=ApiResponse[AccountResponse], status_code=status.HTTP_201_CREATED)
async def create_reseller(
    data: ResellerCreate,
    current_user: Account = Depends(managers),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a reseller. A distributor always becomes the parent of the
    resellers it creates; an admin may name a parent distributor.
    """
    account = await AccountManager(db).create(
        current_user,
        AccountTier.RESELLER,
        name=data.name,
        email=data.email,
        password=data.password,
        phone=data.phone,
        valid_until=data.valid_until,
        parent_id=data.parent_id,
        subscriber_limit=data.subscriber_limit
    )
    return ApiResponse(message="Reseller created successfully", data=AccountResponse.model_validate(account))


@router.get("", response_model=ApiResponse[AccountListResponse])
async def list_resellers(
    status_filter: Optional[AccountStatus] = Query(None, alias="status", description="Filter by status"),
    search: Optional[str] = Query(None, description="Match on name or email"),
    current_user: Account = Depends(managers),
    db: AsyncSession = Depends(get_db)
):
    accounts = await AccountManager(db).list_accounts(current_user, AccountTier.RESELLER, status_filter, search)
    return ApiResponse(data=AccountListResponse(
        accounts=[AccountResponse.model_validate(a) for a in accounts],
        total=len(accounts)
    ))


@router.get("/{reseller_id}", response_model=ApiResponse[AccountDetailResponse])
async def get_reseller(
    reseller_id: int = Path(..., description="Reseller ID"),
    current_user: Account = Depends(managers),
    db: AsyncSession = Depends(get_db)
):
    manager = AccountManager(db)
    account = await manager.get_visible(current_user, reseller_id, AccountTier.RESELLER)
    detail = AccountDetailResponse.model_validate(account).model_copy(update=await manager.counts(account))
    return ApiResponse(data=detail)


@router.patch("/{reseller_id}", response_model=ApiResponse[AccountResponse])
async def update_reseller(
    data: AccountUpdate,
    reseller_id: int = Path(..., description="Reseller ID"),
    current_user: Account = Depends(managers),
    db: AsyncSession = Depends(get_db)
):
    """
    Update a reseller.

    Setting status to Inactive also inactivates its subscribers.
    parent_id can only be changed by an admin while the reseller has no subscribers.
    """
    manager = AccountManager(db)
    account = await manager.get_visible(current_user, reseller_id, AccountTier.RESELLER)
    fields = data.model_fields_set
    account = await manager.update(
        current_user,
        account,
        name=data.name,
        phone=data.phone,
        valid_until=data.valid_until,
        status=data.status,
        parent_id=data.parent_id if "parent_id" in fields else UNSET,
        subscriber_limit=data.subscriber_limit if "subscriber_limit" in fields else UNSET
    )
    return ApiResponse(message="Reseller updated successfully", data=AccountResponse.model_validate(account))


@router.delete("/{reseller_id}", response_model=ApiResponse[AccountDeletionResponse])
async def delete_reseller(
    reseller_id: int = Path(..., description="Reseller ID"),
    current_user: Account = Depends(managers),
    ledger: LedgerService = Depends(get_ledger_service),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete a reseller that has no subscribers left. Its remaining balance
    goes back to its distributor, or to the admin for an unassigned reseller.
    """
    manager = AccountManager(db)
    account = await manager.get_visible(current_user, reseller_id, AccountTier.RESELLER)
    result = await manager.delete(current_user, account, ledger)
    return ApiResponse(
        message="Reseller deleted successfully",
        data=AccountDeletionResponse(
            id=result.account_id,
            refunded_amount=result.refunded,
            refunded_to=result.refunded_to
        )
    )
