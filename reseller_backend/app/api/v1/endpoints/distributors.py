"""
Distributor API Endpoints.

Admin management of distributor accounts. Listing and detail run the
validity check on every account returned.
"""

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from reseller_backend.app.db.session import get_db
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import AccountTier, AccountStatus
from reseller_backend.app.schemas.accounts import (
    DistributorCreate, AccountUpdate, AccountResponse, AccountDetailResponse, AccountListResponse,
    AccountDeletionResponse
)
from reseller_backend.app.schemas.common import ApiResponse
from reseller_backend.app.core.guards import require_admin
from reseller_backend.app.core.dependencies import get_ledger_service
from reseller_backend.app.domain.hierarchy.account_manager import AccountManager, UNSET
from reseller_backend.app.domain.ledger.ledger_service import LedgerService

router = APIRouter(prefix="/distributors", tags=["Distributors"])


@router.post("", response_model=ApiResponse[AccountResponse], status_code=status.HTTP_201_CREATED)
async def create_distributor(
    data: DistributorCreate,
    admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    account = await AccountManager(db).create(
        admin,
        AccountTier.DISTRIBUTOR,
        name=data.name,
        email=data.email,
        password=data.password,
        phone=data.phone,
        valid_until=data.valid_until
    )
    return ApiResponse(message="Distributor created successfully", data=AccountResponse.model_validate(account))


@router.get("", response_model=ApiResponse[AccountListResponse])
async def list_distributors(
    status_filter: Optional[AccountStatus] = Query(None, alias="status", description="Filter by status"),
    search: Optional[str] = Query(None, description="Match on name or email"),
    admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    accounts = await AccountManager(db).list_accounts(admin, AccountTier.DISTRIBUTOR, status_filter, search)
    return ApiResponse(data=AccountListResponse(
        accounts=[AccountResponse.model_validate(a) for a in accounts],
        total=len(accounts)
    ))


@router.get("/{distributor_id}", response_model=ApiResponse[AccountDetailResponse])
async def get_distributor(
    distributor_id: int = Path(..., description="Distributor ID"),
    admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    manager = AccountManager(db)
    account = await manager.get_visible(admin, distributor_id, AccountTier.DISTRIBUTOR)
    detail = AccountDetailResponse.model_validate(account).model_copy(update=await manager.counts(account))
    return ApiResponse(data=detail)


@router.patch("/{distributor_id}", response_model=ApiResponse[AccountResponse])
async def update_distributor(
    data: AccountUpdate,
    distributor_id: int = Path(..., description="Distributor ID"),
    admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Update a distributor.

    Setting status to Inactive also inactivates all its resellers and their
    subscribers. Setting it back to Active reactivates the distributor only.
    """
    manager = AccountManager(db)
    account = await manager.get_visible(admin, distributor_id, AccountTier.DISTRIBUTOR)
    fields = data.model_fields_set
    account = await manager.update(
        admin,
        account,
        name=data.name,
        phone=data.phone,
        valid_until=data.valid_until,
        status=data.status,
        parent_id=data.parent_id if "parent_id" in fields else UNSET,
        subscriber_limit=data.subscriber_limit if "subscriber_limit" in fields else UNSET
    )
    return ApiResponse(message="Distributor updated successfully", data=AccountResponse.model_validate(account))


@router.delete("/{distributor_id}", response_model=ApiResponse[AccountDeletionResponse])
async def delete_distributor(
    distributor_id: int = Path(..., description="Distributor ID"),
    admin: Account = Depends(require_admin),
    ledger: LedgerService = Depends(get_ledger_service),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete a distributor that has no resellers left.

    Its remaining balance is returned to the admin through the ledger.
    """
    manager = AccountManager(db)
    account = await manager.get_visible(admin, distributor_id, AccountTier.DISTRIBUTOR)
    result = await manager.delete(admin, account, ledger)
    message = "Distributor deleted successfully"
    if result.refunded:
        message += f". {result.refunded} returned to admin balance."
    return ApiResponse(
        message=message,
        data=AccountDeletionResponse(
            id=result.account_id,
            refunded_amount=result.refunded,
            refunded_to=result.refunded_to
        )
    )
