"""
Capping API Endpoints.

Minimum balance floors for distributors and resellers.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from reseller_backend.app.db.session import get_db
from reseller_backend.app.models.account import Account
from reseller_backend.app.schemas.capping import CappingResponse, CappingUpdate
from reseller_backend.app.schemas.common import ApiResponse
from reseller_backend.app.core.dependencies import get_current_user
from reseller_backend.app.core.guards import require_admin
from reseller_backend.app.domain.ledger.capping_policy import CappingPolicy, CappingResolver
from reseller_backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/capping", tags=["Capping"])


def _capping_response(policy: CappingPolicy) -> CappingResponse:
    return CappingResponse(
        distributor_floor=policy.distributor_floor,
        reseller_floor=policy.reseller_floor
    )


@router.get("", response_model=ApiResponse[CappingResponse])
async def get_capping(
    current_user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Current floors. Defaults apply until an admin stores explicit values."""
    policy = await CappingResolver.resolve(db)
    return ApiResponse(data=_capping_response(policy))


@router.put("", response_model=ApiResponse[CappingResponse])
async def update_capping(
    data: CappingUpdate,
    admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Store new floors. Transactions already in flight keep the floors they
    resolved at their start.
    """
    admin_id, admin_name = admin.id, admin.name
    policy = await CappingResolver.update(db, data.distributor_floor, data.reseller_floor, admin_id)

    await log_event(
        db=db,
        action=AuditAction.CAPPING_UPDATED,
        actor_id=admin_id,
        actor_name=admin_name,
        metadata={
            "distributor_floor": str(policy.distributor_floor),
            "reseller_floor": str(policy.reseller_floor)
        }
    )

    return ApiResponse(message="Capping settings updated successfully", data=_capping_response(policy))
