"""
Admin Operations API Endpoints.

Maintenance endpoints for the account hierarchy.
"""

from dataclasses import asdict
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from reseller_backend.app.db.session import get_db
from reseller_backend.app.models.account import Account
from reseller_backend.app.schemas.admin import SweepResponse
from reseller_backend.app.schemas.common import ApiResponse
from reseller_backend.app.core.guards import require_admin
from reseller_backend.app.domain.hierarchy.cascade_engine import CascadeEngine

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.post("/validity-sweep", response_model=ApiResponse[SweepResponse])
async def trigger_validity_sweep(
    admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Run the validity check over every distributor, then every reseller.

    Accounts are otherwise only expired when they are read; this catches
    accounts nobody has looked at. Safe to run repeatedly.
    """
    report = await CascadeEngine(db).sweep()
    return ApiResponse(
        message=f"Validity sweep complete, {report.accounts_expired} accounts expired",
        data=SweepResponse(**asdict(report))
    )
