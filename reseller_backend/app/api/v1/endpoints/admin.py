"""
Admin API Endpoints.

Audit trail access for admins.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from reseller_backend.app.db.session import get_db
from reseller_backend.app.models.account import Account
from reseller_backend.app.schemas.admin import AuditLogResponse, AuditTrailResponse
from reseller_backend.app.schemas.common import ApiResponse
from reseller_backend.app.core.guards import require_admin
from reseller_backend.app.services.audit import get_audit_trail, get_account_audit_history

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/audit-logs", response_model=ApiResponse[AuditTrailResponse])
async def get_audit_logs(
    account_id: int = Query(None, description="Filter by target account ID"),
    action: str = Query(None, description="Filter by action type"),
    limit: int = Query(100, ge=1, le=500, description="Maximum records to return"),
    admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Get audit trail with optional filtering (admin-only).
    """
    logs = await get_audit_trail(
        db=db,
        target_account_id=account_id,
        action=action,
        limit=limit
    )

    return ApiResponse(data=AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs)
    ))


@router.get("/accounts/{account_id}/audit-history", response_model=ApiResponse[AuditTrailResponse])
async def get_account_history(
    account_id: int,
    limit: int = Query(50, ge=1, le=500),
    admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Everything done by or to an account (admin-only).
    """
    logs = await get_account_audit_history(db=db, account_id=account_id, limit=limit)

    return ApiResponse(data=AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs)
    ))
