"""
Package API Endpoints.

Minimal package catalog: the ledger only needs a cost and a duration.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from reseller_backend.app.db.session import get_db
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.package import Package
from reseller_backend.app.schemas.packages import PackageCreate, PackageResponse
from reseller_backend.app.schemas.common import ApiResponse
from reseller_backend.app.core.dependencies import get_current_user
from reseller_backend.app.core.guards import require_admin
from reseller_backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/packages", tags=["Packages"])


@router.post("", response_model=ApiResponse[PackageResponse], status_code=status.HTTP_201_CREATED)
async def create_package(
    data: PackageCreate,
    admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    admin_id, admin_name = admin.id, admin.name
    package = Package(name=data.name.strip(), cost=data.cost, duration_days=data.duration_days)

    db.add(package)
    await db.commit()
    await db.refresh(package)

    await log_event(
        db=db,
        action=AuditAction.PACKAGE_CREATED,
        actor_id=admin_id,
        actor_name=admin_name,
        metadata={"package_id": package.id, "name": package.name, "cost": str(package.cost)}
    )

    return ApiResponse(message="Package created successfully", data=PackageResponse.model_validate(package))


@router.get("", response_model=ApiResponse[List[PackageResponse]])
async def list_packages(
    current_user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(select(Package).order_by(Package.name))
    return ApiResponse(data=[PackageResponse.model_validate(p) for p in result.scalars().all()])
