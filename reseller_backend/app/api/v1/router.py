"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from reseller_backend.app.api.v1.endpoints import (
    auth, admin, admin_ops,
    distributors, resellers,
    credits, capping,
    subscribers, packages
)

router = APIRouter()

# Include authentication endpoints
router.include_router(auth.router)

# Account hierarchy
router.include_router(distributors.router)
router.include_router(resellers.router)

# Ledger
router.include_router(credits.router)
router.include_router(capping.router)

# Subscribers and the package catalog they are charged from
router.include_router(subscribers.router)
router.include_router(packages.router)

# Admin endpoints
router.include_router(admin.router)
router.include_router(admin_ops.router)
