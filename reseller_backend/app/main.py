"""
FastAPI Application Entry Point.

This is the main application file for the Reseller Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from reseller_backend.app.core.config import settings
from reseller_backend.app.api.v1.router import router as api_v1_router
from reseller_backend.app.core.observability import ObservabilityMiddleware
from reseller_backend.app.core.redis_client import ping_redis
from reseller_backend.app.db.session import engine, Base
from reseller_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.subscriber import Subscriber
from reseller_backend.app.models.package import Package
from reseller_backend.app.models.capping_settings import CappingSettings
from reseller_backend.app.models.ledger_entry import LedgerEntry
from reseller_backend.app.models.audit_log import AuditLog

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.
    
    1. Creates database tables on startup.
    2. Handles graceful shutdown (if needed).
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Balance ledger and validity cascade backend for the IPTV reseller hierarchy",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.
    
    An unreachable Redis reports "degraded" and still answers 200.
    
    Returns:
        dict: Status, Redis reachability and application information
    """
    redis_ok = await ping_redis()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "redis": "connected" if redis_ok else "unavailable",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.
    
    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Reseller Backend API",
        "docs": "/docs",
        "health": "/health",
    }
