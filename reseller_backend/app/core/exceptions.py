"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes, stable error kinds and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("reseller.errors")


class AppException(Exception):
    """Base application exception."""

    kind = "InternalError"

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationFailedError(AppException):
    """Raised for malformed input (non-positive amount, unknown type, missing field)."""

    kind = "ValidationError"

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InsufficientPermissionsError(AppException):
    """Raised when the caller has no hierarchy rights over the target, or the action is admin-only."""

    kind = "Unauthorized"

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    kind = "NotFound"

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class InsufficientFundsError(AppException):
    """Raised when an account balance cannot cover the amount taken from it."""

    kind = "InsufficientFunds"

    def __init__(self, account_name: str, balance: Any, amount: Any):
        super().__init__(
            message=f"Insufficient balance. {account_name}'s current balance: ₹{balance}, required: ₹{amount}",
            error_code="ERR_LEDGER_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"balance": str(balance), "amount": str(amount)}
        )


class CappingViolationError(AppException):
    """Raised when a transaction would leave a balance below its tier floor."""

    kind = "CappingViolation"

    def __init__(self, account_name: str, floor: Any, balance_after: Any):
        super().__init__(
            message=f"{account_name}'s balance would go below the capping limit of ₹{floor}",
            error_code="ERR_LEDGER_002",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"floor": str(floor), "balance_after": str(balance_after)}
        )


class ConcurrencyConflictError(AppException):
    """Raised when a conditional balance update kept losing races. Safe to retry."""

    kind = "ConcurrencyConflict"

    def __init__(self, message: str = "Balance changed concurrently, please retry"):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_003",
            status_code=status.HTTP_409_CONFLICT
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    kind = "Unauthenticated"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "kind": exc.kind,
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "kind": ValidationFailedError.kind,
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry exception instances (e.g. from field validators)
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
