"""
Audit logging service for tracking ledger movements and hierarchy changes.

Provides centralized logging for compliance and dispute resolution.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from reseller_backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"

    # Hierarchy
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    ACCOUNT_UPDATED = "ACCOUNT_UPDATED"
    ACCOUNT_DEACTIVATED = "ACCOUNT_DEACTIVATED"
    ACCOUNT_REACTIVATED = "ACCOUNT_REACTIVATED"
    ACCOUNT_EXPIRED = "ACCOUNT_EXPIRED"
    ACCOUNT_DELETED = "ACCOUNT_DELETED"

    # Ledger
    LEDGER_TRANSFER = "LEDGER_TRANSFER"
    LEDGER_SELF_CREDIT = "LEDGER_SELF_CREDIT"
    LEDGER_REVERSED = "LEDGER_REVERSED"
    CAPPING_UPDATED = "CAPPING_UPDATED"

    # Subscribers
    SUBSCRIBER_CREATED = "SUBSCRIBER_CREATED"
    SUBSCRIBER_ACTIVATED = "SUBSCRIBER_ACTIVATED"
    SUBSCRIBER_RENEWED = "SUBSCRIBER_RENEWED"
    SUBSCRIBER_UPDATED = "SUBSCRIBER_UPDATED"
    SUBSCRIBER_DEACTIVATED = "SUBSCRIBER_DEACTIVATED"
    SUBSCRIBER_RELEASED = "SUBSCRIBER_RELEASED"
    SUBSCRIBER_DELETED = "SUBSCRIBER_DELETED"

    # Catalog
    PACKAGE_CREATED = "PACKAGE_CREATED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_name: Optional[str] = None,
    target_account_id: Optional[int] = None,
    target_name: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Log a ledger, hierarchy or admin event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of account performing the action (None for system)
        actor_name: Name of actor
        target_account_id: ID of account being acted upon (if applicable)
        target_name: Name of target
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_name=actor_name,
        action=action,
        target_account_id=target_account_id,
        target_name=target_name,
        meta_data=metadata,
        ip_address=ip_address
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def log_auth_event(
    db: AsyncSession,
    action: str,
    account_id: Optional[int],
    name: Optional[str],
    ip_address: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Log an authentication event (login success/failure, logout).
    """
    return await log_event(
        db=db,
        action=action,
        actor_id=account_id,
        actor_name=name,
        ip_address=ip_address,
        metadata=metadata
    )


async def get_audit_trail(
    db: AsyncSession,
    target_account_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if target_account_id:
        query = query.where(AuditLog.target_account_id == target_account_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()


async def get_account_audit_history(
    db: AsyncSession,
    account_id: int,
    limit: int = 50
) -> list[AuditLog]:
    """
    Get complete audit history for a specific account.

    Returns:
        List of audit logs where the account was actor or target
    """
    query = select(AuditLog).where(
        (AuditLog.actor_id == account_id) | (AuditLog.target_account_id == account_id)
    ).order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
