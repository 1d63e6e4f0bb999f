"""Audit logging service for security events.

This service provides a centralized interface for creating immutable audit log
entries. All security-relevant tenancy events must be logged through this
service.

Audit Events:
- LOGIN_SUCCESS, LOGIN_FAILED, TOKEN_REFRESHED, TENANT_SWITCHED
- TENANT_CREATED, TENANT_UPDATED, TENANT_STATUS_CHANGED,
  TENANT_API_KEY_ROTATED, TENANT_CONFIGURATION_UPDATED
- USER_INVITED, USER_ROLE_CHANGED, USER_REMOVED
- ALL_TENANTS_QUERY, CROSS_TENANT_WRITE
- AUTHORIZATION_DENIED, SYSTEM_ADMIN_BYPASS
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.audit_log import AuditLog
from observability.metrics import audit_failures_total


logger = logging.getLogger(__name__)


class AuditAction:
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    TENANT_SWITCHED = "TENANT_SWITCHED"
    TENANT_CREATED = "TENANT_CREATED"
    TENANT_UPDATED = "TENANT_UPDATED"
    TENANT_STATUS_CHANGED = "TENANT_STATUS_CHANGED"
    TENANT_API_KEY_ROTATED = "TENANT_API_KEY_ROTATED"
    TENANT_CONFIGURATION_UPDATED = "TENANT_CONFIGURATION_UPDATED"
    USER_INVITED = "USER_INVITED"
    USER_ROLE_CHANGED = "USER_ROLE_CHANGED"
    USER_REMOVED = "USER_REMOVED"
    ALL_TENANTS_QUERY = "ALL_TENANTS_QUERY"
    CROSS_TENANT_WRITE = "CROSS_TENANT_WRITE"
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    SYSTEM_ADMIN_BYPASS = "SYSTEM_ADMIN_BYPASS"


def log_audit_event(
    db: Session,
    tenant_id: Optional[UUID],
    action: str,
    actor_id: Optional[UUID] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditLog:
    """Create an audit log entry.

    The entry is flushed, not committed: it becomes durable together with the
    caller's transaction.

    Args:
        db: Database session
        tenant_id: Tenant the event belongs to (None for events with no tenant)
        action: Event action (e.g., "TENANT_SWITCHED", "ALL_TENANTS_QUERY")
        actor_id: User who performed the action (None for anonymous/system events)
        entity_type: Type of entity affected (e.g., "tenant", "user")
        entity_id: ID of affected entity
        metadata: Additional context as JSON (e.g., {"old_role": "VOLUNTEER", "new_role": "MANAGER"})
        ip_address: Client IP address (IPv4 or IPv6)
        user_agent: Client User-Agent header

    Returns:
        AuditLog: The created audit log entry

    Example:
        log_audit_event(
            db=db,
            tenant_id=context.tenant_id,
            action=AuditAction.USER_ROLE_CHANGED,
            actor_id=principal.user_id,
            entity_type="user",
            entity_id=user.id,
            metadata={"old_role": "VOLUNTEER", "new_role": "MANAGER"},
        )
    """
    audit_entry = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        metadata_json=metadata,
        ip_address=ip_address,
        user_agent=user_agent,
    )

    db.add(audit_entry)
    db.flush()  # Get ID without committing transaction

    return audit_entry


def client_ip(request: Request) -> Optional[str]:
    """Client address, honouring the first X-Forwarded-For hop."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else None


def log_from_request(
    db: Session,
    request: Request,
    tenant_id: Optional[UUID],
    action: str,
    actor_id: Optional[UUID] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Create audit log entry extracting IP and User-Agent from FastAPI request.

    Convenience wrapper around log_audit_event.
    """
    return log_audit_event(
        db=db,
        tenant_id=tenant_id,
        action=action,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


def try_log_audit_event(db: Optional[Session], **kwargs) -> Optional[AuditLog]:
    """Best-effort variant for events recorded on the way to a denial.

    Used where the request is about to fail anyway: a failure to write the
    entry is logged and counted but never replaces the original outcome.
    """
    if db is None:
        return None
    try:
        return log_audit_event(db, **kwargs)
    except SQLAlchemyError as e:
        db.rollback()
        audit_failures_total.labels(event_type=kwargs.get("action", "unknown")).inc()
        logger.error(f"Failed to write audit event {kwargs.get('action')}: {e}")
        return None
