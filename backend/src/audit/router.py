"""Audit query endpoints.

All endpoints in this router are read-only. Persisted audit logs are
immutable and cannot be created, updated, or deleted through the API.

- GET /audit-logs: persisted audit log of the current tenant (TenantAdmin),
  filterable by action, entity type and date range, paged
- GET /admin/cross-tenant-events: cross-tenant attempts collected across all
  tenants (SystemAdmin)
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select

from authz.dependencies import require_policy
from authz.policies import SYSTEM_ADMIN, TENANT_ADMIN
from models.audit_log import AuditLog
from tenancy.dependencies import RequiredTenantContext, TenantDB
from .schemas import AuditLogListResponse, AuditLogResponse


router = APIRouter(tags=["Audit Logs"])


@router.get(
    "/audit-logs",
    response_model=AuditLogListResponse,
    summary="Query the tenant's audit log (TenantAdmin)",
    dependencies=[Depends(require_policy(TENANT_ADMIN))],
)
def query_audit_logs(
    context: RequiredTenantContext,
    db: TenantDB,
    action: Optional[str] = Query(None, description="Filter by action type (e.g., LOGIN_FAILED)"),
    entity_type: Optional[str] = Query(None, description="Filter by entity type (e.g., user, tenant)"),
    start_date: Optional[datetime] = Query(None, description="Minimum created_at (ISO 8601)"),
    end_date: Optional[datetime] = Query(None, description="Maximum created_at (ISO 8601)"),
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    per_page: int = Query(50, ge=1, le=100, description="Entries per page (max 100)"),
) -> AuditLogListResponse:
    """Query audit logs of the current tenant, newest first.

    Audit entries carry a plain tenant_id column, so the tenant filter is
    applied here explicitly.

    Example:
        GET /audit-logs?action=LOGIN_FAILED&start_date=2025-01-01T00:00:00Z&page=1&per_page=50
    """
    conditions = [AuditLog.tenant_id == context.tenant_id]
    if action:
        conditions.append(AuditLog.action == action)
    if entity_type:
        conditions.append(AuditLog.entity_type == entity_type)
    if start_date:
        conditions.append(AuditLog.created_at >= start_date)
    if end_date:
        conditions.append(AuditLog.created_at <= end_date)

    total = db.execute(select(func.count()).select_from(AuditLog).where(*conditions)).scalar_one()
    entries = db.scalars(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    ).all()

    return AuditLogListResponse(
        entries=[AuditLogResponse.model_validate(entry) for entry in entries],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/admin/cross-tenant-events",
    summary="Cross-tenant access attempts across all tenants (SystemAdmin)",
    dependencies=[Depends(require_policy(SYSTEM_ADMIN))],
)
def list_cross_tenant_events(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
) -> Dict[str, Any]:
    events = request.app.state.audit_collector.get_cross_tenant_events(None, limit)
    return {
        "events": [event.model_dump(mode="json") for event in events],
        "count": len(events),
    }
