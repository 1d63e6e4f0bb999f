"""FastAPI routers for the current tenant and for tenant administration.

This module provides endpoints for:
- GET /tenant/current - Public information and branding of the request's tenant
- GET/PATCH /tenant/current/configuration - Tenant configuration (PATCH: TenantAdmin)
- GET /tenant/metrics - Usage and resolution metrics (TenantAdmin)
- GET /tenant/audit-events - Recent collected audit events (TenantAdmin)
- /admin/tenants/... - Tenant lifecycle management (SystemAdmin)

Configuration updates are deep-merged into the stored configuration and
validated against ``TenantConfiguration`` before being saved.
"""

from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import ValidationError

from auth.principal import Principal
from authz.dependencies import require_policy
from authz.policies import SYSTEM_ADMIN, TENANT_ADMIN, TENANT_USER
from models.tenant import TenantStatus
from .dependencies import Directory, RequiredTenantContext
from .errors import Result, problem_response
from .resolver import validate_subdomain
from .schemas import (
    ApiKeyResponse,
    CurrentTenantResponse,
    SubdomainAvailability,
    TenantConfiguration,
    TenantConfigurationUpdate,
    TenantCreate,
    TenantListResponse,
    TenantResponse,
    TenantStatusChange,
    TenantUpdate,
)
from .service import TenantAdminService


router = APIRouter(prefix="/tenant", tags=["Tenant"])
admin_router = APIRouter(prefix="/admin/tenants", tags=["Tenant Administration"])


def deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with update values taking precedence.

    Nested dictionaries are merged recursively. Lists and other values are replaced.

    Example:
        base = {"a": 1, "b": {"c": 2, "d": 3}}
        update = {"b": {"c": 99}}
        result = deep_merge(base, update)
        # result = {"a": 1, "b": {"c": 99, "d": 3}}
    """
    result = base.copy()

    for key, value in update.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _admin_service(request: Request, directory: Directory, principal: Principal) -> TenantAdminService:
    return TenantAdminService(directory, request.app.state.audit_collector, principal, request)


def _tenant_response(result: Result, request: Request):
    if not result.is_ok:
        return problem_response(result.error, request)
    return TenantResponse.from_tenant(result.value)


# ----------------------------------------------------------------------
# Current tenant
# ----------------------------------------------------------------------


@router.get("/current", response_model=CurrentTenantResponse)
def get_current_tenant(context: RequiredTenantContext) -> CurrentTenantResponse:
    """Public view of the tenant serving this request (no authentication).

    Used by frontends to render tenant branding before login.
    """
    configuration = context.configuration
    return CurrentTenantResponse(
        id=context.tenant_id,
        name=context.name,
        subdomain=context.subdomain,
        status=context.status,
        branding=configuration.branding,
        advanced_features_enabled=configuration.advanced_features_enabled,
        feature_flags=configuration.feature_flags,
    )


@router.get(
    "/current/configuration",
    response_model=TenantConfiguration,
    dependencies=[Depends(require_policy(TENANT_USER))],
)
def get_tenant_configuration(context: RequiredTenantContext) -> TenantConfiguration:
    return context.configuration


@router.patch("/current/configuration", response_model=TenantConfiguration)
def update_tenant_configuration(
    update: TenantConfigurationUpdate,
    request: Request,
    context: RequiredTenantContext,
    directory: Directory,
    principal: Principal = Depends(require_policy(TENANT_ADMIN)),
):
    """Update the configuration of the current tenant (TenantAdmin).

    Performs a deep merge of the provided fields into the stored
    configuration. Only provided fields are updated.

    Raises:
        HTTPException 422: If the merged configuration is invalid

    Example Request:
        PATCH /tenant/current/configuration
        {"branding": {"primary_color": "#112233"}, "feature_flags": {"adoptions": true}}
    """
    tenant = directory.get_record(context.tenant_id)
    try:
        current = TenantConfiguration(**((tenant.configuration if tenant else None) or {}))
    except ValidationError:
        # Start from defaults if the stored configuration no longer validates
        current = directory.default_configuration()

    merged = deep_merge(current.model_dump(), update.model_dump(exclude_none=True))
    try:
        validated = TenantConfiguration(**merged)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid configuration: {str(e)}",
        )

    result = _admin_service(request, directory, principal).update_configuration(context.tenant_id, validated)
    if not result.is_ok:
        return problem_response(result.error, request)
    return validated


@router.get("/metrics")
def get_tenant_metrics(
    request: Request,
    context: RequiredTenantContext,
    window_minutes: int = Query(60, ge=1, le=24 * 60),
    _: Principal = Depends(require_policy(TENANT_ADMIN)),
) -> Dict[str, Any]:
    """Usage metrics of the current tenant and process-wide resolution metrics."""
    usage = request.app.state.audit_collector.get_tenant_metrics(context.tenant_id, window_minutes)
    return {
        "tenant_id": str(context.tenant_id),
        "usage": usage.model_dump(mode="json"),
        "resolution": request.app.state.resolution_metrics.get_rolling_metrics().to_dict(),
    }


@router.get("/audit-events")
def get_tenant_audit_events(
    request: Request,
    context: RequiredTenantContext,
    limit: int = Query(100, ge=1, le=1000),
    _: Principal = Depends(require_policy(TENANT_ADMIN)),
) -> Dict[str, Any]:
    events = request.app.state.audit_collector.get_recent_events(context.tenant_id, limit)
    return {
        "tenant_id": str(context.tenant_id),
        "events": [event.model_dump(mode="json") for event in events],
        "count": len(events),
    }


# ----------------------------------------------------------------------
# Tenant administration (system administrators)
# ----------------------------------------------------------------------


@admin_router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
def create_tenant(
    data: TenantCreate,
    request: Request,
    directory: Directory,
    principal: Principal = Depends(require_policy(SYSTEM_ADMIN)),
):
    """Create a tenant in PROVISIONING (or ACTIVE with ``activate``).

    Raises:
        400: Reserved subdomain
        409: Subdomain already in use
    """
    result = _admin_service(request, directory, principal).create_tenant(data)
    return _tenant_response(result, request)


@admin_router.get(
    "",
    response_model=TenantListResponse,
    dependencies=[Depends(require_policy(SYSTEM_ADMIN))],
)
def list_tenants(
    directory: Directory,
    status_filter: Optional[TenantStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> TenantListResponse:
    tenants, total = directory.list_tenants(status_filter, page, page_size)
    return TenantListResponse(
        items=[TenantResponse.from_tenant(t) for t in tenants],
        total=total,
        page=page,
        page_size=page_size,
    )


@admin_router.get(
    "/subdomain-availability",
    response_model=SubdomainAvailability,
    dependencies=[Depends(require_policy(SYSTEM_ADMIN))],
)
def check_subdomain_availability(
    directory: Directory,
    subdomain: str = Query(..., min_length=1, max_length=63),
) -> SubdomainAvailability:
    checked = validate_subdomain(subdomain)
    if not checked.is_ok:
        return SubdomainAvailability(subdomain=subdomain, available=False, reason=checked.error.detail)
    normalized = checked.value
    if directory.is_reserved(normalized):
        return SubdomainAvailability(subdomain=normalized, available=False, reason="Subdomain is reserved")
    if not directory.is_subdomain_available(normalized):
        return SubdomainAvailability(subdomain=normalized, available=False, reason="Subdomain is already in use")
    return SubdomainAvailability(subdomain=normalized, available=True)


@admin_router.get(
    "/{tenant_id}",
    response_model=TenantResponse,
    dependencies=[Depends(require_policy(SYSTEM_ADMIN))],
)
def get_tenant(tenant_id: UUID, directory: Directory):
    tenant = directory.get_record(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Tenant {tenant_id} not found")
    return TenantResponse.from_tenant(tenant)


@admin_router.patch("/{tenant_id}", response_model=TenantResponse)
def update_tenant(
    tenant_id: UUID,
    changes: TenantUpdate,
    request: Request,
    directory: Directory,
    principal: Principal = Depends(require_policy(SYSTEM_ADMIN)),
):
    result = _admin_service(request, directory, principal).update_tenant(tenant_id, changes)
    return _tenant_response(result, request)


@admin_router.delete("/{tenant_id}", response_model=TenantResponse)
def delete_tenant(
    tenant_id: UUID,
    request: Request,
    directory: Directory,
    principal: Principal = Depends(require_policy(SYSTEM_ADMIN)),
):
    """Soft delete: the tenant moves to PENDING_DELETION and stops resolving."""
    result = _admin_service(request, directory, principal).delete_tenant(tenant_id)
    return _tenant_response(result, request)


@admin_router.post("/{tenant_id}/suspend", response_model=TenantResponse)
def suspend_tenant(
    tenant_id: UUID,
    request: Request,
    directory: Directory,
    body: Optional[TenantStatusChange] = None,
    principal: Principal = Depends(require_policy(SYSTEM_ADMIN)),
):
    reason = body.reason if body else None
    result = _admin_service(request, directory, principal).suspend_tenant(tenant_id, reason)
    return _tenant_response(result, request)


@admin_router.post("/{tenant_id}/reactivate", response_model=TenantResponse)
def reactivate_tenant(
    tenant_id: UUID,
    request: Request,
    directory: Directory,
    principal: Principal = Depends(require_policy(SYSTEM_ADMIN)),
):
    result = _admin_service(request, directory, principal).reactivate_tenant(tenant_id)
    return _tenant_response(result, request)


@admin_router.post("/{tenant_id}/rotate-api-key", response_model=ApiKeyResponse)
def rotate_api_key(
    tenant_id: UUID,
    request: Request,
    directory: Directory,
    principal: Principal = Depends(require_policy(SYSTEM_ADMIN)),
):
    """Issue a new API key for the tenant. The key is only shown in this response."""
    result = _admin_service(request, directory, principal).rotate_api_key(tenant_id)
    if not result.is_ok:
        return problem_response(result.error, request)
    tenant = result.value
    return ApiKeyResponse(tenant_id=tenant.id, api_key=tenant.api_key, rotated_at=tenant.api_key_rotated_at)
