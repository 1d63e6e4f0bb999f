"""Pydantic schemas for audit endpoints and audit events.

Persisted audit log entries are read-only through the API. The event models
below are the records kept in Redis lists by ``TenantAuditCollector``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditLogResponse(BaseModel):
    """Response schema for persisted audit log entries."""
    id: UUID = Field(..., description="Audit log entry unique identifier")
    tenant_id: Optional[UUID] = Field(None, description="Tenant ID (None for events with no tenant)")
    actor_id: Optional[UUID] = Field(None, description="User who performed the action (None for anonymous)")
    action: str = Field(..., description="Event action (LOGIN_SUCCESS, TENANT_SWITCHED, etc.)")
    entity_type: Optional[str] = Field(None, description="Type of entity affected (tenant, user, etc.)")
    entity_id: Optional[str] = Field(None, description="ID of affected entity")
    metadata_json: Optional[dict] = Field(None, serialization_alias="metadata", description="Additional context")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client User-Agent header")
    created_at: datetime = Field(..., description="Event timestamp")

    class Config:
        from_attributes = True


class AuditLogListResponse(BaseModel):
    """Paged persisted audit log entries."""
    entries: List[AuditLogResponse] = Field(..., description="List of audit log entries")
    total: int = Field(..., description="Total number of entries matching filters")
    page: int = Field(..., description="Current page number")
    per_page: int = Field(..., description="Entries per page")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantAuditEvent(BaseModel):
    """Fields shared by every collected event."""
    id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=_utcnow)
    tenant_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    user_email: str = "anonymous"
    event_type: str
    request_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    additional_data: Dict[str, Any] = Field(default_factory=dict)


class TenantAccessEvent(TenantAuditEvent):
    """One request served within a tenant."""
    event_type: str = "TENANT_ACCESS"
    endpoint: str
    http_method: str
    status_code: int
    response_time_ms: float


class CrossTenantAccessEvent(TenantAuditEvent):
    """A caller touched, or tried to touch, a tenant other than its own."""
    event_type: str = "CROSS_TENANT_ACCESS"
    target_tenant_id: Optional[UUID] = None
    target_tenant_name: Optional[str] = None
    attempted_endpoint: str = ""
    reason: str = ""
    was_blocked: bool = True


class TenantAdminOperationEvent(TenantAuditEvent):
    """An administrative change to a tenant or its users."""
    event_type: str = "TENANT_ADMIN_OPERATION"
    operation: str
    resource_type: str
    resource_id: Optional[str] = None
    previous_value: Optional[Any] = None
    new_value: Optional[Any] = None
    success: bool = True
    error_message: Optional[str] = None


class EndpointCount(BaseModel):
    endpoint: str
    count: int


class TenantUsageMetrics(BaseModel):
    """Usage of one tenant over a time window, computed from collected events."""
    tenant_id: UUID
    window_minutes: int
    total_requests: int = 0
    popular_endpoints: List[EndpointCount] = Field(default_factory=list)
    status_codes: Dict[str, int] = Field(default_factory=dict)
    error_rate: float = 0.0
    slow_requests: int = 0
    average_response_time_ms: float = 0.0
    cross_tenant_attempts: int = 0
    blocked_cross_tenant_attempts: int = 0
    admin_operations: int = 0
