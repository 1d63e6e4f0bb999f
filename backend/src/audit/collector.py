"""Recent tenant audit events kept in Redis lists.

Keys:
- ``tenant_audit:<tenant>:recent``: access events, 24 hours
- ``tenant_audit:<tenant>:admin_ops``: admin operations, 30 days
- ``security_audit:<tenant>:cross_tenant``: cross-tenant attempts, 7 days
- ``security_audit:global:cross_tenant``: all cross-tenant attempts, 30 days

Each list keeps the newest ``max_events`` entries (default 1000), newest
first. The collector never raises: recording and reading failures are logged
and counted, and reads degrade to empty lists. Security events that must
survive Redis go to the persisted audit log instead (``audit.service``).
"""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Type
from uuid import UUID

from pydantic import ValidationError
from redis import Redis
from redis.exceptions import RedisError

from observability.metrics import audit_failures_total
from .schemas import (
    CrossTenantAccessEvent,
    EndpointCount,
    TenantAccessEvent,
    TenantAdminOperationEvent,
    TenantAuditEvent,
    TenantUsageMetrics,
)


logger = logging.getLogger(__name__)

RECENT_TTL = timedelta(hours=24)
CROSS_TENANT_TTL = timedelta(days=7)
LONG_TTL = timedelta(days=30)

SLOW_REQUEST_MS = 1000
TOP_ENDPOINTS = 10

_EVENT_TYPES = {
    "TENANT_ACCESS": TenantAccessEvent,
    "CROSS_TENANT_ACCESS": CrossTenantAccessEvent,
    "TENANT_ADMIN_OPERATION": TenantAdminOperationEvent,
}


def _recent_key(tenant_id) -> str:
    return f"tenant_audit:{tenant_id}:recent"


def _admin_key(tenant_id) -> str:
    return f"tenant_audit:{tenant_id}:admin_ops"


def _cross_tenant_key(tenant_id=None) -> str:
    return f"security_audit:{tenant_id if tenant_id else 'global'}:cross_tenant"


class TenantAuditCollector:
    """Records and reads tenant audit events.

    Args:
        client: Redis client, or None (events are then only logged)
        max_events: Entries kept per list
    """

    def __init__(self, client: Optional[Redis], max_events: int = 1000):
        self.client = client
        self.max_events = max_events

    def record_access(self, event: TenantAccessEvent) -> None:
        logger.info(
            f"Tenant access: {event.tenant_id} - {event.user_email} - {event.http_method} "
            f"{event.endpoint} - {event.status_code} - {event.response_time_ms:.1f}ms",
            extra={"tenant_id": event.tenant_id, "user_id": event.user_id},
        )
        self._push(event, [(_recent_key(event.tenant_id), RECENT_TTL)])

    def record_cross_tenant_attempt(self, event: CrossTenantAccessEvent) -> None:
        logger.warning(
            f"Cross-tenant access attempt: {event.user_email} from tenant {event.tenant_id} "
            f"targeting {event.target_tenant_id} at {event.attempted_endpoint} "
            f"(blocked: {event.was_blocked}): {event.reason}",
            extra={"tenant_id": event.tenant_id, "user_id": event.user_id},
        )
        keys = [(_cross_tenant_key(), LONG_TTL)]
        if event.tenant_id:
            keys.insert(0, (_cross_tenant_key(event.tenant_id), CROSS_TENANT_TTL))
        self._push(event, keys)

    def record_admin_operation(self, event: TenantAdminOperationEvent) -> None:
        logger.info(
            f"Tenant admin operation: {event.tenant_id} - {event.user_email} - {event.operation} "
            f"{event.resource_type}:{event.resource_id} - success: {event.success}",
            extra={"tenant_id": event.tenant_id, "user_id": event.user_id},
        )
        self._push(event, [(_admin_key(event.tenant_id), LONG_TTL)])

    def get_recent_events(self, tenant_id: UUID, limit: int = 100) -> List[TenantAuditEvent]:
        """Access events and admin operations of a tenant, newest first."""
        events = self._read(_recent_key(tenant_id)) + self._read(_admin_key(tenant_id))
        return self._newest(events, limit)

    def get_admin_operations(self, tenant_id: UUID, limit: int = 100) -> List[TenantAuditEvent]:
        return self._newest(self._read(_admin_key(tenant_id)), limit)

    def get_cross_tenant_events(self, tenant_id: Optional[UUID] = None, limit: int = 100) -> List[TenantAuditEvent]:
        """Cross-tenant attempts from one tenant, or from all tenants when ``tenant_id`` is None."""
        return self._newest(self._read(_cross_tenant_key(tenant_id)), limit)

    def get_tenant_metrics(self, tenant_id: UUID, window_minutes: int = 60) -> TenantUsageMetrics:
        """Usage figures over the last ``window_minutes`` from collected events."""
        since = datetime.now(timezone.utc) - timedelta(minutes=window_minutes)
        access = [
            e for e in self._read(_recent_key(tenant_id))
            if isinstance(e, TenantAccessEvent) and e.timestamp >= since
        ]
        cross_tenant = [
            e for e in self._read(_cross_tenant_key(tenant_id))
            if isinstance(e, CrossTenantAccessEvent) and e.timestamp >= since
        ]
        admin_ops = [e for e in self._read(_admin_key(tenant_id)) if e.timestamp >= since]

        metrics = TenantUsageMetrics(
            tenant_id=tenant_id,
            window_minutes=window_minutes,
            cross_tenant_attempts=len(cross_tenant),
            blocked_cross_tenant_attempts=sum(1 for e in cross_tenant if e.was_blocked),
            admin_operations=len(admin_ops),
        )
        if not access:
            return metrics

        endpoints = Counter(e.endpoint for e in access)
        statuses = Counter(str(e.status_code) for e in access)
        errors = sum(1 for e in access if e.status_code >= 400)

        metrics.total_requests = len(access)
        metrics.popular_endpoints = [
            EndpointCount(endpoint=endpoint, count=count)
            for endpoint, count in endpoints.most_common(TOP_ENDPOINTS)
        ]
        metrics.status_codes = dict(statuses)
        metrics.error_rate = errors / len(access)
        metrics.slow_requests = sum(1 for e in access if e.response_time_ms > SLOW_REQUEST_MS)
        metrics.average_response_time_ms = sum(e.response_time_ms for e in access) / len(access)
        return metrics

    def _push(self, event: TenantAuditEvent, keys) -> None:
        if self.client is None:
            return
        payload = event.model_dump_json()
        try:
            pipe = self.client.pipeline()
            for key, ttl in keys:
                pipe.lpush(key, payload)
                pipe.ltrim(key, 0, self.max_events - 1)
                pipe.expire(key, ttl)
            pipe.execute()
        except (RedisError, OSError) as e:
            audit_failures_total.labels(event_type=event.event_type).inc()
            logger.error(f"Failed to record {event.event_type} audit event: {e}")

    def _read(self, key: str) -> List[TenantAuditEvent]:
        if self.client is None:
            return []
        try:
            raw_events = self.client.lrange(key, 0, self.max_events - 1)
        except (RedisError, OSError) as e:
            logger.error(f"Failed to read audit events from {key}: {e}")
            return []

        events = []
        for raw in raw_events:
            try:
                events.append(self._parse(raw))
            except (ValidationError, ValueError) as e:
                logger.warning(f"Skipping unreadable audit event in {key}: {e}")
        return events

    @staticmethod
    def _parse(raw) -> TenantAuditEvent:
        base = TenantAuditEvent.model_validate_json(raw)
        model: Type[TenantAuditEvent] = _EVENT_TYPES.get(base.event_type, TenantAuditEvent)
        return model.model_validate_json(raw)

    @staticmethod
    def _newest(events: List[TenantAuditEvent], limit: int) -> List[TenantAuditEvent]:
        return sorted(events, key=lambda e: e.timestamp, reverse=True)[:max(limit, 0)]
