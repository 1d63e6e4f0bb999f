"""Health check utilities for RescueRanger.

Provides health and readiness checks for the database, the Redis backend
shared by the tenant cache and the audit collector, and the tenant
resolution path as a whole.
"""

import time
from enum import Enum
from typing import Dict, Optional, TYPE_CHECKING
from dataclasses import dataclass, field

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .logging_config import get_logger

if TYPE_CHECKING:
    from config import Settings
    from tenancy.cache import TenantCache

logger = get_logger(__name__)

# Database probes slower than this mark tenant resolution as degraded
SLOW_DATABASE_MS = 100.0


class HealthStatus(str, Enum):
    """Health check status enum."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class ComponentHealth:
    """Health status for a single component."""
    status: HealthStatus
    message: Optional[str] = None
    latency_ms: Optional[float] = None
    details: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "status": self.status.value,
            "message": self.message,
            "latency_ms": self.latency_ms,
        }
        if self.details:
            data["details"] = self.details
        return data


def check_database_health(db: Session) -> ComponentHealth:
    """Check database connectivity.

    Args:
        db: Database session

    Returns:
        ComponentHealth: Database health status
    """
    try:
        start = time.perf_counter()
        db.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000

        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Database connection OK",
            latency_ms=round(latency_ms, 2)
        )
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Database error: {str(e)}"
        )


def check_redis_health(client: Optional[Redis]) -> ComponentHealth:
    """Check Redis connectivity.

    Redis only backs the tenant cache and the audit collector, both of which
    degrade gracefully, so a missing or failing Redis is DEGRADED rather than
    UNHEALTHY.

    Args:
        client: Redis client, or None when Redis was unavailable at startup

    Returns:
        ComponentHealth: Redis health status
    """
    if client is None:
        return ComponentHealth(status=HealthStatus.DEGRADED, message="Redis not configured")
    try:
        start = time.perf_counter()
        client.ping()
        latency_ms = (time.perf_counter() - start) * 1000

        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Redis connection OK",
            latency_ms=round(latency_ms, 2)
        )
    except (RedisError, OSError) as e:
        logger.warning(f"Redis health check failed: {e}")
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message=f"Redis error: {str(e)}"
        )


def check_tenant_resolution_health(
    db: Session,
    cache: "TenantCache",
    settings: "Settings",
) -> ComponentHealth:
    """Exercise the tenant lookup path end to end.

    Looks up the development tenant when one is configured outside
    production, probes the cache backend and counts active tenants.

    Returns:
        ComponentHealth: UNHEALTHY if the database cannot be queried,
        DEGRADED if the probe took longer than 100 ms or the cache is down
    """
    from tenancy.directory import TenantDirectory

    directory = TenantDirectory(db, cache, settings)
    details: Dict[str, object] = {}
    try:
        start = time.perf_counter()
        if settings.DEVELOPMENT_TENANT and not settings.is_production:
            details["development_tenant_found"] = (
                directory.get_by_subdomain(settings.DEVELOPMENT_TENANT) is not None
            )
        details["active_tenants"] = directory.count_active()
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
    except SQLAlchemyError as e:
        logger.error(f"Tenant resolution health check failed: {e}", exc_info=True)
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Tenant lookup error: {str(e)}",
        )

    cache_ok = cache.ping()
    details["cache_available"] = cache_ok
    details["cache_circuit_open"] = cache.breaker.is_open

    problems = []
    if latency_ms > SLOW_DATABASE_MS:
        problems.append(f"tenant lookup took {latency_ms} ms")
    if not cache_ok:
        problems.append("tenant cache unavailable")

    if problems:
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message="; ".join(problems),
            latency_ms=latency_ms,
            details=details,
        )
    return ComponentHealth(
        status=HealthStatus.HEALTHY,
        message="Tenant resolution OK",
        latency_ms=latency_ms,
        details=details,
    )


def get_overall_health(components: Dict[str, ComponentHealth]) -> HealthStatus:
    """Determine overall health from component statuses.

    Args:
        components: Dictionary of component health statuses

    Returns:
        HealthStatus: Overall system health
    """
    if all(c.status == HealthStatus.HEALTHY for c in components.values()):
        return HealthStatus.HEALTHY

    if any(c.status == HealthStatus.UNHEALTHY for c in components.values()):
        return HealthStatus.UNHEALTHY

    return HealthStatus.DEGRADED
