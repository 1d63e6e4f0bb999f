"""Observability API endpoints.

Provides metrics, health checks, and readiness probes for monitoring. None
of these paths resolve a tenant (see ``TENANT_BYPASS_PATHS``).
"""

from typing import Dict

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from database import get_db
from .health import (
    ComponentHealth,
    check_database_health,
    check_redis_health,
    check_tenant_resolution_health,
    get_overall_health,
    HealthStatus,
)

router = APIRouter(tags=["Observability"])


def _health_response(components: Dict[str, ComponentHealth]) -> JSONResponse:
    overall_status = get_overall_health(components)
    response_data = {
        "status": overall_status.value,
        "components": {name: comp.to_dict() for name, comp in components.items()},
    }
    # Return 503 if unhealthy
    status_code = 200 if overall_status != HealthStatus.UNHEALTHY else 503
    return JSONResponse(content=response_data, status_code=status_code)


@router.get(
    "/metrics",
    summary="Prometheus metrics endpoint",
    include_in_schema=False,
)
def metrics():
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@router.get(
    "/health",
    summary="Health check endpoint",
    description="Returns health status of the database and Redis",
)
def health_check(request: Request, db: Session = Depends(get_db)):
    """Check health of all system components.

    Returns 200 OK unless a component is unhealthy, 503 otherwise.
    """
    components = {
        "database": check_database_health(db),
        "redis": check_redis_health(request.app.state.redis_client),
    }
    return _health_response(components)


@router.get(
    "/health/tenant",
    summary="Tenant resolution health check",
    description="Exercises the tenant directory and cache used by tenant resolution",
)
def tenant_health_check(request: Request, db: Session = Depends(get_db)):
    components = {
        "tenant_resolution": check_tenant_resolution_health(
            db, request.app.state.tenant_cache, request.app.state.settings
        ),
    }
    return _health_response(components)


@router.get(
    "/ready",
    summary="Readiness check endpoint",
    description="Returns readiness status (for Kubernetes readiness probes)",
)
def readiness_check(db: Session = Depends(get_db)):
    """Check if application is ready to serve traffic (database reachable)."""
    db_health = check_database_health(db)

    if db_health.status == HealthStatus.HEALTHY:
        return {
            "status": "ready",
            "message": "Application is ready to serve traffic"
        }
    return JSONResponse(
        content={
            "status": "not_ready",
            "message": db_health.message
        },
        status_code=503
    )
