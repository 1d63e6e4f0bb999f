"""RescueRanger Backend - Main FastAPI Application

Multi-tenant platform for horse rescue organizations.

This module creates and configures the FastAPI application, including:
- API routers (auth, users, horses, tenant, tenant administration, audit)
- Middleware (request ID correlation, CORS, tenant resolution)
- Exception handlers rendering RFC 7807 problem details
- Health and observability endpoints
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from database import SessionLocal

# Observability
from observability.logging_config import configure_logging
from observability.middleware import RequestIDMiddleware
from observability.request_id import REQUEST_ID_HEADER
from observability.router import router as observability_router

# Tenancy
from tenancy.cache import TenantCache, get_redis_client
from tenancy.circuit_breaker import CircuitBreaker
from tenancy.errors import PROBLEM_CONTENT_TYPE, TenantIsolationError, problem_body, problem_response
from tenancy.metrics import ResolutionMetrics
from tenancy.middleware import TenantResolutionMiddleware
from tenancy.router import admin_router as tenant_admin_router
from tenancy.router import router as tenant_router

# Authentication, users and domain routers
from audit.collector import TenantAuditCollector
from audit.router import router as audit_router
from auth.router import router as auth_router
from horses.router import router as horses_router
from users.router import router as users_router


logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler (startup and shutdown logging)."""
    settings: Settings = app.state.settings
    logger.info("RescueRanger API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Tenant cache: {'enabled' if app.state.tenant_cache.enabled else 'disabled'}")

    yield

    logger.info("RescueRanger API shutting down...")


def _problem(request: Request, status_code: int, title: str, detail: Any, **extra) -> JSONResponse:
    content = problem_body(status_code=status_code, title=title, detail=detail, instance=request.url.path)
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content, media_type=PROBLEM_CONTENT_TYPE)


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as problem details carrying the request ID."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning(f"Validation error on {request.method} {request.url.path}")
        return _problem(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation failed",
            "Request validation failed",
            errors=jsonable_encoder(exc.errors()),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        response = _problem(request, exc.status_code, _status_title(exc.status_code), exc.detail)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(TenantIsolationError)
    async def isolation_exception_handler(request: Request, exc: TenantIsolationError) -> JSONResponse:
        logger.warning(f"Tenant isolation violation on {request.method} {request.url.path}: {exc}")
        return problem_response(exc.to_error(), request)

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        """Log the full error but return a generic message."""
        logger.error(f"Database error on {request.method} {request.url.path}", exc_info=exc)
        return _problem(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error",
            "A database error occurred. Please try again later.",
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled exception on {request.method} {request.url.path}", exc_info=exc)
        return _problem(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error",
            "An unexpected error occurred. Please try again later.",
        )


def _status_title(status_code: int) -> str:
    return {
        400: "Bad request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not found",
        405: "Method not allowed",
        409: "Conflict",
        422: "Validation failed",
    }.get(status_code, "Error")


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    redis_client: Optional[Redis] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings (defaults to the environment settings)
        session_factory: Session factory for requests and tenant lookups
            (defaults to ``database.SessionLocal``)
        redis_client: Redis client for the tenant cache and audit collector;
            when omitted a client is created from ``REDIS_URL`` (None if Redis
            is unreachable, in which case both degrade gracefully)

    Returns:
        FastAPI: The configured application
    """
    settings = settings or get_settings()
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    if redis_client is None:
        redis_client = get_redis_client(settings.REDIS_URL, settings.TENANT_CACHE_TIMEOUT_MS)

    docs_enabled = not settings.is_production
    app = FastAPI(
        title="RescueRanger API",
        description="Multi-tenant platform for horse rescue organizations",
        version="0.1.0",
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory or SessionLocal
    app.state.redis_client = redis_client
    app.state.tenant_cache = TenantCache(
        redis_client,
        ttl_seconds=settings.TENANT_CACHE_TTL_MINUTES * 60,
        breaker=CircuitBreaker(
            "tenant-cache",
            failure_threshold=settings.TENANT_CACHE_FAILURE_THRESHOLD,
            recovery_seconds=settings.TENANT_CACHE_RECOVERY_SECONDS,
        ),
    )
    app.state.audit_collector = TenantAuditCollector(redis_client, max_events=settings.AUDIT_MAX_EVENTS)
    app.state.resolution_metrics = ResolutionMetrics(window_minutes=settings.METRICS_WINDOW_MINUTES)

    # Middleware: the last one added runs first. Request IDs wrap everything,
    # tenant resolution runs innermost.
    app.add_middleware(TenantResolutionMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "X-Tenant-Id", "X-Tenant-Name"],
    )
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    # Observability (health, metrics, ready)
    app.include_router(observability_router)

    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(tenant_router, prefix=API_PREFIX)
    app.include_router(tenant_admin_router, prefix=API_PREFIX)
    app.include_router(users_router, prefix=API_PREFIX)
    app.include_router(horses_router, prefix=API_PREFIX)
    app.include_router(audit_router, prefix=API_PREFIX)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, Any]:
        """Root endpoint - API information."""
        return {
            "name": "RescueRanger API",
            "version": "0.1.0",
            "status": "running",
            "docs": "/docs" if docs_enabled else None,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=not get_settings().is_production,
        log_level=get_settings().LOG_LEVEL.lower(),
    )
