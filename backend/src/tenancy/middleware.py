"""Middleware that resolves the tenant of every request.

For each non-bypassed request the middleware:
1. Creates an empty ``TenantContext`` on ``request.state.tenant_context``
2. Finds the tenant candidate (host, headers, query, development default)
3. Looks it up in the directory with its own short-lived session, bounded by
   ``TENANT_RESOLUTION_TIMEOUT_SECONDS``
4. Rejects the request with problem details, or installs the tenant and
   calls the next handler
5. Records the access event and clears the context, whatever happened

Requests that name no tenant pass through with an empty context; endpoints
that need one reject them through ``require_tenant_context`` or a policy.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from audit.schemas import TenantAccessEvent
from audit.service import client_ip
from config import Settings
from observability.request_id import get_request_id
from .context import TenantContext, TenantInfo
from .directory import TenantDirectory
from .errors import Result, TenantError, TenantErrorKind, problem_response
from .resolver import TenantCandidate, TenantResolver


logger = logging.getLogger(__name__)

TENANT_ID_RESPONSE_HEADER = "X-Tenant-Id"
TENANT_NAME_RESPONSE_HEADER = "X-Tenant-Name"

# Outcome label used for each failure kind in resolution metrics
_FAILURE_REASONS = {
    TenantErrorKind.MALFORMED_INPUT: "malformed",
    TenantErrorKind.NOT_FOUND: "not_found",
    TenantErrorKind.ACCESS_DENIED: "forbidden",
    TenantErrorKind.INTERNAL_FAILURE: "error",
}


def is_bypass_path(path: str, bypass_paths) -> bool:
    """True for paths that never resolve a tenant.

    ``/`` matches only itself; every other entry also matches its sub-paths
    (``/health`` covers ``/health/tenant``).
    """
    for prefix in bypass_paths:
        if path == prefix:
            return True
        if prefix != "/" and path.startswith(prefix.rstrip("/") + "/"):
            return True
    return False


class TenantResolutionMiddleware(BaseHTTPMiddleware):
    """Resolve the request's tenant and expose it as an explicit context.

    Reads its collaborators from ``app.state`` (``settings``,
    ``session_factory``, ``tenant_cache``, ``audit_collector``,
    ``resolution_metrics``), all installed by ``main.create_app``.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        state = request.app.state
        settings: Settings = state.settings

        context = TenantContext()
        request.state.tenant_context = context

        if is_bypass_path(request.url.path, settings.TENANT_BYPASS_PATHS):
            return await call_next(request)

        resolver = TenantResolver(settings)
        start = time.perf_counter()
        try:
            found = resolver.find_candidate(request)
            if not found.is_ok:
                return self._reject(request, found.error, start)

            candidate: Optional[TenantCandidate] = found.value
            if candidate is None:
                state.resolution_metrics.record_failure("unresolved", self._elapsed_ms(start))
                return await call_next(request)

            result = await self._lookup(request, resolver, candidate, settings)
            if not result.is_ok:
                return self._reject(request, result.error, start, candidate)

            tenant: TenantInfo = result.value
            context.set_tenant(tenant)
            duration_ms = self._elapsed_ms(start)
            state.resolution_metrics.record_success(candidate.source.value, duration_ms, tenant.id)
            if duration_ms > settings.TENANT_SLOW_RESOLUTION_MS:
                logger.warning(
                    f"Slow tenant resolution: {duration_ms:.1f}ms for '{tenant.subdomain}'",
                    extra={"tenant_id": tenant.id, "subdomain": tenant.subdomain,
                           "source": candidate.source.value, "duration_ms": round(duration_ms, 2)},
                )
            else:
                logger.debug(
                    f"Resolved tenant '{tenant.subdomain}' from {candidate.source.value}",
                    extra={"tenant_id": tenant.id, "subdomain": tenant.subdomain},
                )

            response = await call_next(request)

            if not settings.is_production:
                response.headers[TENANT_ID_RESPONSE_HEADER] = str(tenant.id)
                response.headers[TENANT_NAME_RESPONSE_HEADER] = tenant.name
            self._record_access(request, tenant, response.status_code, start)
            return response
        finally:
            context.clear()

    async def _lookup(
        self,
        request: Request,
        resolver: TenantResolver,
        candidate: TenantCandidate,
        settings: Settings,
    ) -> Result[TenantInfo]:
        """Run the blocking directory lookup in the threadpool with a timeout."""
        state = request.app.state

        def lookup() -> Result[TenantInfo]:
            db = state.session_factory()
            try:
                directory = TenantDirectory(db, state.tenant_cache, settings)
                return resolver.lookup(candidate, directory)
            finally:
                db.close()

        try:
            return await asyncio.wait_for(
                run_in_threadpool(lookup),
                timeout=settings.TENANT_RESOLUTION_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Tenant resolution timed out after {settings.TENANT_RESOLUTION_TIMEOUT_SECONDS}s "
                f"for '{candidate.label}'"
            )
            return Result.fail(TenantError.internal())

    def _reject(
        self,
        request: Request,
        error: TenantError,
        start: float,
        candidate: Optional[TenantCandidate] = None,
    ) -> Response:
        reason = _FAILURE_REASONS.get(error.kind, "error")
        source = candidate.source.value if candidate else None
        request.app.state.resolution_metrics.record_failure(reason, self._elapsed_ms(start), source)
        logger.info(
            f"Tenant resolution failed ({reason}) for {request.method} {request.url.path}: {error.detail}",
            extra={"source": source},
        )
        return problem_response(error, request)

    def _record_access(self, request: Request, tenant: TenantInfo, status_code: int, start: float) -> None:
        collector = getattr(request.app.state, "audit_collector", None)
        if collector is None:
            return
        principal = getattr(request.state, "principal", None)
        collector.record_access(TenantAccessEvent(
            tenant_id=tenant.id,
            user_id=principal.user_id if principal else None,
            user_email=(principal.email if principal else None) or "anonymous",
            request_id=get_request_id(),
            ip_address=client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            endpoint=request.url.path,
            http_method=request.method,
            status_code=status_code,
            response_time_ms=round(self._elapsed_ms(start), 2),
        ))

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000
