"""Redis-backed cache for tenant projections.

Each tenant is cached under two keys, ``tenant:id:<id>`` and
``tenant:subdomain:<subdomain>``, with a fixed TTL. The cache is strictly an
optimisation: every failure (Redis down, timeout, corrupt entry, breaker open)
is reported as a miss so the directory falls through to the database, and a
cache problem can never turn into "tenant not found".
"""

import logging
from typing import Optional
from uuid import UUID

from pydantic import ValidationError
from redis import Redis
from redis.exceptions import RedisError

from observability.metrics import tenant_cache_circuit_open, tenant_cache_operations_total
from .circuit_breaker import CircuitBreaker
from .context import TenantInfo


logger = logging.getLogger(__name__)

KEY_PREFIX = "tenant"


def id_key(tenant_id: UUID) -> str:
    return f"{KEY_PREFIX}:id:{tenant_id}"


def subdomain_key(subdomain: str) -> str:
    return f"{KEY_PREFIX}:subdomain:{subdomain.strip().lower()}"


def get_redis_client(redis_url: str, timeout_ms: int = 50) -> Optional[Redis]:
    """Get a Redis client for the tenant cache.

    Socket timeouts bound the cost of a single cache call while Redis is
    unhealthy. Returns None if Redis is not reachable, allowing graceful
    degradation to database-only lookups.
    """
    timeout = timeout_ms / 1000.0
    try:
        client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        client.ping()
        return client
    except (RedisError, OSError) as e:
        logger.warning(f"Redis unavailable, tenant cache disabled: {e}")
        return None


class TenantCache:
    """Tenant projection cache with circuit breaking.

    Args:
        client: Redis client, or None to run without a cache
        ttl_seconds: Expiry applied to every cached entry
        breaker: Circuit breaker guarding the client
    """

    def __init__(
        self,
        client: Optional[Redis],
        ttl_seconds: int = 30 * 60,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.breaker = breaker or CircuitBreaker("tenant-cache")

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, key: str) -> Optional[TenantInfo]:
        """Return the cached tenant under ``key``, or None on miss or any failure."""
        if not self._available("get"):
            return None
        try:
            raw = self.client.get(key)
        except (RedisError, OSError) as e:
            self._failed("get", key, e)
            return None
        self._succeeded()

        if raw is None:
            tenant_cache_operations_total.labels(operation="get", result="miss").inc()
            return None
        try:
            tenant = TenantInfo.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Discarding corrupt tenant cache entry {key}: {e}")
            tenant_cache_operations_total.labels(operation="get", result="error").inc()
            return None
        tenant_cache_operations_total.labels(operation="get", result="hit").inc()
        return tenant

    def set(self, tenant: TenantInfo) -> None:
        """Cache ``tenant`` under both its ID and subdomain keys."""
        if not tenant.is_valid or not self._available("set"):
            return
        payload = tenant.model_dump_json()
        try:
            pipe = self.client.pipeline()
            pipe.set(id_key(tenant.id), payload, ex=self.ttl_seconds)
            pipe.set(subdomain_key(tenant.subdomain), payload, ex=self.ttl_seconds)
            pipe.execute()
        except (RedisError, OSError) as e:
            self._failed("set", id_key(tenant.id), e)
            return
        self._succeeded()
        tenant_cache_operations_total.labels(operation="set", result="ok").inc()

    def invalidate(self, tenant_id: Optional[UUID] = None, *subdomains: Optional[str]) -> bool:
        """Drop the ID key and every given subdomain key.

        Returns:
            bool: False if the invalidation could not be performed (the entries
            then expire through their TTL)
        """
        keys = []
        if tenant_id is not None:
            keys.append(id_key(tenant_id))
        keys.extend(subdomain_key(s) for s in subdomains if s)
        if not keys:
            return True
        if not self._available("invalidate"):
            if self.enabled:
                logger.warning(f"Tenant cache invalidation skipped (circuit open): {keys}")
            return not self.enabled
        try:
            self.client.delete(*keys)
        except (RedisError, OSError) as e:
            self._failed("invalidate", ",".join(keys), e)
            return False
        self._succeeded()
        tenant_cache_operations_total.labels(operation="invalidate", result="ok").inc()
        return True

    def ping(self) -> bool:
        """Probe the backend directly (used by health checks)."""
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except (RedisError, OSError):
            return False

    def _available(self, operation: str) -> bool:
        if self.client is None:
            return False
        if not self.breaker.allow_request():
            tenant_cache_operations_total.labels(operation=operation, result="skipped").inc()
            return False
        return True

    def _succeeded(self) -> None:
        self.breaker.record_success()
        tenant_cache_circuit_open.set(0)

    def _failed(self, operation: str, key: str, error: Exception) -> None:
        logger.warning(f"Tenant cache {operation} failed for {key}: {error}")
        tenant_cache_operations_total.labels(operation=operation, result="error").inc()
        self.breaker.record_failure()
        if self.breaker.is_open:
            logger.error("Tenant cache circuit opened after repeated failures")
            tenant_cache_circuit_open.set(1)
