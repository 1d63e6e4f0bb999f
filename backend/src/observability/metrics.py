"""Prometheus metrics for RescueRanger.

Defines operational metrics for tenant resolution, caching, authorization and
auditing. Exposed on /metrics by the observability router.

Tenant IDs are deliberately not used as label values: the number of tenants is
unbounded. Per-tenant figures live in the audit collector instead.
"""

from prometheus_client import Counter, Histogram, Gauge

# Tenant resolution
tenant_resolutions_total = Counter(
    "rescueranger_tenant_resolutions_total",
    "Tenant resolution attempts",
    ["outcome", "source"]  # outcome: resolved|unresolved|malformed|not_found|forbidden|error|bypassed
)

tenant_resolution_duration_seconds = Histogram(
    "rescueranger_tenant_resolution_duration_seconds",
    "Time spent resolving the tenant of a request in seconds",
    ["source"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0]
)

# Tenant cache
tenant_cache_operations_total = Counter(
    "rescueranger_tenant_cache_operations_total",
    "Tenant cache operations",
    ["operation", "result"]  # operation: get|set|invalidate, result: hit|miss|ok|error|skipped
)

tenant_cache_circuit_open = Gauge(
    "rescueranger_tenant_cache_circuit_open",
    "1 while the tenant cache circuit breaker is open"
)

# Authorization
authorization_decisions_total = Counter(
    "rescueranger_authorization_decisions_total",
    "Authorization policy decisions",
    ["policy", "outcome"]  # outcome: allowed|denied|bypassed
)

cross_tenant_attempts_total = Counter(
    "rescueranger_cross_tenant_attempts_total",
    "Cross-tenant access attempts",
    ["blocked"]  # "true"|"false"
)

all_tenants_queries_total = Counter(
    "rescueranger_all_tenants_queries_total",
    "Queries that bypassed tenant filtering through an all-tenants grant",
    ["operation"]
)

# Auditing
audit_failures_total = Counter(
    "rescueranger_audit_failures_total",
    "Audit events that could not be recorded",
    ["event_type"]
)

# HTTP
http_requests_total = Counter(
    "rescueranger_http_requests_total",
    "HTTP requests handled",
    ["method", "status"]
)

http_request_duration_seconds = Histogram(
    "rescueranger_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)
