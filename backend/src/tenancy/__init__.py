"""Tenancy module - Tenant resolution, context and data isolation.

This module provides:
- Tenant resolution from host, headers, query or the development default
- An explicit per-request ``TenantContext`` (no global current tenant)
- A cached tenant directory
- Automatic tenant filtering and write checks for tenant-owned models
- Current-tenant and tenant administration endpoints

Routers and middleware are imported from their modules directly.
"""

from .context import TenantContext, TenantInfo
from .errors import Result, TenantError, TenantErrorKind

__all__ = [
    "TenantContext",
    "TenantInfo",
    "Result",
    "TenantError",
    "TenantErrorKind",
]
