"""Request-scoped tenant context.

A ``TenantContext`` is created by ``TenantResolutionMiddleware`` for every
request, stored on ``request.state.tenant_context`` and handed explicitly to
whatever needs it: route handlers receive it through the
``get_tenant_context`` dependency and database sessions carry it in
``session.info["tenant_context"]``. There is no module-level "current tenant";
two concurrent requests can never observe each other's context.

``TenantInfo`` is the immutable projection of a tenant record held by the
context and cached by the directory.
"""

import logging
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from models.tenant import ACCESSIBLE_STATUSES, TenantStatus
from .errors import Result, TenantError
from .schemas import TenantConfiguration

if TYPE_CHECKING:
    from .directory import TenantDirectory


logger = logging.getLogger(__name__)


class TenantInfo(BaseModel):
    """Read-only projection of a tenant, safe to cache and to share.

    Attributes:
        id: Tenant UUID
        subdomain: Lowercase subdomain
        name: Display name
        status: Lifecycle state
        configuration: Limits, flags and branding
        is_system_tenant: Whether this is the platform operator's own tenant
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[UUID] = None
    subdomain: str = ""
    name: str = ""
    status: TenantStatus = TenantStatus.PROVISIONING
    configuration: TenantConfiguration = Field(default_factory=TenantConfiguration)
    is_system_tenant: bool = False

    @property
    def is_valid(self) -> bool:
        return self.id is not None and bool(self.subdomain and self.subdomain.strip())

    @property
    def can_access(self) -> bool:
        return self.status in ACCESSIBLE_STATUSES

    @classmethod
    def from_tenant(cls, tenant) -> "TenantInfo":
        """Project a ``models.Tenant`` row."""
        return cls(
            id=tenant.id,
            subdomain=tenant.subdomain,
            name=tenant.name,
            status=TenantStatus(tenant.status),
            configuration=TenantConfiguration(**(tenant.configuration or {})),
            is_system_tenant=bool(tenant.is_system_tenant),
        )


class TenantContext:
    """Holds the tenant for exactly one request.

    Not safe for concurrent mutation: a request is processed by one logical
    flow, and the context is cleared by the middleware when it ends.

    Example:
        context = TenantContext()
        result = context.set_tenant(tenant_info)
        if result.is_ok:
            assert context.tenant_id == tenant_info.id
        context.clear()
    """

    __slots__ = ("_tenant",)

    def __init__(self, tenant: Optional[TenantInfo] = None):
        self._tenant: Optional[TenantInfo] = None
        if tenant is not None:
            self.set_tenant(tenant)

    def set_tenant(self, tenant: Optional[TenantInfo]) -> Result[TenantInfo]:
        """Install ``tenant`` as the current tenant.

        Invalid tenants (missing ID or subdomain) are refused and leave the
        context unchanged.

        Returns:
            Result[TenantInfo]: The installed tenant, or a malformed-input error
        """
        if tenant is None or not tenant.is_valid:
            logger.warning("Refusing to set invalid tenant on context")
            return Result.fail(TenantError.malformed("Tenant is missing an ID or subdomain"))
        self._tenant = tenant
        return Result.ok(tenant)

    def clear(self) -> None:
        self._tenant = None

    @property
    def tenant(self) -> Optional[TenantInfo]:
        return self._tenant

    @property
    def tenant_id(self) -> Optional[UUID]:
        return self._tenant.id if self._tenant else None

    @property
    def subdomain(self) -> Optional[str]:
        return self._tenant.subdomain if self._tenant else None

    @property
    def name(self) -> Optional[str]:
        return self._tenant.name if self._tenant else None

    @property
    def status(self) -> Optional[TenantStatus]:
        return self._tenant.status if self._tenant else None

    @property
    def configuration(self) -> TenantConfiguration:
        return self._tenant.configuration if self._tenant else TenantConfiguration()

    @property
    def is_valid(self) -> bool:
        return self._tenant is not None and self._tenant.is_valid

    @property
    def is_system_tenant(self) -> bool:
        return bool(self._tenant and self._tenant.is_system_tenant)

    def validate_access(self, directory: Optional["TenantDirectory"] = None) -> bool:
        """Re-check that the held tenant may still be accessed.

        Without a directory the held projection is checked. With a directory
        the tenant is re-read first, so a suspension that happened after
        resolution is noticed.

        Args:
            directory: Optional directory used to refresh the tenant

        Returns:
            bool: True if the tenant exists and is ACTIVE or PROVISIONING
        """
        if not self.is_valid:
            return False
        tenant = self._tenant
        if directory is not None:
            tenant = directory.get_by_id(self._tenant.id)
            if tenant is None:
                return False
        return tenant.can_access

    def __repr__(self) -> str:
        return f"<TenantContext(tenant_id={self.tenant_id}, subdomain={self.subdomain!r})>"
