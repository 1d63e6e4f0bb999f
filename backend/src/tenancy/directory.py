"""Tenant directory: cached lookups and lifecycle mutations of tenants.

Lookups return ``TenantInfo`` projections and go cache-first; misses and cache
failures fall through to the database. Every mutation commits, then
invalidates both cache keys of the affected tenant before returning, so the
next lookup sees the change.

Subdomain uniqueness is always checked against the database (never the cache)
and backed by the unique constraint on ``tenant.subdomain``; a concurrent
creation that slips past the check surfaces as an IntegrityError and is
reported as a conflict.
"""

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from models.tenant import Tenant, TenantStatus
from .cache import TenantCache, id_key, subdomain_key
from .context import TenantInfo
from .errors import Result, TenantError
from .schemas import TenantConfiguration, TenantCreate, TenantUpdate


logger = logging.getLogger(__name__)


class TenantDirectory:
    """Resolve subdomains and IDs to tenants and manage their lifecycle.

    Args:
        db: Database session (tenant rows are not tenant-owned, so no
            isolation context is needed)
        cache: Tenant cache; pass ``TenantCache(None)`` to run uncached
        settings: Application settings (reserved names, defaults)

    Example:
        directory = TenantDirectory(db, cache)
        tenant = directory.get_by_subdomain("acme")
        if tenant and tenant.can_access:
            ...
    """

    def __init__(self, db: Session, cache: TenantCache, settings: Optional[Settings] = None):
        self.db = db
        self.cache = cache
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_subdomain(self, subdomain: str) -> Optional[TenantInfo]:
        """Look up a tenant by subdomain (case-insensitive).

        Returns:
            TenantInfo or None if no tenant has this subdomain
        """
        if not subdomain or not subdomain.strip():
            return None
        normalized = subdomain.strip().lower()

        cached = self.cache.get(subdomain_key(normalized))
        if cached is not None:
            return cached

        tenant = self.db.execute(
            select(Tenant).where(func.lower(Tenant.subdomain) == normalized)
        ).scalar_one_or_none()
        if tenant is None:
            return None

        info = TenantInfo.from_tenant(tenant)
        self.cache.set(info)
        return info

    def get_by_id(self, tenant_id: UUID) -> Optional[TenantInfo]:
        """Look up a tenant by ID.

        Returns:
            TenantInfo or None if the tenant does not exist
        """
        cached = self.cache.get(id_key(tenant_id))
        if cached is not None:
            return cached

        tenant = self.db.get(Tenant, tenant_id)
        if tenant is None:
            return None

        info = TenantInfo.from_tenant(tenant)
        self.cache.set(info)
        return info

    def get_record(self, tenant_id: UUID) -> Optional[Tenant]:
        """Load the full tenant row (uncached), for administration."""
        return self.db.get(Tenant, tenant_id)

    def is_subdomain_available(self, subdomain: str, exclude_id: Optional[UUID] = None) -> bool:
        """Check the database for a tenant already using ``subdomain``."""
        stmt = select(func.count()).select_from(Tenant).where(
            func.lower(Tenant.subdomain) == subdomain.strip().lower()
        )
        if exclude_id is not None:
            stmt = stmt.where(Tenant.id != exclude_id)
        return self.db.execute(stmt).scalar_one() == 0

    def is_reserved(self, subdomain: str) -> bool:
        reserved = set(self.settings.RESERVED_SUBDOMAINS) | set(self.settings.CREATION_RESERVED_SUBDOMAINS)
        return subdomain.strip().lower() in reserved

    def list_tenants(
        self,
        status: Optional[TenantStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Tenant], int]:
        """Page through tenants ordered by name.

        Returns:
            Tuple of (tenants on this page, total matching tenants)
        """
        page = max(page, 1)
        page_size = min(max(page_size, 1), 100)

        count_stmt = select(func.count()).select_from(Tenant)
        stmt = select(Tenant).order_by(Tenant.name)
        if status is not None:
            count_stmt = count_stmt.where(Tenant.status == status.value)
            stmt = stmt.where(Tenant.status == status.value)

        total = self.db.execute(count_stmt).scalar_one()
        items = self.db.execute(
            stmt.offset((page - 1) * page_size).limit(page_size)
        ).scalars().all()
        return list(items), total

    def count_active(self) -> int:
        return self.db.execute(
            select(func.count()).select_from(Tenant).where(Tenant.status == TenantStatus.ACTIVE.value)
        ).scalar_one()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, data: TenantCreate, created_by: Optional[str] = None) -> Result[Tenant]:
        """Create a tenant in PROVISIONING (or ACTIVE when ``data.activate``).

        Returns:
            Result[Tenant]: The new tenant, or MALFORMED_INPUT for a reserved
            subdomain, CONFLICT for a subdomain already in use
        """
        subdomain = data.subdomain.strip().lower()
        if self.is_reserved(subdomain):
            return Result.fail(TenantError.malformed(f"Subdomain '{subdomain}' is reserved"))
        if not self.is_subdomain_available(subdomain):
            return Result.fail(TenantError.conflict(f"Subdomain '{subdomain}' is already taken"))

        configuration = data.configuration or self.default_configuration()
        try:
            tenant = Tenant(
                name=data.name,
                subdomain=subdomain,
                contact_email=str(data.contact_email).lower(),
                phone=data.phone,
                address=data.address,
                status=TenantStatus.PROVISIONING.value,
                configuration=configuration.model_dump(),
                created_by=created_by,
                updated_by=created_by,
            )
        except ValueError as e:
            return Result.fail(TenantError.malformed(str(e)))
        if data.activate:
            tenant.activate()

        self.db.add(tenant)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Concurrent creation of subdomain '{subdomain}' rejected")
            return Result.fail(TenantError.conflict(f"Subdomain '{subdomain}' is already taken"))
        self.db.refresh(tenant)

        self.cache.invalidate(tenant.id, tenant.subdomain)
        logger.info(
            f"Tenant created: {tenant.subdomain}",
            extra={"tenant_id": tenant.id, "subdomain": tenant.subdomain},
        )
        return Result.ok(tenant)

    def update(self, tenant_id: UUID, changes: TenantUpdate, updated_by: Optional[str] = None) -> Result[Tenant]:
        """Apply a partial update.

        The subdomain may only change before the tenant is first activated;
        suspending an active tenant does not unlock it. The new value is
        re-checked against the database. Both the old and new
        subdomain keys are invalidated.
        """
        tenant = self.db.get(Tenant, tenant_id)
        if tenant is None:
            return Result.fail(TenantError.not_found(f"Tenant {tenant_id} not found"))

        old_subdomain = tenant.subdomain
        fields = changes.model_dump(exclude_unset=True, exclude={"configuration"})

        new_subdomain = fields.pop("subdomain", None)
        if new_subdomain and new_subdomain != old_subdomain:
            if tenant.status_enum == TenantStatus.ACTIVE or tenant.activated_at is not None:
                return Result.fail(TenantError.conflict("Subdomain cannot be changed once the tenant has been activated"))
            if self.is_reserved(new_subdomain):
                return Result.fail(TenantError.malformed(f"Subdomain '{new_subdomain}' is reserved"))
            if not self.is_subdomain_available(new_subdomain, exclude_id=tenant.id):
                return Result.fail(TenantError.conflict(f"Subdomain '{new_subdomain}' is already taken"))

        try:
            if new_subdomain and new_subdomain != old_subdomain:
                tenant.subdomain = new_subdomain
            for key, value in fields.items():
                if key == "contact_email" and value is not None:
                    value = str(value).lower()
                setattr(tenant, key, value)
        except ValueError as e:
            self.db.rollback()
            return Result.fail(TenantError.malformed(str(e)))

        if changes.configuration is not None:
            tenant.configuration = changes.configuration.model_dump()
        tenant.updated_by = updated_by

        return self._commit_and_invalidate(tenant, old_subdomain)

    def update_configuration(
        self,
        tenant_id: UUID,
        configuration: TenantConfiguration,
        updated_by: Optional[str] = None,
    ) -> Result[Tenant]:
        """Replace the configuration block of a tenant."""
        tenant = self.db.get(Tenant, tenant_id)
        if tenant is None:
            return Result.fail(TenantError.not_found(f"Tenant {tenant_id} not found"))
        tenant.configuration = configuration.model_dump()
        tenant.updated_by = updated_by
        return self._commit_and_invalidate(tenant)

    def update_status(
        self,
        tenant_id: UUID,
        status: TenantStatus,
        reason: Optional[str] = None,
        updated_by: Optional[str] = None,
    ) -> Result[Tenant]:
        """Move a tenant to ``status``.

        ACTIVE activates, SUSPENDED suspends with ``reason`` (default "No
        reason provided"), PENDING_DELETION marks for deletion; INACTIVE and
        PROVISIONING are set directly. Both cache keys are invalidated before
        returning, so an immediate ``get_by_id`` reflects the new status.
        """
        tenant = self.db.get(Tenant, tenant_id)
        if tenant is None:
            return Result.fail(TenantError.not_found(f"Tenant {tenant_id} not found"))

        if status == TenantStatus.ACTIVE:
            tenant.activate()
        elif status == TenantStatus.SUSPENDED:
            tenant.suspend(reason or "No reason provided")
        elif status == TenantStatus.PENDING_DELETION:
            tenant.mark_for_deletion()
        else:
            tenant.status = status.value
        tenant.updated_by = updated_by

        result = self._commit_and_invalidate(tenant)
        if result.is_ok:
            logger.info(
                f"Tenant {tenant.subdomain} moved to {status.value}",
                extra={"tenant_id": tenant.id, "subdomain": tenant.subdomain},
            )
        return result

    def rotate_api_key(self, tenant_id: UUID, updated_by: Optional[str] = None) -> Result[Tenant]:
        tenant = self.db.get(Tenant, tenant_id)
        if tenant is None:
            return Result.fail(TenantError.not_found(f"Tenant {tenant_id} not found"))
        tenant.rotate_api_key()
        tenant.updated_by = updated_by
        return self._commit_and_invalidate(tenant)

    def delete(self, tenant_id: UUID, updated_by: Optional[str] = None) -> Result[Tenant]:
        """Soft delete: the tenant moves to PENDING_DELETION and stays in the table."""
        return self.update_status(tenant_id, TenantStatus.PENDING_DELETION, updated_by=updated_by)

    def default_configuration(self) -> TenantConfiguration:
        return TenantConfiguration(
            max_users=self.settings.DEFAULT_MAX_USERS,
            max_horses=self.settings.DEFAULT_MAX_HORSES,
            storage_limit_mb=self.settings.DEFAULT_STORAGE_LIMIT_MB,
        )

    def _commit_and_invalidate(self, tenant: Tenant, *previous_subdomains: str) -> Result[Tenant]:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return Result.fail(TenantError.conflict("Tenant update violates a uniqueness constraint"))
        self.db.refresh(tenant)

        if not self.cache.invalidate(tenant.id, tenant.subdomain, *previous_subdomains):
            logger.warning(
                f"Cache invalidation failed for tenant {tenant.id}; entries expire within "
                f"{self.cache.ttl_seconds}s",
                extra={"tenant_id": tenant.id},
            )
        return Result.ok(tenant)
