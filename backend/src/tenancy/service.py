"""Tenant administration with lifecycle rules and auditing.

Wraps ``TenantDirectory`` mutations with the rules that only apply to
administrative callers (the system tenant can be neither suspended nor
deleted, only suspended tenants can be reactivated) and records every
operation twice: in the persisted audit log and as an admin-operation event
in the audit collector.
"""

import logging
from typing import Any, Optional
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from audit.collector import TenantAuditCollector
from audit.schemas import TenantAdminOperationEvent
from audit.service import AuditAction, client_ip, log_from_request
from auth.principal import Principal
from models.tenant import Tenant, TenantStatus
from observability.request_id import get_request_id
from .directory import TenantDirectory
from .errors import Result, TenantError
from .schemas import TenantConfiguration, TenantCreate, TenantUpdate


logger = logging.getLogger(__name__)


class TenantAdminService:
    """Administrative tenant operations for system administrators.

    Args:
        directory: Tenant directory bound to the request's session
        collector: Audit collector for admin-operation events
        principal: Acting administrator
        request: Current request (client address, user agent)
    """

    def __init__(
        self,
        directory: TenantDirectory,
        collector: Optional[TenantAuditCollector],
        principal: Principal,
        request: Request,
    ):
        self.directory = directory
        self.db: Session = directory.db
        self.collector = collector
        self.principal = principal
        self.request = request

    @property
    def _actor(self) -> str:
        return self.principal.email or str(self.principal.user_id)

    def create_tenant(self, data: TenantCreate) -> Result[Tenant]:
        result = self.directory.create(data, created_by=self._actor)
        self._record(
            "create_tenant",
            result,
            AuditAction.TENANT_CREATED,
            tenant_id=result.value.id if result.is_ok else None,
            new_value={"subdomain": data.subdomain, "name": data.name},
        )
        return result

    def update_tenant(self, tenant_id: UUID, changes: TenantUpdate) -> Result[Tenant]:
        before = self.directory.get_record(tenant_id)
        previous = {"name": before.name, "subdomain": before.subdomain} if before else None
        result = self.directory.update(tenant_id, changes, updated_by=self._actor)
        self._record(
            "update_tenant",
            result,
            AuditAction.TENANT_UPDATED,
            tenant_id=tenant_id,
            previous_value=previous,
            new_value=changes.model_dump(mode="json", exclude_unset=True),
        )
        return result

    def update_configuration(self, tenant_id: UUID, configuration: TenantConfiguration) -> Result[Tenant]:
        result = self.directory.update_configuration(tenant_id, configuration, updated_by=self._actor)
        self._record(
            "update_configuration",
            result,
            AuditAction.TENANT_CONFIGURATION_UPDATED,
            tenant_id=tenant_id,
            new_value=configuration.model_dump(mode="json"),
        )
        return result

    def suspend_tenant(self, tenant_id: UUID, reason: Optional[str] = None) -> Result[Tenant]:
        """Suspend a tenant.

        Returns:
            Result[Tenant]: NOT_FOUND, CONFLICT if already suspended,
            ACCESS_DENIED for the system tenant
        """
        tenant = self.directory.get_record(tenant_id)
        if tenant is None:
            return Result.fail(TenantError.not_found(f"Tenant {tenant_id} not found"))
        if tenant.status_enum == TenantStatus.SUSPENDED:
            return Result.fail(TenantError.conflict("Tenant is already suspended"))
        if tenant.is_system_tenant:
            return Result.fail(TenantError.access_denied("System tenant cannot be suspended"))

        previous = tenant.status
        result = self.directory.update_status(tenant_id, TenantStatus.SUSPENDED, reason, updated_by=self._actor)
        self._record(
            "suspend_tenant",
            result,
            AuditAction.TENANT_STATUS_CHANGED,
            tenant_id=tenant_id,
            previous_value=previous,
            new_value=TenantStatus.SUSPENDED.value,
            metadata={"reason": reason or "No reason provided"},
        )
        return result

    def reactivate_tenant(self, tenant_id: UUID) -> Result[Tenant]:
        """Move a suspended tenant back to ACTIVE.

        Returns:
            Result[Tenant]: NOT_FOUND, or CONFLICT unless the tenant is suspended
        """
        tenant = self.directory.get_record(tenant_id)
        if tenant is None:
            return Result.fail(TenantError.not_found(f"Tenant {tenant_id} not found"))
        if tenant.status_enum != TenantStatus.SUSPENDED:
            return Result.fail(TenantError.conflict("Only suspended tenants can be reactivated"))

        result = self.directory.update_status(tenant_id, TenantStatus.ACTIVE, updated_by=self._actor)
        self._record(
            "reactivate_tenant",
            result,
            AuditAction.TENANT_STATUS_CHANGED,
            tenant_id=tenant_id,
            previous_value=TenantStatus.SUSPENDED.value,
            new_value=TenantStatus.ACTIVE.value,
        )
        return result

    def delete_tenant(self, tenant_id: UUID) -> Result[Tenant]:
        """Soft delete (PENDING_DELETION). The system tenant cannot be deleted."""
        tenant = self.directory.get_record(tenant_id)
        if tenant is None:
            return Result.fail(TenantError.not_found(f"Tenant {tenant_id} not found"))
        if tenant.is_system_tenant:
            return Result.fail(TenantError.access_denied("System tenant cannot be deleted"))

        previous = tenant.status
        result = self.directory.delete(tenant_id, updated_by=self._actor)
        self._record(
            "delete_tenant",
            result,
            AuditAction.TENANT_STATUS_CHANGED,
            tenant_id=tenant_id,
            previous_value=previous,
            new_value=TenantStatus.PENDING_DELETION.value,
        )
        return result

    def rotate_api_key(self, tenant_id: UUID) -> Result[Tenant]:
        result = self.directory.rotate_api_key(tenant_id, updated_by=self._actor)
        self._record("rotate_api_key", result, AuditAction.TENANT_API_KEY_ROTATED, tenant_id=tenant_id)
        return result

    def _record(
        self,
        operation: str,
        result: Result,
        action: str,
        tenant_id: Optional[UUID],
        previous_value: Any = None,
        new_value: Any = None,
        metadata: Optional[dict] = None,
    ) -> None:
        error_message = result.error.detail if not result.is_ok else None

        if self.collector is not None:
            self.collector.record_admin_operation(TenantAdminOperationEvent(
                tenant_id=tenant_id,
                user_id=self.principal.user_id,
                user_email=self.principal.email or "anonymous",
                request_id=get_request_id(),
                ip_address=client_ip(self.request),
                user_agent=self.request.headers.get("User-Agent"),
                operation=operation,
                resource_type="tenant",
                resource_id=str(tenant_id) if tenant_id else None,
                previous_value=previous_value,
                new_value=new_value,
                success=result.is_ok,
                error_message=error_message,
            ))

        if not result.is_ok:
            logger.info(f"Tenant {operation} rejected: {error_message}", extra={"tenant_id": tenant_id})
            return

        log_from_request(
            db=self.db,
            request=self.request,
            tenant_id=tenant_id,
            action=action,
            actor_id=self.principal.user_id,
            entity_type="tenant",
            entity_id=tenant_id,
            metadata={"operation": operation, **(metadata or {})},
        )
        self.db.commit()
