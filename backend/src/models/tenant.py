"""Tenant model - Root entity for multi-tenant isolation"""

import base64
import re
import secrets
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, Text, Uuid, func
from sqlalchemy.orm import validates

from .base import Base, PortableJSONB


SUBDOMAIN_PATTERN = re.compile(r'^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$')


class TenantStatus(str, Enum):
    """Lifecycle states of a tenant.

    Values are stored as TEXT in the database and must match exactly.
    """
    PROVISIONING = "PROVISIONING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    INACTIVE = "INACTIVE"
    PENDING_DELETION = "PENDING_DELETION"


# Only these states let requests through to tenant data
ACCESSIBLE_STATUSES = {TenantStatus.ACTIVE, TenantStatus.PROVISIONING}


class Tenant(Base):
    """
    Tenant model - one horse rescue organization.

    Each tenant is addressed by a unique subdomain and owns all tenant-owned
    rows (users, horses, ...) through their tenant_id foreign key. Tenants are
    never hard-deleted; deletion moves them to PENDING_DELETION.
    """
    __tablename__ = "tenant"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(Text, nullable=False)
    subdomain = Column(String(63), nullable=False, unique=True, index=True)
    contact_email = Column(Text, nullable=False)
    phone = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default=TenantStatus.PROVISIONING.value)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    suspended_at = Column(DateTime(timezone=True), nullable=True)
    suspension_reason = Column(Text, nullable=True)
    configuration = Column(PortableJSONB, nullable=False, default=dict)
    api_key = Column(Text, nullable=True)
    api_key_rotated_at = Column(DateTime(timezone=True), nullable=True)
    is_system_tenant = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_by = Column(Text, nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    updated_by = Column(Text, nullable=True)

    @validates('subdomain')
    def validate_subdomain(self, key, value):
        """
        Ensure subdomain is a lowercase DNS label.

        Valid: acme, happy-hooves, rescue42
        Invalid: Acme, -acme, acme-, acme.rescue, ab

        Raises:
            ValueError: If subdomain doesn't match pattern or length requirements
        """
        value = (value or "").strip().lower()
        if len(value) < 3 or len(value) > 63:
            raise ValueError("Subdomain must be between 3 and 63 characters")
        if not SUBDOMAIN_PATTERN.match(value):
            raise ValueError(
                "Subdomain must contain only lowercase letters, numbers, and hyphens "
                "and must not start or end with a hyphen"
            )
        return value

    @validates('name')
    def validate_name(self, key, value):
        if not value or len(value.strip()) == 0:
            raise ValueError("Tenant name cannot be empty")
        if len(value) > 200:
            raise ValueError("Tenant name cannot exceed 200 characters")
        return value.strip()

    @property
    def status_enum(self) -> TenantStatus:
        return TenantStatus(self.status)

    @property
    def can_access(self) -> bool:
        return self.status_enum in ACCESSIBLE_STATUSES

    def activate(self) -> None:
        """Move the tenant to ACTIVE and clear any suspension details."""
        self.status = TenantStatus.ACTIVE.value
        self.activated_at = datetime.now(timezone.utc)
        self.suspended_at = None
        self.suspension_reason = None

    def suspend(self, reason: str) -> None:
        self.status = TenantStatus.SUSPENDED.value
        self.suspended_at = datetime.now(timezone.utc)
        self.suspension_reason = reason

    def mark_for_deletion(self) -> None:
        """Soft delete: the row stays while owned data still references it."""
        self.status = TenantStatus.PENDING_DELETION.value
        self.suspended_at = datetime.now(timezone.utc)
        self.suspension_reason = "Marked for deletion"

    def rotate_api_key(self) -> str:
        """Generate a new API key (32 random bytes, URL-safe base64).

        Returns:
            str: The new API key
        """
        self.api_key = base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("ascii")
        self.api_key_rotated_at = datetime.now(timezone.utc)
        return self.api_key

    def __repr__(self):
        return f"<Tenant(id={self.id}, subdomain='{self.subdomain}', status='{self.status}')>"
