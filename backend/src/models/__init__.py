"""SQLAlchemy Models for RescueRanger"""

from .base import Base, PortableJSONB, TenantOwnedMixin, is_tenant_owned
from .tenant import Tenant, TenantStatus, ACCESSIBLE_STATUSES
from .user import User
from .horse import Horse
from .audit_log import AuditLog

__all__ = [
    "Base",
    "PortableJSONB",
    "TenantOwnedMixin",
    "is_tenant_owned",
    "Tenant",
    "TenantStatus",
    "ACCESSIBLE_STATUSES",
    "User",
    "Horse",
    "AuditLog",
]
