"""Authorization requirements.

A requirement is a plain value describing one condition; ``authz.engine``
decides whether a principal meets it. Policies (``authz.policies``) combine
requirements with logical AND.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from auth.roles import UserRole


@dataclass(frozen=True)
class TenantMembershipRequirement:
    """Caller must belong to the tenant in the active context.

    Attributes:
        minimum_role: Lowest role allowed (role hierarchy applies)
        resource: Resource category the caller's role must cover
            (``"Horse"``, ``"Volunteer"``, ``"Report"``)
        require_membership: Check that the caller's tenant is the context tenant
        allow_system_admin_bypass: System administrators satisfy the requirement
            without role or resource checks
        require_tenant_admin: Caller must be TENANT_ADMIN or above
    """
    minimum_role: Optional[UserRole] = None
    resource: Optional[str] = None
    require_membership: bool = True
    allow_system_admin_bypass: bool = True
    require_tenant_admin: bool = False


@dataclass(frozen=True)
class CrossTenantRequirement:
    """Caller must be a system administrator (and may switch tenants if allowed)."""
    operation: str
    allow_tenant_switching: bool = False


class UserManagementOperation(str, Enum):
    INVITE = "invite"
    MANAGE = "manage"
    VIEW = "view"
    ASSIGN_ROLE = "assign_role"
    REMOVE = "remove"


@dataclass(frozen=True)
class UserManagementRequirement:
    operation: UserManagementOperation


Requirement = Union[TenantMembershipRequirement, CrossTenantRequirement, UserManagementRequirement]
