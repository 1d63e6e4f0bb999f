"""Named authorization policies.

Each policy is the AND of its requirements, evaluated in order; membership
requirements come first.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

from auth.roles import UserRole
from .requirements import (
    CrossTenantRequirement,
    Requirement,
    TenantMembershipRequirement,
    UserManagementOperation,
    UserManagementRequirement,
)


@dataclass(frozen=True)
class Policy:
    name: str
    requirements: Tuple[Requirement, ...]


# Basic tenant policies
TENANT_USER = Policy("TenantUser", (TenantMembershipRequirement(),))
TENANT_ADMIN = Policy("TenantAdmin", (TenantMembershipRequirement(require_tenant_admin=True),))
TENANT_MANAGER = Policy("TenantManager", (TenantMembershipRequirement(minimum_role=UserRole.MANAGER),))

# System-wide policies
SYSTEM_ADMIN = Policy("SystemAdmin", (CrossTenantRequirement("SystemAdmin"),))
CROSS_TENANT_ACCESS = Policy(
    "CrossTenantAccess",
    (CrossTenantRequirement("CrossTenantAccess", allow_tenant_switching=True),),
)

# User management policies
USER_MANAGEMENT = Policy("UserManagement", (
    TenantMembershipRequirement(minimum_role=UserRole.MANAGER),
    UserManagementRequirement(UserManagementOperation.MANAGE),
))
USER_INVITATION = Policy("UserInvitation", (
    TenantMembershipRequirement(minimum_role=UserRole.MANAGER),
    UserManagementRequirement(UserManagementOperation.INVITE),
))
ROLE_ASSIGNMENT = Policy("RoleAssignment", (
    TenantMembershipRequirement(minimum_role=UserRole.TENANT_ADMIN),
    UserManagementRequirement(UserManagementOperation.ASSIGN_ROLE),
))
USER_VIEW = Policy("UserView", (
    TenantMembershipRequirement(),
    UserManagementRequirement(UserManagementOperation.VIEW),
))
USER_REMOVAL = Policy("UserRemoval", (
    TenantMembershipRequirement(minimum_role=UserRole.TENANT_ADMIN),
    UserManagementRequirement(UserManagementOperation.REMOVE),
))

# Resource-based policies
HORSE_MANAGEMENT = Policy("HorseManagement", (TenantMembershipRequirement(resource="Horse"),))
VOLUNTEER_MANAGEMENT = Policy("VolunteerManagement", (
    TenantMembershipRequirement(minimum_role=UserRole.MANAGER, resource="Volunteer"),
))
REPORT_ACCESS = Policy("ReportAccess", (TenantMembershipRequirement(resource="Report"),))


POLICIES: Dict[str, Policy] = {
    policy.name: policy
    for policy in (
        TENANT_USER,
        TENANT_ADMIN,
        TENANT_MANAGER,
        SYSTEM_ADMIN,
        CROSS_TENANT_ACCESS,
        USER_MANAGEMENT,
        USER_INVITATION,
        ROLE_ASSIGNMENT,
        USER_VIEW,
        USER_REMOVAL,
        HORSE_MANAGEMENT,
        VOLUNTEER_MANAGEMENT,
        REPORT_ACCESS,
    )
}


def get_policy(name: str) -> Policy:
    """Look up a policy by name.

    Raises:
        KeyError: If no policy has this name
    """
    return POLICIES[name]
