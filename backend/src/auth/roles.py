"""User roles and permission hierarchy for RescueRanger.

Role Hierarchy (descending permissions):
- SUPER_ADMIN: Platform owner, every tenant
- SYSTEM_ADMIN: Platform operator, may act across tenants
- ADMIN: Full access within a tenant
- TENANT_ADMIN: Tenant administration (users, configuration)
- MANAGER: Day-to-day rescue operations, invites volunteers
- VOLUNTEER: Horse care and records
- VIEWER: Read-only access

Permission Matrix:
┌──────────────────────┬───────┬────────┬───────┬──────────────┬─────────┬───────────┬────────┐
│ Action               │ SUPER │ SYSTEM │ ADMIN │ TENANT_ADMIN │ MANAGER │ VOLUNTEER │ VIEWER │
├──────────────────────┼───────┼────────┼───────┼──────────────┼─────────┼───────────┼────────┤
│ Administer Tenants   │   ✓   │   ✓    │       │              │         │           │        │
│ Switch Tenant        │   ✓   │   ✓    │       │              │         │           │        │
│ Assign Roles         │   ✓   │   ✓    │   ✓   │      ✓       │         │           │        │
│ Configure Tenant     │   ✓   │   ✓    │   ✓   │      ✓       │         │           │        │
│ Invite Users         │   ✓   │   ✓    │   ✓   │      ✓       │    ✓    │           │        │
│ View Reports         │   ✓   │   ✓    │   ✓   │      ✓       │    ✓    │           │        │
│ Manage Horses        │   ✓   │   ✓    │   ✓   │      ✓       │    ✓    │     ✓     │        │
│ View Tenant Data     │   ✓   │   ✓    │   ✓   │      ✓       │    ✓    │     ✓     │   ✓    │
└──────────────────────┴───────┴────────┴───────┴──────────────┴─────────┴───────────┴────────┘
"""

from enum import Enum
from typing import Optional, Set


class UserRole(str, Enum):
    """User roles in RescueRanger.

    Values are stored as TEXT in the database and must match exactly.
    """
    SUPER_ADMIN = "SUPER_ADMIN"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    ADMIN = "ADMIN"
    TENANT_ADMIN = "TENANT_ADMIN"
    MANAGER = "MANAGER"
    VOLUNTEER = "VOLUNTEER"
    VIEWER = "VIEWER"


# Ordered from most to least privileged
_RANKED_ROLES = [
    UserRole.SUPER_ADMIN,
    UserRole.SYSTEM_ADMIN,
    UserRole.ADMIN,
    UserRole.TENANT_ADMIN,
    UserRole.MANAGER,
    UserRole.VOLUNTEER,
    UserRole.VIEWER,
]

# Role hierarchy: Each role includes permissions of all roles below it
ROLE_HIERARCHY = {
    role: set(_RANKED_ROLES[index:]) for index, role in enumerate(_RANKED_ROLES)
}

SYSTEM_ADMIN_ROLES = {UserRole.SUPER_ADMIN, UserRole.SYSTEM_ADMIN}


def parse_role(value) -> Optional[UserRole]:
    """Parse a stored or claimed role; unknown values yield None."""
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole(str(value).upper())
    except ValueError:
        return None


def has_permission(user_role: UserRole, required_role: UserRole) -> bool:
    """Check if a user role has permission to perform an action requiring a specific role.

    Uses hierarchical permission model where higher roles inherit permissions
    of lower roles (e.g., ADMIN can do everything MANAGER can do).

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.MANAGER)
        True
        >>> has_permission(UserRole.VIEWER, UserRole.VOLUNTEER)
        False
        >>> has_permission(UserRole.MANAGER, UserRole.MANAGER)
        True
    """
    return required_role in ROLE_HIERARCHY.get(user_role, set())


def get_allowed_roles(required_role: UserRole) -> Set[UserRole]:
    """Get all roles that have permission to perform an action.

    Example:
        >>> sorted(r.value for r in get_allowed_roles(UserRole.SYSTEM_ADMIN))
        ['SUPER_ADMIN', 'SYSTEM_ADMIN']
    """
    return {role for role, permissions in ROLE_HIERARCHY.items() if required_role in permissions}


def is_system_admin_role(role: Optional[UserRole]) -> bool:
    return role in SYSTEM_ADMIN_ROLES
