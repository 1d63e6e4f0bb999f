"""Policy evaluation.

``evaluate_policy`` is the single entry point: it takes a policy, the
caller's principal, the tenant context and optionally the user an operation
targets, and returns an ``AuthorizationDecision``. It performs no I/O besides
logging and Prometheus counters; persisting denials and bypasses to the audit
log is left to the caller (see ``authz.dependencies``).

Membership requirements are evaluated first. A system-admin bypass, when the
requirement allows it, satisfies the requirement without role, resource or
tenant-admin checks; otherwise all of those must pass.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional
from uuid import UUID

from auth.principal import Principal
from auth.roles import UserRole, has_permission
from observability.metrics import authorization_decisions_total, cross_tenant_attempts_total
from tenancy.context import TenantContext
from .policies import Policy
from .requirements import (
    CrossTenantRequirement,
    Requirement,
    TenantMembershipRequirement,
    UserManagementOperation,
    UserManagementRequirement,
)


logger = logging.getLogger(__name__)

_EVERYTHING = frozenset({"Horse", "Volunteer", "Report"})

# Resource categories each role may work with
ROLE_RESOURCES: Dict[UserRole, FrozenSet[str]] = {
    UserRole.SUPER_ADMIN: _EVERYTHING,
    UserRole.SYSTEM_ADMIN: _EVERYTHING,
    UserRole.ADMIN: _EVERYTHING,
    UserRole.TENANT_ADMIN: _EVERYTHING,
    UserRole.MANAGER: _EVERYTHING,
    UserRole.VOLUNTEER: frozenset({"Horse", "Report"}),
    UserRole.VIEWER: frozenset({"Report"}),
}


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of evaluating one policy.

    Attributes:
        allowed: Whether every requirement passed
        policy: Policy name
        reason: Why access was denied, or how it was granted
        bypassed: A system-admin bypass satisfied at least one requirement
        cross_tenant: The denial is a cross-tenant attempt (non-member of the
            context tenant, or non-admin asking for a cross-tenant operation)
    """
    allowed: bool
    policy: str
    reason: str
    bypassed: bool = False
    cross_tenant: bool = False


@dataclass(frozen=True)
class _Check:
    passed: bool
    reason: str = ""
    bypassed: bool = False
    cross_tenant: bool = False


_PASS = _Check(True)


def _deny(reason: str, cross_tenant: bool = False) -> _Check:
    return _Check(False, reason, cross_tenant=cross_tenant)


def resources_for(role: Optional[UserRole]) -> FrozenSet[str]:
    return ROLE_RESOURCES.get(role, frozenset())


def _check_membership(
    requirement: TenantMembershipRequirement,
    principal: Principal,
    context: Optional[TenantContext],
) -> _Check:
    if context is None or not context.is_valid:
        return _deny("Tenant context is not established")

    if requirement.allow_system_admin_bypass and principal.is_system_admin:
        return _Check(True, "System administrator bypass", bypassed=True)

    if requirement.require_membership and not principal.is_member_of(context.tenant_id):
        return _deny(f"User does not belong to tenant '{context.subdomain}'", cross_tenant=True)

    if requirement.minimum_role is not None:
        if principal.role is None or not has_permission(principal.role, requirement.minimum_role):
            return _deny(f"Role {requirement.minimum_role.value} or higher is required")

    if requirement.resource is not None and requirement.resource not in resources_for(principal.role):
        return _deny(f"Role does not grant access to {requirement.resource} resources")

    if requirement.require_tenant_admin:
        if principal.role is None or not has_permission(principal.role, UserRole.TENANT_ADMIN):
            return _deny("Tenant administrator privileges are required")

    return _PASS


def _check_cross_tenant(requirement: CrossTenantRequirement, principal: Principal) -> _Check:
    if not principal.is_system_admin:
        return _deny(f"Operation {requirement.operation} requires a system administrator", cross_tenant=True)
    if requirement.allow_tenant_switching and not principal.can_switch_tenant:
        return _deny(f"User may not switch tenants for {requirement.operation}")
    return _PASS


def _at_least(principal: Principal, role: UserRole) -> bool:
    return principal.role is not None and has_permission(principal.role, role)


def _check_user_management(
    requirement: UserManagementRequirement,
    principal: Principal,
    context: Optional[TenantContext],
    target_user_id: Optional[UUID],
) -> _Check:
    if context is None or not context.is_valid:
        return _deny("Tenant context is not established")
    if principal.is_system_admin:
        return _Check(True, "System administrator bypass", bypassed=True)

    operation = requirement.operation
    is_self = target_user_id is not None and target_user_id == principal.user_id

    if operation == UserManagementOperation.VIEW:
        allowed = is_self or principal.is_member_of(context.tenant_id)
    elif operation == UserManagementOperation.INVITE:
        allowed = _at_least(principal, UserRole.MANAGER)
    elif operation == UserManagementOperation.MANAGE:
        allowed = is_self or _at_least(principal, UserRole.MANAGER)
    elif operation == UserManagementOperation.ASSIGN_ROLE:
        allowed = _at_least(principal, UserRole.TENANT_ADMIN)
    elif operation == UserManagementOperation.REMOVE:
        if is_self:
            return _deny("Users cannot remove themselves")
        allowed = _at_least(principal, UserRole.TENANT_ADMIN)
    else:
        allowed = False

    if not allowed:
        return _deny(f"Not permitted to {operation.value.replace('_', ' ')} users")
    return _PASS


def _check(
    requirement: Requirement,
    principal: Principal,
    context: Optional[TenantContext],
    target_user_id: Optional[UUID],
) -> _Check:
    if isinstance(requirement, TenantMembershipRequirement):
        return _check_membership(requirement, principal, context)
    if isinstance(requirement, CrossTenantRequirement):
        return _check_cross_tenant(requirement, principal)
    if isinstance(requirement, UserManagementRequirement):
        return _check_user_management(requirement, principal, context, target_user_id)
    return _deny(f"Unsupported requirement {type(requirement).__name__}")


def evaluate_policy(
    policy: Policy,
    principal: Optional[Principal],
    context: Optional[TenantContext],
    target_user_id: Optional[UUID] = None,
) -> AuthorizationDecision:
    """Decide whether ``principal`` satisfies every requirement of ``policy``.

    Args:
        policy: Policy to evaluate
        principal: Authenticated caller, or None for anonymous requests
        context: Tenant context of the request
        target_user_id: User a user-management operation is aimed at

    Returns:
        AuthorizationDecision: Denials carry the first failing requirement's reason

    Example:
        decision = evaluate_policy(TENANT_ADMIN, principal, context)
        if not decision.allowed:
            raise HTTPException(status.HTTP_403_FORBIDDEN, decision.reason)
    """
    if principal is None:
        decision = AuthorizationDecision(False, policy.name, "Authentication required")
        _record(decision, principal, context)
        return decision

    bypassed = False
    for requirement in policy.requirements:
        check = _check(requirement, principal, context, target_user_id)
        if not check.passed:
            decision = AuthorizationDecision(
                False, policy.name, check.reason, bypassed=bypassed, cross_tenant=check.cross_tenant
            )
            _record(decision, principal, context)
            return decision
        bypassed = bypassed or check.bypassed

    decision = AuthorizationDecision(
        True, policy.name, "System administrator bypass" if bypassed else "Authorized", bypassed=bypassed
    )
    _record(decision, principal, context)
    return decision


def _record(decision: AuthorizationDecision, principal: Optional[Principal], context: Optional[TenantContext]) -> None:
    tenant_id = context.tenant_id if context is not None else None
    user = f"{principal.email} ({principal.user_id})" if principal else "anonymous"
    extra = {"tenant_id": tenant_id, "user_id": principal.user_id if principal else None}

    if not decision.allowed:
        authorization_decisions_total.labels(policy=decision.policy, outcome="denied").inc()
        if decision.cross_tenant:
            cross_tenant_attempts_total.labels(blocked="true").inc()
        logger.warning(
            f"Authorization denied: policy {decision.policy} for {user} in tenant {tenant_id}: {decision.reason}",
            extra=extra,
        )
    elif decision.bypassed:
        authorization_decisions_total.labels(policy=decision.policy, outcome="bypassed").inc()
        logger.info(
            f"System administrator bypass: policy {decision.policy} for {user} in tenant {tenant_id}",
            extra=extra,
        )
    else:
        authorization_decisions_total.labels(policy=decision.policy, outcome="allowed").inc()
        logger.debug(f"Authorized: policy {decision.policy} for {user}", extra=extra)
