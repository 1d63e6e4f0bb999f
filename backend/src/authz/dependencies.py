"""Declarative policy enforcement for routes.

Usage:
    @router.get("/horses", dependencies=[Depends(require_policy(HORSE_MANAGEMENT))])
    def list_horses(...):
        ...

    @router.delete("/users/{user_id}")
    def remove_user(principal: Principal = Depends(require_policy(USER_REMOVAL, target_param="user_id"))):
        ...
"""

from typing import Callable, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from audit.collector import TenantAuditCollector
from audit.schemas import CrossTenantAccessEvent
from audit.service import AuditAction, client_ip, try_log_audit_event
from auth.dependencies import get_optional_principal
from auth.principal import Principal
from database import get_db
from observability.request_id import get_request_id
from tenancy.context import TenantContext
from tenancy.dependencies import get_tenant_context
from .engine import AuthorizationDecision, evaluate_policy
from .policies import Policy


def _target_user_id(request: Request, target_param: Optional[str]) -> Optional[UUID]:
    if not target_param:
        return None
    raw = request.path_params.get(target_param)
    try:
        return UUID(str(raw)) if raw is not None else None
    except ValueError:
        return None


def _audit_decision(
    db: Session,
    request: Request,
    decision: AuthorizationDecision,
    principal: Principal,
    context: TenantContext,
) -> None:
    action = AuditAction.SYSTEM_ADMIN_BYPASS if decision.allowed else AuditAction.AUTHORIZATION_DENIED
    entry = try_log_audit_event(
        db,
        tenant_id=context.tenant_id,
        action=action,
        actor_id=principal.user_id,
        entity_type="policy",
        entity_id=decision.policy,
        metadata={
            "reason": decision.reason,
            "path": request.url.path,
            "method": request.method,
            "home_tenant_id": str(principal.home_tenant_id) if principal.home_tenant_id else None,
        },
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    if entry is not None:
        db.commit()


def _record_cross_tenant_attempt(
    request: Request,
    decision: AuthorizationDecision,
    principal: Principal,
    context: TenantContext,
) -> None:
    collector: Optional[TenantAuditCollector] = getattr(request.app.state, "audit_collector", None)
    if collector is None:
        return
    collector.record_cross_tenant_attempt(CrossTenantAccessEvent(
        tenant_id=principal.home_tenant_id,
        user_id=principal.user_id,
        user_email=principal.email or "anonymous",
        request_id=get_request_id(),
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        target_tenant_id=context.tenant_id,
        target_tenant_name=context.name,
        attempted_endpoint=f"{request.method} {request.url.path}",
        reason=decision.reason,
        was_blocked=True,
    ))


def require_policy(policy: Policy, target_param: Optional[str] = None) -> Callable:
    """Create a dependency that enforces ``policy``.

    Args:
        policy: Policy to evaluate
        target_param: Path parameter holding the user a user-management
            operation targets

    Returns:
        Callable: FastAPI dependency returning the authorized Principal

    Raises:
        HTTPException 401: If the request carries no valid token
        HTTPException 403: If the policy denies access
    """

    def policy_dependency(
        request: Request,
        principal: Optional[Principal] = Depends(get_optional_principal),
        context: TenantContext = Depends(get_tenant_context),
        db: Session = Depends(get_db),
    ) -> Principal:
        if principal is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )

        decision = evaluate_policy(policy, principal, context, _target_user_id(request, target_param))

        if decision.bypassed or not decision.allowed:
            _audit_decision(db, request, decision, principal, context)
        if not decision.allowed:
            if decision.cross_tenant:
                _record_cross_tenant_attempt(request, decision, principal, context)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.reason)
        return principal

    policy_dependency.__name__ = f"require_{policy.name}"
    return policy_dependency
