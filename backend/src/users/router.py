"""User management endpoints for the current tenant.

Every endpoint works on the users of the tenant resolved from the request;
tenant filtering is applied by the session, so users of other tenants are
simply not found. Mutations are written to the audit log and recorded as
admin operations in the audit collector.

- GET /users: list users (UserManagement)
- GET /users/{id}: one user (UserView: self or member)
- POST /users/invite: add a user, bounded by the tenant's max_users (UserInvitation)
- PATCH /users/{id}/role: change a role (RoleAssignment)
- DELETE /users/{id}: remove a user, never oneself (UserRemoval)
"""

from typing import Any, Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import func, select

from audit.schemas import TenantAdminOperationEvent
from audit.service import AuditAction, client_ip, log_from_request
from auth.password import hash_password, validate_password_strength
from auth.principal import Principal
from auth.roles import UserRole, has_permission, parse_role
from authz.dependencies import require_policy
from authz.policies import ROLE_ASSIGNMENT, USER_INVITATION, USER_MANAGEMENT, USER_REMOVAL, USER_VIEW
from models.user import User
from observability.request_id import get_request_id
from tenancy.context import TenantContext
from tenancy.dependencies import RequiredTenantContext, TenantDB
from tenancy.errors import problem_response
from tenancy.isolation import TenantRepository, ensure_within_limit
from .schemas import RoleChange, UserInvite, UserListResponse, UserResponse


router = APIRouter(prefix="/users", tags=["User Management"])


def _check_grantable(principal: Principal, role: str) -> None:
    """Callers cannot hand out a role above their own (system admins excepted)."""
    if principal.is_system_admin:
        return
    requested = parse_role(role)
    if principal.role is None or requested is None or not has_permission(principal.role, requested):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Cannot assign role {role} above your own",
        )


def _record_admin_operation(
    request: Request,
    principal: Principal,
    context: TenantContext,
    operation: str,
    user_id: UUID,
    previous_value: Any = None,
    new_value: Any = None,
    error_message: Optional[str] = None,
) -> None:
    request.app.state.audit_collector.record_admin_operation(TenantAdminOperationEvent(
        tenant_id=context.tenant_id,
        user_id=principal.user_id,
        user_email=principal.email or "anonymous",
        request_id=get_request_id(),
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        operation=operation,
        resource_type="user",
        resource_id=str(user_id),
        previous_value=previous_value,
        new_value=new_value,
        success=error_message is None,
        error_message=error_message,
    ))


@router.get(
    "",
    response_model=UserListResponse,
    dependencies=[Depends(require_policy(USER_MANAGEMENT))],
)
def list_users(db: TenantDB) -> UserListResponse:
    users = db.scalars(select(User).order_by(User.created_at.desc(), User.email)).all()
    return UserListResponse(users=[UserResponse.model_validate(u) for u in users], total=len(users))


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    dependencies=[Depends(require_policy(USER_VIEW, target_param="user_id"))],
)
def get_user(user_id: UUID, request: Request, db: TenantDB):
    found = TenantRepository(db, User).get_by_id(user_id)
    if not found.is_ok:
        return problem_response(found.error, request)
    return UserResponse.model_validate(found.value)


@router.post("/invite", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def invite_user(
    data: UserInvite,
    request: Request,
    context: RequiredTenantContext,
    db: TenantDB,
    principal: Principal = Depends(require_policy(USER_INVITATION)),
):
    """Add a user to the current tenant.

    Raises:
        400: Password does not meet strength requirements
        403: Tenant user limit reached, or role above the caller's own
        409: Email already used in this tenant
    """
    _check_grantable(principal, data.role)

    valid, message = validate_password_strength(data.password)
    if not valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)

    email = data.email.lower()
    if db.execute(select(func.count()).select_from(User).where(func.lower(User.email) == email)).scalar_one():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"User with email {email} already exists in this tenant",
        )

    # Limit re-checked with a fresh count right before the write
    within_limit = ensure_within_limit(db, context, User, "max_users")
    if not within_limit.is_ok:
        return problem_response(within_limit.error, request)

    user = User(
        id=uuid4(),
        email=email,
        first_name=data.first_name,
        last_name=data.last_name,
        role=data.role,
        password_hash=hash_password(data.password),
        is_active=True,
    )
    log_from_request(
        db=db,
        request=request,
        tenant_id=context.tenant_id,
        action=AuditAction.USER_INVITED,
        actor_id=principal.user_id,
        entity_type="user",
        entity_id=user.id,
        metadata={"email": email, "role": data.role},
    )
    result = TenantRepository(db, User).add(user)
    if not result.is_ok:
        _record_admin_operation(
            request, principal, context, "invite_user", user.id, new_value=data.role,
            error_message=result.error.detail,
        )
        return problem_response(result.error, request)

    _record_admin_operation(request, principal, context, "invite_user", user.id, new_value=data.role)
    return UserResponse.model_validate(result.value)


@router.patch("/{user_id}/role", response_model=UserResponse)
def change_role(
    user_id: UUID,
    data: RoleChange,
    request: Request,
    context: RequiredTenantContext,
    db: TenantDB,
    principal: Principal = Depends(require_policy(ROLE_ASSIGNMENT, target_param="user_id")),
):
    _check_grantable(principal, data.role)

    users = TenantRepository(db, User)
    found = users.get_by_id(user_id)
    if not found.is_ok:
        return problem_response(found.error, request)
    user = found.value
    if parse_role(user.role) in (UserRole.SUPER_ADMIN, UserRole.SYSTEM_ADMIN) and not principal.is_system_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot change the role of a system administrator")

    old_role = user.role
    if old_role == data.role:
        return UserResponse.model_validate(user)

    user.role = data.role
    log_from_request(
        db=db,
        request=request,
        tenant_id=context.tenant_id,
        action=AuditAction.USER_ROLE_CHANGED,
        actor_id=principal.user_id,
        entity_type="user",
        entity_id=user.id,
        metadata={"old_role": old_role, "new_role": data.role},
    )
    result = users.update(user)
    if not result.is_ok:
        return problem_response(result.error, request)

    _record_admin_operation(
        request, principal, context, "change_role", user.id, previous_value=old_role, new_value=data.role
    )
    return UserResponse.model_validate(result.value)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_user(
    user_id: UUID,
    request: Request,
    context: RequiredTenantContext,
    db: TenantDB,
    principal: Principal = Depends(require_policy(USER_REMOVAL, target_param="user_id")),
):
    """Remove a user from the current tenant. Users cannot remove themselves."""
    users = TenantRepository(db, User)
    found = users.get_by_id(user_id)
    if not found.is_ok:
        return problem_response(found.error, request)
    email, role = found.value.email, found.value.role

    log_from_request(
        db=db,
        request=request,
        tenant_id=context.tenant_id,
        action=AuditAction.USER_REMOVED,
        actor_id=principal.user_id,
        entity_type="user",
        entity_id=user_id,
        metadata={"email": email, "role": role},
    )
    result = users.delete(user_id)
    if not result.is_ok:
        return problem_response(result.error, request)

    _record_admin_operation(request, principal, context, "remove_user", user_id, previous_value=email)
    return None
