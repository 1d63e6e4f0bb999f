"""Authentication endpoints for RescueRanger API

Provides tenant-aware login, token refresh, current-principal information
and tenant switching for system administrators. Login and refresh run
inside the tenant resolved from the request: a user can only sign in to
the tenant they belong to.
"""

from datetime import datetime, timezone
from uuid import UUID

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import func, select

from audit.schemas import CrossTenantAccessEvent
from audit.service import AuditAction, client_ip, log_from_request, try_log_audit_event
from authz.dependencies import require_policy
from authz.policies import CROSS_TENANT_ACCESS, TENANT_USER
from config import get_settings
from models.user import User
from observability.request_id import get_request_id
from tenancy.context import TenantContext
from tenancy.dependencies import Directory, RequiredTenantContext, TenantDB
from .jwt import REFRESH_TOKEN, create_access_token, create_refresh_token, decode_token
from .password import hash_password, needs_rehash, verify_password
from .principal import Principal
from .roles import is_system_admin_role, parse_role
from .schemas import LoginRequest, MeResponse, RefreshRequest, SwitchTenantRequest, TokenResponse


router = APIRouter(prefix="/auth", tags=["Authentication"])

# One message for every login failure, so responses do not reveal which
# tenants an email address belongs to
LOGIN_FAILED_DETAIL = "Invalid credentials or user is not a member of this tenant"


def _issue_tokens(user: User, context: TenantContext) -> TokenResponse:
    settings = get_settings()
    system_admin = is_system_admin_role(parse_role(user.role))
    access_token = create_access_token(
        user_id=user.id,
        tenant_id=context.tenant_id,
        role=user.role,
        email=user.email,
        tenant_subdomain=context.subdomain,
        system_admin=system_admin,
        # System administrators may always switch; other users need the flag
        can_switch_tenant=system_admin or bool(user.can_switch_tenant),
    )
    return TokenResponse(
        access_token=access_token,
        refresh_token=create_refresh_token(user.id, context.tenant_id),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        tenant_id=context.tenant_id,
        tenant_subdomain=context.subdomain,
    )


def _reject_login(db, request: Request, context: TenantContext, email: str, reason: str, actor_id=None):
    try_log_audit_event(
        db,
        tenant_id=context.tenant_id,
        action=AuditAction.LOGIN_FAILED,
        actor_id=actor_id,
        entity_type="user",
        entity_id=actor_id,
        metadata={"email": email, "reason": reason},
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    db.commit()
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=LOGIN_FAILED_DETAIL)


@router.post("/login", response_model=TokenResponse)
def login(
    credentials: LoginRequest,
    request: Request,
    context: RequiredTenantContext,
    db: TenantDB,
) -> TokenResponse:
    """Authenticate a user of the current tenant and return tokens.

    The user is looked up only within the tenant resolved from the request,
    so the same credentials fail under another tenant's host.

    Security measures:
    - Constant-time password verification to prevent timing attacks
    - Failed logins are written to the audit log
    - Inactive accounts are rejected
    - last_login_at is updated on successful login
    - Hashes made with older Argon2 parameters are replaced

    Raises:
        HTTPException: 400 if the request resolved no tenant
        HTTPException: 403 if the credentials are wrong, the account is
            inactive, or the user is not a member of the tenant
    """
    email = credentials.email.lower()
    user = db.scalars(select(User).where(func.lower(User.email) == email)).first()

    if not user or not verify_password(credentials.password, user.password_hash):
        _reject_login(db, request, context, email, "invalid_credentials_or_not_member")

    if not user.is_active:
        _reject_login(db, request, context, email, "account_disabled", actor_id=user.id)

    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(credentials.password)
    user.last_login_at = datetime.now(timezone.utc)
    log_from_request(
        db=db,
        request=request,
        tenant_id=context.tenant_id,
        action=AuditAction.LOGIN_SUCCESS,
        actor_id=user.id,
        entity_type="user",
        entity_id=user.id,
        metadata={"email": email},
    )
    db.commit()
    db.refresh(user)

    return _issue_tokens(user, context)


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    body: RefreshRequest,
    request: Request,
    context: RequiredTenantContext,
    db: TenantDB,
) -> TokenResponse:
    """Exchange a refresh token for new tokens.

    Raises:
        HTTPException: 401 if the refresh token is invalid or expired
        HTTPException: 403 if the token was issued for another tenant or the
            user is no longer an active member
    """
    try:
        claims = decode_token(body.refresh_token, expected_type=REFRESH_TOKEN)
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    if claims.get("tenant_id") != str(context.tenant_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Refresh token was not issued for this tenant",
        )

    try:
        user_id = UUID(claims["sub"])
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    user = db.scalars(select(User).where(User.id == user_id)).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is not an active member of this tenant")

    log_from_request(
        db=db,
        request=request,
        tenant_id=context.tenant_id,
        action=AuditAction.TOKEN_REFRESHED,
        actor_id=user.id,
        entity_type="user",
        entity_id=user.id,
    )
    db.commit()
    return _issue_tokens(user, context)


@router.get("/me", response_model=MeResponse)
def get_me(principal: Principal = Depends(require_policy(TENANT_USER))) -> MeResponse:
    """Claims of the caller's token (caller must belong to the current tenant)."""
    return MeResponse(
        user_id=principal.user_id,
        email=principal.email,
        tenant_id=principal.tenant_id,
        role=principal.role.value if principal.role else None,
        is_system_admin=principal.is_system_admin,
        can_switch_tenant=principal.can_switch_tenant,
        tenant_switched=principal.tenant_switched,
        original_tenant_id=principal.original_tenant_id,
    )


@router.post("/switch-tenant", response_model=TokenResponse)
def switch_tenant(
    body: SwitchTenantRequest,
    request: Request,
    directory: Directory,
    principal: Principal = Depends(require_policy(CROSS_TENANT_ACCESS)),
) -> TokenResponse:
    """Issue an access token scoped to another tenant (system administrators).

    The new token keeps the caller's identity, records the home tenant in
    ``original_tenant_id`` and is written to the audit log. No refresh token
    is issued: switched sessions end when the access token expires.

    Raises:
        HTTPException: 403 if the caller may not switch tenants or the
            target tenant is not accessible
        HTTPException: 404 if the target tenant does not exist
    """
    target = directory.get_by_id(body.tenant_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Tenant {body.tenant_id} not found")
    if not target.can_access:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Tenant '{target.subdomain}' is not accessible (status: {target.status.value})",
        )

    home_tenant_id = principal.home_tenant_id
    settings = get_settings()
    access_token = create_access_token(
        user_id=principal.user_id,
        tenant_id=target.id,
        role=principal.role.value if principal.role else "",
        email=principal.email,
        tenant_subdomain=target.subdomain,
        system_admin=principal.is_system_admin,
        can_switch_tenant=principal.can_switch_tenant,
        original_tenant_id=home_tenant_id,
    )

    log_from_request(
        db=directory.db,
        request=request,
        tenant_id=target.id,
        action=AuditAction.TENANT_SWITCHED,
        actor_id=principal.user_id,
        entity_type="tenant",
        entity_id=target.id,
        metadata={
            "from_tenant_id": str(home_tenant_id) if home_tenant_id else None,
            "to_tenant_id": str(target.id),
            "to_subdomain": target.subdomain,
            "reason": body.reason,
        },
    )
    directory.db.commit()

    collector = request.app.state.audit_collector
    collector.record_cross_tenant_attempt(CrossTenantAccessEvent(
        tenant_id=home_tenant_id,
        user_id=principal.user_id,
        user_email=principal.email or "anonymous",
        request_id=get_request_id(),
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        target_tenant_id=target.id,
        target_tenant_name=target.name,
        attempted_endpoint=f"{request.method} {request.url.path}",
        reason=body.reason or "Tenant switch",
        was_blocked=False,
    ))

    return TokenResponse(
        access_token=access_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        tenant_id=target.id,
        tenant_subdomain=target.subdomain,
    )
