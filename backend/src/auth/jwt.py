"""JWT token generation and validation

This module handles JWT access and refresh token creation and validation.
Every token is bound to one tenant.

JWT Token Claims Structure:
===========================

Standard JWT Claims:
- sub (Subject): User ID as UUID string
- iat (Issued At): Unix timestamp when token was created
- exp (Expiration): Unix timestamp when token expires

Custom Claims (RescueRanger-specific):
- type: "access" or "refresh"
- tenant_id: Tenant the token is valid for, as UUID string
  Purpose: compared with the tenant resolved from the request; a token for
  another tenant never passes the membership check
- tenant_subdomain: Subdomain of that tenant (informational)
- role: User's role within the tenant (see auth.roles.UserRole)
- email: User's email address
- system_admin: True for platform operators
- can_switch_tenant: Whether the user may request a token for another tenant
- tenant_switched / original_tenant_id: Set on tokens issued by a tenant switch

Security Properties:
- Algorithm: HS256 (HMAC-SHA256 symmetric signing), configurable
- Secret: JWT_SECRET setting
- Refresh tokens are stateless and carry the same tenant binding
- Token tamper-proof (signature validation fails if claims modified)

Example Token Payload:
{
  "sub": "550e8400-e29b-41d4-a716-446655440000",
  "type": "access",
  "tenant_id": "7c9e6679-7425-40de-944b-e07fc1f90ae7",
  "tenant_subdomain": "acme",
  "role": "MANAGER",
  "email": "jo@acme.org",
  "system_admin": false,
  "can_switch_tenant": false,
  "iat": 1704368400,
  "exp": 1704372000
}
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

import jwt

from config import Settings, get_settings


ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


def _encode(payload: Dict[str, Any], expires_in: timedelta, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **payload,
        'iat': int(now.timestamp()),  # Issued at
        'exp': int((now + expires_in).timestamp()),  # Expiration
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_access_token(
    user_id: UUID,
    tenant_id: UUID,
    role: str,
    email: str,
    tenant_subdomain: Optional[str] = None,
    system_admin: bool = False,
    can_switch_tenant: bool = False,
    original_tenant_id: Optional[UUID] = None,
    settings: Optional[Settings] = None,
) -> str:
    """Create a JWT access token for an authenticated user.

    Args:
        user_id: User's UUID
        tenant_id: Tenant the token is valid for
        role: User's role
        email: User's email address
        tenant_subdomain: Subdomain of the tenant
        system_admin: Whether the user is a platform operator
        can_switch_tenant: Whether the user may switch tenants
        original_tenant_id: Home tenant, set when issuing a token for a tenant switch
        settings: Settings (defaults to the application settings)

    Returns:
        str: Signed JWT token
    """
    settings = settings or get_settings()
    payload = {
        'sub': str(user_id),  # Subject: user ID
        'type': ACCESS_TOKEN,
        'tenant_id': str(tenant_id),
        'tenant_subdomain': tenant_subdomain,
        'role': role,
        'email': email,
        'system_admin': system_admin,
        'can_switch_tenant': can_switch_tenant,
    }
    if original_tenant_id is not None:
        payload['tenant_switched'] = True
        payload['original_tenant_id'] = str(original_tenant_id)
    return _encode(payload, timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES), settings)


def create_refresh_token(user_id: UUID, tenant_id: UUID, settings: Optional[Settings] = None) -> str:
    """Create a refresh token bound to ``tenant_id``."""
    settings = settings or get_settings()
    payload = {
        'sub': str(user_id),
        'type': REFRESH_TOKEN,
        'tenant_id': str(tenant_id),
    }
    return _encode(payload, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS), settings)


def decode_token(token: str, expected_type: str = ACCESS_TOKEN, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Decode and validate a JWT token.

    Args:
        token: JWT token string
        expected_type: "access" or "refresh"

    Returns:
        dict: Decoded token payload with claims

    Raises:
        jwt.ExpiredSignatureError: If token has expired
        jwt.InvalidTokenError: If token is invalid, tampered or of the wrong type
    """
    settings = settings or get_settings()

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise jwt.ExpiredSignatureError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise jwt.InvalidTokenError(f"Invalid token: {str(e)}")

    if payload.get('type') != expected_type:
        raise jwt.InvalidTokenError(f"Invalid token: expected a {expected_type} token")
    return payload
