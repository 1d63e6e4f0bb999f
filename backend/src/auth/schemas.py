"""Pydantic schemas for authentication endpoints"""

from pydantic import BaseModel, EmailStr, Field
from uuid import UUID
from typing import Optional


class LoginRequest(BaseModel):
    """Request schema for user login.

    The tenant is not part of the body: it is the tenant resolved from the
    request (host subdomain, headers or query).

    Attributes:
        email: User's email address
        password: User's password (plain text, will be verified against hash)
    """
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    """Response schema for login, refresh and tenant switch.

    Attributes:
        access_token: JWT access token
        refresh_token: JWT refresh token (not issued by a tenant switch)
        token_type: Token type (always "bearer")
        expires_in: Access token expiry in seconds
        tenant_id: Tenant the tokens are valid for
        tenant_subdomain: Subdomain of that tenant
    """
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int = 3600
    tenant_id: UUID
    tenant_subdomain: str


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class SwitchTenantRequest(BaseModel):
    """Request schema for POST /auth/switch-tenant."""
    tenant_id: UUID = Field(..., description="Tenant to obtain credentials for")
    reason: Optional[str] = Field(default=None, max_length=500)


class MeResponse(BaseModel):
    """Response schema for GET /auth/me: the claims of the caller's token."""
    user_id: UUID
    email: str
    tenant_id: Optional[UUID]
    role: Optional[str]
    is_system_admin: bool
    can_switch_tenant: bool
    tenant_switched: bool
    original_tenant_id: Optional[UUID] = None
