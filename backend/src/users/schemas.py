"""Pydantic schemas for user management endpoints.

All schemas exclude password_hash (never returned in API responses).
"""

from pydantic import BaseModel, EmailStr, Field
from uuid import UUID
from datetime import datetime
from typing import List, Optional

# Roles that can be held inside a tenant; platform roles are never assigned here
TENANT_ROLE_PATTERN = "^(ADMIN|TENANT_ADMIN|MANAGER|VOLUNTEER|VIEWER)$"


class UserInvite(BaseModel):
    """Request schema for inviting a user into the current tenant (POST /users/invite).

    No invitation email is sent: the inviter sets an initial password which is
    hashed with Argon2id before storage.
    """
    email: EmailStr = Field(..., description="Email address (unique per tenant)", examples=["sam@acme.org"])
    first_name: str = Field(default="", max_length=100, examples=["Sam"])
    last_name: str = Field(default="", max_length=100, examples=["Rivera"])
    role: str = Field(
        default="VOLUNTEER",
        pattern=TENANT_ROLE_PATTERN,
        description="Role inside the tenant",
        examples=["VOLUNTEER"],
    )
    password: str = Field(..., min_length=8, description="Initial password")


class RoleChange(BaseModel):
    """Request schema for PATCH /users/{id}/role."""
    role: str = Field(..., pattern=TENANT_ROLE_PATTERN, examples=["MANAGER"])


class UserResponse(BaseModel):
    """User information response (excludes password_hash)."""
    id: UUID
    tenant_id: UUID
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool
    last_login_at: Optional[datetime]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
