"""Pydantic schemas for tenant configuration and tenant administration.

TenantConfiguration is the complete schema stored in tenant.configuration.
All settings have defaults; the stored JSON is validated through it on every
read and write, so invalid configuration updates are rejected with clear
validation errors.
"""

import re
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from models.tenant import TenantStatus


HEX_COLOR_PATTERN = re.compile(r'^#(?:[0-9a-fA-F]{3}){1,2}$')
CREATE_SUBDOMAIN_PATTERN = re.compile(r'^[a-z0-9-]+$')
E164_PATTERN = re.compile(r'^\+[1-9]\d{1,14}$')


def normalize_new_subdomain(v: str) -> str:
    """Lowercase and check a subdomain requested for a new or renamed tenant."""
    v = v.strip().lower()
    if not CREATE_SUBDOMAIN_PATTERN.match(v):
        raise ValueError("Subdomain must contain only lowercase letters, numbers, and hyphens")
    if v.startswith("-") or v.endswith("-"):
        raise ValueError("Subdomain cannot start or end with a hyphen")
    return v


def check_phone(v: Optional[str]) -> Optional[str]:
    if v is not None and not E164_PATTERN.match(v):
        raise ValueError("Phone number must be in E.164 format (e.g. +15551234567)")
    return v


class BrandingSettings(BaseModel):
    """Visual identity of a rescue, served to the frontend."""
    primary_color: str = Field(default="#1976D2", description="Primary brand colour (hex)")
    secondary_color: str = Field(default="#424242", description="Secondary brand colour (hex)")
    logo_url: Optional[str] = Field(default=None, max_length=500)
    favicon_url: Optional[str] = Field(default=None, max_length=500)
    custom_css: Optional[str] = Field(default=None, max_length=10_000)

    @field_validator("primary_color", "secondary_color")
    @classmethod
    def validate_hex_color(cls, v: str) -> str:
        if not HEX_COLOR_PATTERN.match(v):
            raise ValueError(f"Invalid hex colour: {v}")
        return v.upper()


class TenantConfiguration(BaseModel):
    """Per-tenant limits, feature flags and branding.

    The limits are advisory: they are re-checked with a fresh database count at
    the moment of the write that could exceed them.
    """
    max_users: int = Field(default=10, ge=1, le=100_000, description="Maximum number of users")
    max_horses: int = Field(default=100, ge=0, le=1_000_000, description="Maximum number of horses")
    storage_limit_mb: int = Field(default=1024, ge=0, description="Storage quota in MB")
    advanced_features_enabled: bool = Field(default=False)
    branding: BrandingSettings = Field(default_factory=BrandingSettings)
    feature_flags: Dict[str, bool] = Field(default_factory=dict)
    metadata: Dict[str, str] = Field(default_factory=dict)

    def limit_for(self, key: str) -> Optional[int]:
        """Return the numeric limit named ``key`` (e.g. "max_users"), if any."""
        value = getattr(self, key, None)
        return value if isinstance(value, int) and not isinstance(value, bool) else None


class BrandingSettingsUpdate(BaseModel):
    """Partial branding update (all fields optional)."""
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    logo_url: Optional[str] = None
    favicon_url: Optional[str] = None
    custom_css: Optional[str] = None


class TenantConfigurationUpdate(BaseModel):
    """Partial configuration update, deep-merged into the stored configuration.

    Limits are not part of this schema: tenant administrators can change
    branding, flags and metadata, while limits are changed by system
    administrators through the admin tenant update.
    """
    advanced_features_enabled: Optional[bool] = None
    branding: Optional[BrandingSettingsUpdate] = None
    feature_flags: Optional[Dict[str, bool]] = None
    metadata: Optional[Dict[str, str]] = None


class TenantCreate(BaseModel):
    """Request schema for creating a tenant (POST /admin/tenants)."""
    name: str = Field(..., min_length=1, max_length=200, examples=["Happy Hooves Rescue"])
    subdomain: str = Field(..., min_length=3, max_length=50, examples=["happy-hooves"])
    contact_email: EmailStr
    phone: Optional[str] = Field(default=None, examples=["+15551234567"])
    address: Optional[str] = Field(default=None, max_length=500)
    configuration: Optional[TenantConfiguration] = None
    activate: bool = Field(default=False, description="Activate immediately instead of staying in PROVISIONING")

    @field_validator("subdomain")
    @classmethod
    def validate_subdomain(cls, v: str) -> str:
        return normalize_new_subdomain(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return check_phone(v)


class TenantUpdate(BaseModel):
    """Request schema for updating a tenant (PATCH /admin/tenants/{id}).

    All fields optional. A subdomain change is only accepted before the
    tenant is first activated.
    """
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    subdomain: Optional[str] = Field(default=None, min_length=3, max_length=50)
    contact_email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = Field(default=None, max_length=500)
    configuration: Optional[TenantConfiguration] = None

    @field_validator("subdomain")
    @classmethod
    def validate_subdomain(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return normalize_new_subdomain(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return check_phone(v)


class TenantStatusChange(BaseModel):
    """Request body for suspend/reactivate operations."""
    reason: Optional[str] = Field(default=None, max_length=500)


class TenantResponse(BaseModel):
    """Full tenant record as returned to system administrators."""
    id: UUID
    name: str
    subdomain: str
    contact_email: str
    phone: Optional[str]
    address: Optional[str]
    status: TenantStatus
    activated_at: Optional[datetime]
    suspended_at: Optional[datetime]
    suspension_reason: Optional[str]
    configuration: TenantConfiguration
    is_system_tenant: bool
    has_api_key: bool = False
    api_key_rotated_at: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True

    @classmethod
    def from_tenant(cls, tenant) -> "TenantResponse":
        return cls(
            id=tenant.id,
            name=tenant.name,
            subdomain=tenant.subdomain,
            contact_email=tenant.contact_email,
            phone=tenant.phone,
            address=tenant.address,
            status=TenantStatus(tenant.status),
            activated_at=tenant.activated_at,
            suspended_at=tenant.suspended_at,
            suspension_reason=tenant.suspension_reason,
            configuration=TenantConfiguration(**(tenant.configuration or {})),
            is_system_tenant=tenant.is_system_tenant,
            has_api_key=bool(tenant.api_key),
            api_key_rotated_at=tenant.api_key_rotated_at,
            created_at=tenant.created_at,
            updated_at=tenant.updated_at,
        )


class TenantListResponse(BaseModel):
    """Paged tenant list."""
    items: List[TenantResponse]
    total: int
    page: int
    page_size: int


class CurrentTenantResponse(BaseModel):
    """Public view of the tenant serving the current request."""
    id: UUID
    name: str
    subdomain: str
    status: TenantStatus
    branding: BrandingSettings
    advanced_features_enabled: bool
    feature_flags: Dict[str, bool]


class ApiKeyResponse(BaseModel):
    """Newly rotated API key (shown once)."""
    tenant_id: UUID
    api_key: str
    rotated_at: datetime


class SubdomainAvailability(BaseModel):
    subdomain: str
    available: bool
    reason: Optional[str] = None
