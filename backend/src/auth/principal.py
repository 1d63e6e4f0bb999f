"""Authenticated principal derived from verified token claims."""

from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from .roles import UserRole, is_system_admin_role, parse_role


@dataclass(frozen=True)
class Principal:
    """Who is making the request.

    Attributes:
        user_id: User UUID (``sub`` claim)
        email: User email
        tenant_id: Tenant the token was issued for; after a tenant switch this
            is the target tenant
        role: Role within that tenant
        is_system_admin: ``system_admin`` claim or a SYSTEM_ADMIN/SUPER_ADMIN role
        can_switch_tenant: Whether the user may request a token for another tenant
        tenant_switched: True for tokens issued by a tenant switch
        original_tenant_id: Home tenant before the switch
    """
    user_id: UUID
    email: str
    tenant_id: Optional[UUID]
    role: Optional[UserRole]
    is_system_admin: bool = False
    can_switch_tenant: bool = False
    tenant_switched: bool = False
    original_tenant_id: Optional[UUID] = None

    @property
    def home_tenant_id(self) -> Optional[UUID]:
        return self.original_tenant_id or self.tenant_id

    def is_member_of(self, tenant_id: Optional[UUID]) -> bool:
        return tenant_id is not None and self.tenant_id == tenant_id

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Principal":
        """Build a principal from decoded JWT claims.

        Raises:
            ValueError: If ``sub`` or a tenant claim is not a valid UUID
        """
        role = parse_role(claims.get("role"))
        tenant_claim = claims.get("tenant_id")
        original_claim = claims.get("original_tenant_id")
        return cls(
            user_id=UUID(claims["sub"]),
            email=claims.get("email", ""),
            tenant_id=UUID(tenant_claim) if tenant_claim else None,
            role=role,
            is_system_admin=bool(claims.get("system_admin")) or is_system_admin_role(role),
            can_switch_tenant=bool(claims.get("can_switch_tenant")),
            tenant_switched=bool(claims.get("tenant_switched")),
            original_tenant_id=UUID(original_claim) if original_claim else None,
        )
