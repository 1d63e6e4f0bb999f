"""User SQLAlchemy model"""

import re
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import validates

from .base import Base, TenantOwnedMixin


class User(TenantOwnedMixin, Base):
    """User model representing a person working inside one rescue (tenant).

    Each user belongs to exactly one home tenant and has a role determining
    their permissions there. Passwords are hashed using Argon2id.
    System administrators are ordinary users whose role is SYSTEM_ADMIN or
    SUPER_ADMIN; they reach other tenants only through tenant switching.
    """
    __tablename__ = "user"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(Text, nullable=False)
    first_name = Column(Text, nullable=False, default="")
    last_name = Column(Text, nullable=False, default="")
    role = Column(Text, nullable=False, default="VOLUNTEER")
    password_hash = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    can_switch_tenant = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint('tenant_id', 'email', name='uq_user_tenant_email'),
    )

    @validates('email')
    def validate_email(self, key, value):
        """Basic email format validation"""
        if not re.match(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$', value):
            raise ValueError("Invalid email format")
        return value.lower()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', tenant_id={self.tenant_id})>"
