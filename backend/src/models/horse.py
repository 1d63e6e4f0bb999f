"""Horse SQLAlchemy model"""

from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, Text, Uuid, func

from .base import Base, TenantOwnedMixin


class Horse(TenantOwnedMixin, Base):
    """A horse in the care of one rescue."""
    __tablename__ = "horse"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(Text, nullable=False)
    breed = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="IN_CARE")
    intake_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Horse(id={self.id}, name='{self.name}', tenant_id={self.tenant_id})>"
