"""Base SQLAlchemy declarative base and shared column types for all models"""

from sqlalchemy import Column, ForeignKey, JSON, TypeDecorator, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, declared_attr


class PortableJSONB(TypeDecorator):
    """JSON type that works with both PostgreSQL (JSONB) and SQLite (JSON).

    Uses JSONB on PostgreSQL for efficient indexing and querying,
    falls back to JSON on SQLite for testing compatibility.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


Base = declarative_base()


class TenantOwnedMixin:
    """Marks a model as owned by a tenant.

    Any mapped class mixing this in carries a non-null ``tenant_id`` foreign key
    and is picked up by the isolation listeners in ``tenancy.isolation``:
    reads are filtered to the session's tenant, inserts are stamped, and
    writes targeting another tenant are rejected.

    Example:
        class Horse(TenantOwnedMixin, Base):
            __tablename__ = "horse"
            id = Column(Uuid, primary_key=True, default=uuid4)
    """

    __tenant_owned__ = True

    @declared_attr
    def tenant_id(cls):
        return Column(
            Uuid(as_uuid=True),
            ForeignKey("tenant.id", ondelete="RESTRICT"),
            nullable=False,
            index=True,
        )


def is_tenant_owned(model) -> bool:
    """Return True when a mapped class (or instance) carries the tenant-owned tag."""
    cls = model if isinstance(model, type) else type(model)
    return bool(getattr(cls, "__tenant_owned__", False))
