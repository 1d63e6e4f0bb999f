"""Database session factory and configuration.

Provides database connectivity and session management for the RescueRanger
backend, including tenant-scoped sessions for background work.

Importing this module installs the tenant isolation listeners
(``tenancy.isolation``) on every SQLAlchemy session.
"""

from typing import Generator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from config import get_settings
from tenancy import isolation  # noqa: F401  (registers session listeners)
from tenancy.context import TenantContext, TenantInfo


def build_engine(database_url: str) -> Engine:
    """Create an engine with connection pooling.

    Pool settings only apply to PostgreSQL (not SQLite).
    """
    engine_kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": False,  # Set to True for SQL query logging
    }
    if not database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10
    return create_engine(database_url, **engine_kwargs)


engine = build_engine(get_settings().DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db(request: Request) -> Generator[Session, None, None]:
    """Dependency for FastAPI endpoints.

    One session per request, from the application's session factory;
    ``tenancy.dependencies.get_tenant_db`` binds the request's tenant context
    to this same session.
    """
    factory = getattr(request.app.state, "session_factory", None) or SessionLocal
    db = factory()
    try:
        yield db
    finally:
        db.close()


def tenant_scoped_session(tenant: TenantInfo, factory: Optional[sessionmaker] = None) -> Session:
    """Create a database session scoped to a specific tenant.

    For work that runs outside a request (scripts, scheduled jobs). Every
    query on tenant-owned models is filtered to ``tenant`` and new rows are
    stamped with its ID.

    Args:
        tenant: Tenant to scope the session to
        factory: Session factory (defaults to SessionLocal)

    Raises:
        ValueError: If ``tenant`` has no ID or subdomain

    Example:
        session = tenant_scoped_session(directory.get_by_subdomain("acme"))
        try:
            horses = session.scalars(select(Horse)).all()  # acme's horses only
        finally:
            session.close()
    """
    context = TenantContext()
    if not context.set_tenant(tenant).is_ok:
        raise ValueError("Cannot scope a session to an invalid tenant")
    session = (factory or SessionLocal)()
    return isolation.attach_tenant_context(session, context)
