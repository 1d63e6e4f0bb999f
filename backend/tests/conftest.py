"""Pytest fixtures for tenancy testing.

Provides reusable test fixtures for:
- An in-memory SQLite database shared by the test and the application
- Tenants (two rescues and the platform's system tenant)
- Users of any role inside a tenant
- Bearer token and tenant header helpers
- A TestClient over an application built with fakeredis

Usage:
    def test_current_tenant(client, acme, tenant_headers):
        response = client.get("/api/v1/tenant/current", headers=tenant_headers(acme))
        assert response.status_code == 200
"""

import os
import sys
from pathlib import Path

# Set environment variables BEFORE any imports to ensure they take effect
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["TENANT_DEV_FALLBACK_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"
# Unreachable on purpose: tests inject fakeredis
os.environ["REDIS_URL"] = "redis://localhost:1/0"

if "PASSWORD_PEPPER" not in os.environ:
    os.environ["PASSWORD_PEPPER"] = "test-pepper-secret-key-32-chars-long"

if "JWT_SECRET" not in os.environ:
    os.environ["JWT_SECRET"] = "test-jwt-secret-key-256-bits-minimum-length-required-for-security"

backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

from typing import Callable, Dict, Generator, Optional

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from auth.jwt import create_access_token
from auth.password import hash_password
from auth.roles import is_system_admin_role, parse_role
from config import Settings, get_settings
from database import tenant_scoped_session
from models.base import Base
from models.tenant import Tenant, TenantStatus
from models.user import User
from tenancy.cache import TenantCache
from tenancy.context import TenantInfo
from tenancy.schemas import TenantConfiguration


TEST_PASSWORD = "Stable4Horses"


@pytest.fixture(scope="session")
def password_hash() -> str:
    """Hashing is slow on purpose (Argon2id), so every test user shares one hash."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture(scope="function")
def settings() -> Settings:
    return get_settings()


@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory database per test.

    StaticPool keeps a single connection so the application's sessions (run
    in the threadpool) and the test's sessions see the same data.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Session without tenant context (tenants and audit log only)."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture(scope="function")
def tenant_cache(redis_client) -> TenantCache:
    return TenantCache(redis_client)


def _create_tenant(
    session: Session,
    subdomain: str,
    name: str,
    status: TenantStatus = TenantStatus.ACTIVE,
    is_system_tenant: bool = False,
    configuration: Optional[TenantConfiguration] = None,
) -> Tenant:
    tenant = Tenant(
        name=name,
        subdomain=subdomain,
        contact_email=f"office@{subdomain}-rescue.org",
        status=status.value,
        configuration=(configuration or TenantConfiguration()).model_dump(),
        is_system_tenant=is_system_tenant,
    )
    session.add(tenant)
    session.commit()
    session.refresh(tenant)
    return tenant


@pytest.fixture(scope="function")
def make_tenant(db_session: Session) -> Callable[..., Tenant]:
    """Factory for additional tenants."""
    def _make(subdomain: str, name: Optional[str] = None, **kwargs) -> Tenant:
        return _create_tenant(db_session, subdomain, name or subdomain.title(), **kwargs)
    return _make


@pytest.fixture(scope="function")
def acme(make_tenant) -> Tenant:
    return make_tenant("acme", "Acme Horse Rescue")


@pytest.fixture(scope="function")
def other_tenant(make_tenant) -> Tenant:
    return make_tenant("meadow", "Meadow Sanctuary")


@pytest.fixture(scope="function")
def system_tenant(make_tenant) -> Tenant:
    return make_tenant("platform", "RescueRanger Platform", is_system_tenant=True)


@pytest.fixture(scope="function")
def make_user(session_factory, password_hash) -> Callable[..., User]:
    """Factory for users inside a tenant.

    Users are tenant-owned, so they are written through a session scoped to
    their tenant. The returned instance is detached with its columns loaded.
    """
    def _make(
        tenant: Tenant,
        role: str = "VOLUNTEER",
        email: Optional[str] = None,
        can_switch_tenant: bool = False,
        is_active: bool = True,
    ) -> User:
        session = tenant_scoped_session(TenantInfo.from_tenant(tenant), session_factory)
        try:
            user = User(
                email=email or f"{role.lower()}@{tenant.subdomain}-rescue.org",
                first_name=role.title(),
                last_name="Tester",
                role=role,
                password_hash=password_hash,
                is_active=is_active,
                can_switch_tenant=can_switch_tenant,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
            session.expunge(user)
            return user
        finally:
            session.close()
    return _make


@pytest.fixture(scope="function")
def system_admin(system_tenant, make_user) -> User:
    return make_user(system_tenant, role="SYSTEM_ADMIN", email="ops@rescueranger.org")


@pytest.fixture(scope="function")
def auth_headers() -> Callable[..., Dict[str, str]]:
    """Build an Authorization header for ``user`` signed for ``tenant``."""
    def _headers(user: User, tenant: Tenant, role: Optional[str] = None) -> Dict[str, str]:
        role = role or user.role
        system_admin = is_system_admin_role(parse_role(role))
        token = create_access_token(
            user_id=user.id,
            tenant_id=tenant.id,
            role=role,
            email=user.email,
            tenant_subdomain=tenant.subdomain,
            system_admin=system_admin,
            can_switch_tenant=system_admin or bool(user.can_switch_tenant),
        )
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture(scope="function")
def tenant_headers() -> Callable[[Tenant], Dict[str, str]]:
    def _headers(tenant: Tenant) -> Dict[str, str]:
        return {"X-Tenant-Subdomain": tenant.subdomain}
    return _headers


@pytest.fixture(scope="function")
def member_headers(auth_headers, tenant_headers) -> Callable[..., Dict[str, str]]:
    """Tenant header plus a token for ``user`` in that same tenant."""
    def _headers(user: User, tenant: Tenant) -> Dict[str, str]:
        return {**tenant_headers(tenant), **auth_headers(user, tenant)}
    return _headers


@pytest.fixture(scope="function")
def app(settings, session_factory, redis_client):
    from main import create_app

    return create_app(settings=settings, session_factory=session_factory, redis_client=redis_client)


@pytest.fixture(scope="function")
def client(app) -> TestClient:
    """Unauthenticated test client; pass headers per request."""
    return TestClient(app)
