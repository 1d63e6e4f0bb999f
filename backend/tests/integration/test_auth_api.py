"""Integration tests for tenant-bound authentication

Tests cover:
- Login inside the resolved tenant
- The same credentials failing under another tenant
- Uniform 403 for wrong passwords, inactive users and non-members
- Token refresh bound to the issuing tenant
- /auth/me membership check
- Failed logins written to the audit log
- Password hashes upgraded on login
"""

import pytest
from argon2 import PasswordHasher
from sqlalchemy import select

from auth.jwt import decode_token
from database import tenant_scoped_session
from models.audit_log import AuditLog
from models.user import User
from tenancy.context import TenantInfo


pytestmark = pytest.mark.integration

TEST_PASSWORD = "Stable4Horses"


def login(client, tenant_headers, tenant, email, password=TEST_PASSWORD):
    return client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
        headers=tenant_headers(tenant),
    )


class TestLogin:
    """Test login within a tenant"""

    def test_login_success(self, client, acme, make_user, tenant_headers):
        user = make_user(acme, role="MANAGER")
        response = login(client, tenant_headers, acme, user.email)

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["tenant_id"] == str(acme.id)
        assert data["tenant_subdomain"] == "acme"
        assert data["refresh_token"]

        claims = decode_token(data["access_token"])
        assert claims["sub"] == str(user.id)
        assert claims["tenant_id"] == str(acme.id)
        assert claims["role"] == "MANAGER"

    def test_login_email_case_insensitive(self, client, acme, make_user, tenant_headers):
        user = make_user(acme)
        response = login(client, tenant_headers, acme, user.email.upper())
        assert response.status_code == 200

    def test_same_credentials_fail_under_other_tenant(self, client, acme, other_tenant, make_user, tenant_headers):
        user = make_user(acme)
        response = login(client, tenant_headers, other_tenant, user.email)

        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid credentials or user is not a member of this tenant"

    def test_wrong_password(self, client, acme, make_user, tenant_headers):
        user = make_user(acme)
        response = login(client, tenant_headers, acme, user.email, password="Wrong4Horses")
        assert response.status_code == 403

    def test_inactive_user(self, client, acme, make_user, tenant_headers):
        user = make_user(acme, is_active=False)
        response = login(client, tenant_headers, acme, user.email)
        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid credentials or user is not a member of this tenant"

    def test_login_upgrades_old_hash(self, client, acme, make_user, tenant_headers, session_factory, settings):
        user = make_user(acme)
        cheaper = PasswordHasher(memory_cost=8192, time_cost=1, parallelism=1)
        session = tenant_scoped_session(TenantInfo.from_tenant(acme), session_factory)
        try:
            session.get(User, user.id).password_hash = cheaper.hash(TEST_PASSWORD + settings.PASSWORD_PEPPER)
            session.commit()
        finally:
            session.close()

        assert login(client, tenant_headers, acme, user.email).status_code == 200

        session = tenant_scoped_session(TenantInfo.from_tenant(acme), session_factory)
        try:
            upgraded = session.get(User, user.id).password_hash
        finally:
            session.close()
        assert "m=65536,t=3,p=4" in upgraded
        assert login(client, tenant_headers, acme, user.email).status_code == 200

    def test_login_requires_tenant(self, client, acme, make_user):
        user = make_user(acme)
        response = client.post("/api/v1/auth/login", json={"email": user.email, "password": TEST_PASSWORD})
        assert response.status_code == 400

    def test_failed_login_audited(self, client, acme, make_user, tenant_headers, db_session):
        user = make_user(acme)
        login(client, tenant_headers, acme, user.email, password="Wrong4Horses")

        entries = db_session.scalars(select(AuditLog).where(AuditLog.action == "LOGIN_FAILED")).all()
        assert len(entries) == 1
        assert entries[0].tenant_id == acme.id
        assert entries[0].metadata_json["email"] == user.email

    def test_last_login_recorded(self, client, acme, make_user, tenant_headers, member_headers):
        user = make_user(acme, role="MANAGER")
        login(client, tenant_headers, acme, user.email)

        response = client.get(f"/api/v1/users/{user.id}", headers=member_headers(user, acme))
        assert response.json()["last_login_at"] is not None


class TestRefresh:
    """Test refresh tokens"""

    def test_refresh(self, client, acme, make_user, tenant_headers):
        user = make_user(acme)
        tokens = login(client, tenant_headers, acme, user.email).json()

        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": tokens["refresh_token"]},
            headers=tenant_headers(acme),
        )
        assert response.status_code == 200
        assert decode_token(response.json()["access_token"])["tenant_id"] == str(acme.id)

    def test_refresh_under_other_tenant(self, client, acme, other_tenant, make_user, tenant_headers):
        user = make_user(acme)
        tokens = login(client, tenant_headers, acme, user.email).json()

        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": tokens["refresh_token"]},
            headers=tenant_headers(other_tenant),
        )
        assert response.status_code == 403

    def test_access_token_not_a_refresh_token(self, client, acme, make_user, tenant_headers):
        user = make_user(acme)
        tokens = login(client, tenant_headers, acme, user.email).json()

        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": tokens["access_token"]},
            headers=tenant_headers(acme),
        )
        assert response.status_code == 401


class TestMe:
    """Test /auth/me"""

    def test_me(self, client, acme, make_user, member_headers):
        user = make_user(acme, role="VIEWER")
        response = client.get("/api/v1/auth/me", headers=member_headers(user, acme))

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == str(user.id)
        assert data["role"] == "VIEWER"
        assert data["tenant_switched"] is False

    def test_me_unauthenticated(self, client, acme, tenant_headers):
        response = client.get("/api/v1/auth/me", headers=tenant_headers(acme))
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_me_invalid_token(self, client, acme, tenant_headers):
        response = client.get(
            "/api/v1/auth/me",
            headers={**tenant_headers(acme), "Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401
