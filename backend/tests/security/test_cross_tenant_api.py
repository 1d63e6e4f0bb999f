"""Security tests for cross-tenant access over HTTP

Tests cover:
- A valid token for one tenant used against another tenant
- Forged tenant claims
- Blocked attempts recorded in the audit collector and the audit log
- Tokens of suspended tenants
- System administrator bypass (audited)
- Tenant switching for system administrators only
"""

import pytest
from uuid import uuid4

import jwt
from sqlalchemy import select

from auth.jwt import create_access_token, decode_token
from models.audit_log import AuditLog


pytestmark = pytest.mark.security


def foreign_headers(auth_headers, tenant_headers, user, home, target):
    """Token issued for ``home``, request aimed at ``target``."""
    return {**tenant_headers(target), **auth_headers(user, home)}


class TestTokenForOtherTenant:
    """Test tokens replayed against another tenant"""

    @pytest.mark.parametrize("path", ["/api/v1/horses", "/api/v1/auth/me", "/api/v1/tenant/current/configuration"])
    def test_denied(self, client, acme, other_tenant, make_user, auth_headers, tenant_headers, path):
        admin = make_user(acme, role="ADMIN")
        response = client.get(path, headers=foreign_headers(auth_headers, tenant_headers, admin, acme, other_tenant))

        assert response.status_code == 403
        assert "meadow" in response.json()["detail"]

    def test_attempt_recorded(self, client, app, acme, other_tenant, make_user, auth_headers, tenant_headers):
        admin = make_user(acme, role="ADMIN")
        client.get("/api/v1/horses", headers=foreign_headers(auth_headers, tenant_headers, admin, acme, other_tenant))

        events = app.state.audit_collector.get_cross_tenant_events(acme.id)
        assert len(events) == 1
        assert events[0].user_id == admin.id
        assert events[0].target_tenant_id == other_tenant.id
        assert events[0].attempted_endpoint == "GET /api/v1/horses"

    def test_denial_persisted(self, client, acme, other_tenant, make_user, auth_headers, tenant_headers, db_session):
        admin = make_user(acme, role="ADMIN")
        client.get("/api/v1/horses", headers=foreign_headers(auth_headers, tenant_headers, admin, acme, other_tenant))

        entry = db_session.scalars(select(AuditLog).where(AuditLog.action == "AUTHORIZATION_DENIED")).one()
        assert entry.tenant_id == other_tenant.id
        assert entry.actor_id == admin.id
        assert entry.metadata_json["home_tenant_id"] == str(acme.id)

    def test_write_denied(self, client, acme, other_tenant, make_user, auth_headers, tenant_headers, member_headers):
        volunteer = make_user(acme)
        response = client.post(
            "/api/v1/horses",
            json={"name": "Trojan"},
            headers=foreign_headers(auth_headers, tenant_headers, volunteer, acme, other_tenant),
        )
        assert response.status_code == 403

        owner = make_user(other_tenant)
        horses = client.get("/api/v1/horses", headers=member_headers(owner, other_tenant)).json()
        assert horses["total"] == 0

    def test_forged_tenant_claim(self, client, settings, acme, other_tenant, make_user, auth_headers, tenant_headers):
        admin = make_user(acme, role="ADMIN")
        token = auth_headers(admin, acme)["Authorization"].split(" ", 1)[1]
        claims = jwt.decode(token, options={"verify_signature": False})
        forged = jwt.encode(
            {**claims, "tenant_id": str(other_tenant.id)}, "guessed-secret", algorithm=settings.JWT_ALGORITHM
        )

        response = client.get(
            "/api/v1/horses",
            headers={**tenant_headers(other_tenant), "Authorization": f"Bearer {forged}"},
        )
        assert response.status_code == 401

    def test_suspended_tenant_token(self, client, make_tenant, make_user, member_headers):
        from models.tenant import TenantStatus

        closed = make_tenant("closed", status=TenantStatus.SUSPENDED)
        volunteer = make_user(closed)
        response = client.get("/api/v1/horses", headers=member_headers(volunteer, closed))
        assert response.status_code == 403
        assert response.headers["content-type"].startswith("application/problem+json")


class TestSystemAdminBypass:
    """Test system administrators working inside a tenant"""

    def test_bypass_allowed_and_audited(self, client, acme, system_admin, system_tenant, auth_headers, tenant_headers, db_session):
        response = client.get(
            "/api/v1/horses",
            headers=foreign_headers(auth_headers, tenant_headers, system_admin, system_tenant, acme),
        )
        assert response.status_code == 200

        entry = db_session.scalars(select(AuditLog).where(AuditLog.action == "SYSTEM_ADMIN_BYPASS")).one()
        assert entry.tenant_id == acme.id
        assert entry.entity_id == "TenantUser"


class TestSwitchTenant:
    """Test /auth/switch-tenant"""

    def test_switch(self, client, app, acme, system_admin, system_tenant, auth_headers, tenant_headers, db_session):
        response = client.post(
            "/api/v1/auth/switch-tenant",
            json={"tenant_id": str(acme.id), "reason": "Support ticket 4411"},
            headers=auth_headers(system_admin, system_tenant),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] == str(acme.id)
        assert data["refresh_token"] is None

        claims = decode_token(data["access_token"])
        assert claims["tenant_id"] == str(acme.id)
        assert claims["original_tenant_id"] == str(system_tenant.id)

        me = client.get(
            "/api/v1/auth/me",
            headers={**tenant_headers(acme), "Authorization": f"Bearer {data['access_token']}"},
        ).json()
        assert me["tenant_switched"] is True
        assert me["original_tenant_id"] == str(system_tenant.id)

        entry = db_session.scalars(select(AuditLog).where(AuditLog.action == "TENANT_SWITCHED")).one()
        assert entry.metadata_json["reason"] == "Support ticket 4411"

        events = app.state.audit_collector.get_cross_tenant_events(system_tenant.id)
        assert events[0].was_blocked is False

    def test_tenant_admin_cannot_switch(self, client, acme, other_tenant, make_user, member_headers):
        admin = make_user(acme, role="ADMIN", can_switch_tenant=True)
        response = client.post(
            "/api/v1/auth/switch-tenant",
            json={"tenant_id": str(other_tenant.id)},
            headers=member_headers(admin, acme),
        )
        assert response.status_code == 403

    def test_system_admin_switches_after_login(self, client, acme, system_tenant, make_user, tenant_headers):
        operator = make_user(system_tenant, role="SYSTEM_ADMIN", email="nightshift@rescueranger.org")
        login = client.post(
            "/api/v1/auth/login",
            json={"email": operator.email, "password": "Stable4Horses"},
            headers=tenant_headers(system_tenant),
        )
        assert login.status_code == 200
        assert decode_token(login.json()["access_token"])["can_switch_tenant"] is True

        response = client.post(
            "/api/v1/auth/switch-tenant",
            json={"tenant_id": str(acme.id)},
            headers={"Authorization": f"Bearer {login.json()['access_token']}"},
        )
        assert response.status_code == 200
        assert response.json()["tenant_id"] == str(acme.id)

    def test_token_without_switch_claim(self, client, acme, system_admin, system_tenant):
        token = create_access_token(
            user_id=system_admin.id,
            tenant_id=system_tenant.id,
            role=system_admin.role,
            email=system_admin.email,
            tenant_subdomain=system_tenant.subdomain,
            system_admin=True,
            can_switch_tenant=False,
        )
        response = client.post(
            "/api/v1/auth/switch-tenant",
            json={"tenant_id": str(acme.id)},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 403

    def test_switch_to_unknown_tenant(self, client, system_admin, system_tenant, auth_headers):
        response = client.post(
            "/api/v1/auth/switch-tenant",
            json={"tenant_id": str(uuid4())},
            headers=auth_headers(system_admin, system_tenant),
        )
        assert response.status_code == 404

    def test_switch_to_suspended_tenant(self, client, make_tenant, system_admin, system_tenant, auth_headers):
        from models.tenant import TenantStatus

        closed = make_tenant("closed", status=TenantStatus.SUSPENDED)
        response = client.post(
            "/api/v1/auth/switch-tenant",
            json={"tenant_id": str(closed.id)},
            headers=auth_headers(system_admin, system_tenant),
        )
        assert response.status_code == 403
