"""Integration tests for user management inside a tenant

Tests cover:
- Listing only the current tenant's users
- Inviting users (role ceiling, duplicates, password strength, max_users)
- Role changes (TenantAdmin only, never above the caller's role)
- Removing users (never oneself)
- Users of other tenants are not found
"""

import pytest

from tenancy.schemas import TenantConfiguration


pytestmark = pytest.mark.integration


def invite_payload(email="sam@acme-rescue.org", role="VOLUNTEER", password="Stable4Horses"):
    return {"email": email, "first_name": "Sam", "last_name": "Rivera", "role": role, "password": password}


class TestListUsers:
    """Test listing users"""

    def test_list_only_own_tenant(self, client, acme, other_tenant, make_user, member_headers):
        manager = make_user(acme, role="MANAGER")
        make_user(acme, role="VOLUNTEER")
        make_user(other_tenant, role="VOLUNTEER")

        response = client.get("/api/v1/users", headers=member_headers(manager, acme))
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert {u["tenant_id"] for u in data["users"]} == {str(acme.id)}
        assert all("password_hash" not in u for u in data["users"])

    def test_volunteer_cannot_list(self, client, acme, make_user, member_headers):
        volunteer = make_user(acme)
        response = client.get("/api/v1/users", headers=member_headers(volunteer, acme))
        assert response.status_code == 403

    def test_other_tenant_user_not_found(self, client, acme, other_tenant, make_user, member_headers):
        manager = make_user(acme, role="MANAGER")
        outsider = make_user(other_tenant)

        response = client.get(f"/api/v1/users/{outsider.id}", headers=member_headers(manager, acme))
        assert response.status_code == 404

    def test_view_self(self, client, acme, make_user, member_headers):
        viewer = make_user(acme, role="VIEWER")
        response = client.get(f"/api/v1/users/{viewer.id}", headers=member_headers(viewer, acme))
        assert response.status_code == 200
        assert response.json()["email"] == viewer.email


class TestInvite:
    """Test inviting users"""

    def test_invite(self, client, app, acme, make_user, member_headers):
        manager = make_user(acme, role="MANAGER")
        response = client.post("/api/v1/users/invite", json=invite_payload(), headers=member_headers(manager, acme))

        assert response.status_code == 201
        data = response.json()
        assert data["tenant_id"] == str(acme.id)
        assert data["role"] == "VOLUNTEER"

        operations = app.state.audit_collector.get_admin_operations(acme.id)
        assert operations[0].operation == "invite_user"

    def test_invited_user_can_log_in(self, client, acme, make_user, member_headers, tenant_headers):
        manager = make_user(acme, role="MANAGER")
        client.post("/api/v1/users/invite", json=invite_payload(), headers=member_headers(manager, acme))

        response = client.post(
            "/api/v1/auth/login",
            json={"email": "sam@acme-rescue.org", "password": "Stable4Horses"},
            headers=tenant_headers(acme),
        )
        assert response.status_code == 200

    def test_same_email_in_another_tenant(self, client, acme, other_tenant, make_user, member_headers):
        make_user(other_tenant, email="sam@acme-rescue.org")
        manager = make_user(acme, role="MANAGER")

        response = client.post("/api/v1/users/invite", json=invite_payload(), headers=member_headers(manager, acme))
        assert response.status_code == 201

    def test_duplicate_email(self, client, acme, make_user, member_headers):
        manager = make_user(acme, role="MANAGER")
        make_user(acme, email="sam@acme-rescue.org")

        response = client.post("/api/v1/users/invite", json=invite_payload(), headers=member_headers(manager, acme))
        assert response.status_code == 409

    def test_weak_password(self, client, acme, make_user, member_headers):
        manager = make_user(acme, role="MANAGER")
        response = client.post(
            "/api/v1/users/invite",
            json=invite_payload(password="alllowercase"),
            headers=member_headers(manager, acme),
        )
        assert response.status_code == 400

    def test_cannot_grant_role_above_own(self, client, acme, make_user, member_headers):
        manager = make_user(acme, role="MANAGER")
        response = client.post(
            "/api/v1/users/invite",
            json=invite_payload(role="TENANT_ADMIN"),
            headers=member_headers(manager, acme),
        )
        assert response.status_code == 403

    def test_platform_roles_not_assignable(self, client, acme, make_user, member_headers):
        admin = make_user(acme, role="ADMIN")
        response = client.post(
            "/api/v1/users/invite",
            json=invite_payload(role="SYSTEM_ADMIN"),
            headers=member_headers(admin, acme),
        )
        assert response.status_code == 422

    def test_user_limit(self, client, make_tenant, make_user, member_headers):
        small = make_tenant("small", "Small Barn", configuration=TenantConfiguration(max_users=2))
        manager = make_user(small, role="MANAGER")
        make_user(small)

        response = client.post(
            "/api/v1/users/invite",
            json=invite_payload(email="third@small-rescue.org"),
            headers=member_headers(manager, small),
        )
        assert response.status_code == 403
        assert "max_users=2" in response.json()["detail"]


class TestRoleChange:
    """Test role assignment"""

    def test_tenant_admin_changes_role(self, client, acme, make_user, member_headers):
        admin = make_user(acme, role="TENANT_ADMIN")
        volunteer = make_user(acme)

        response = client.patch(
            f"/api/v1/users/{volunteer.id}/role",
            json={"role": "MANAGER"},
            headers=member_headers(admin, acme),
        )
        assert response.status_code == 200
        assert response.json()["role"] == "MANAGER"

    def test_manager_cannot_assign_roles(self, client, acme, make_user, member_headers):
        manager = make_user(acme, role="MANAGER")
        volunteer = make_user(acme)

        response = client.patch(
            f"/api/v1/users/{volunteer.id}/role",
            json={"role": "VIEWER"},
            headers=member_headers(manager, acme),
        )
        assert response.status_code == 403

    def test_cannot_promote_above_own_role(self, client, acme, make_user, member_headers):
        admin = make_user(acme, role="TENANT_ADMIN")
        volunteer = make_user(acme)

        response = client.patch(
            f"/api/v1/users/{volunteer.id}/role",
            json={"role": "ADMIN"},
            headers=member_headers(admin, acme),
        )
        assert response.status_code == 403

    def test_other_tenant_user(self, client, acme, other_tenant, make_user, member_headers):
        admin = make_user(acme, role="ADMIN")
        outsider = make_user(other_tenant)

        response = client.patch(
            f"/api/v1/users/{outsider.id}/role",
            json={"role": "MANAGER"},
            headers=member_headers(admin, acme),
        )
        assert response.status_code == 404


class TestRemoveUser:
    """Test removing users"""

    def test_remove(self, client, acme, make_user, member_headers):
        admin = make_user(acme, role="ADMIN")
        volunteer = make_user(acme)
        headers = member_headers(admin, acme)

        response = client.delete(f"/api/v1/users/{volunteer.id}", headers=headers)
        assert response.status_code == 204
        assert client.get(f"/api/v1/users/{volunteer.id}", headers=headers).status_code == 404

    def test_cannot_remove_self(self, client, acme, make_user, member_headers):
        admin = make_user(acme, role="ADMIN")
        response = client.delete(f"/api/v1/users/{admin.id}", headers=member_headers(admin, acme))

        assert response.status_code == 403
        assert response.json()["detail"] == "Users cannot remove themselves"

    def test_manager_cannot_remove(self, client, acme, make_user, member_headers):
        manager = make_user(acme, role="MANAGER")
        volunteer = make_user(acme)
        response = client.delete(f"/api/v1/users/{volunteer.id}", headers=member_headers(manager, acme))
        assert response.status_code == 403

    def test_other_tenant_user(self, client, acme, other_tenant, make_user, member_headers):
        admin = make_user(acme, role="ADMIN")
        outsider = make_user(other_tenant)
        response = client.delete(f"/api/v1/users/{outsider.id}", headers=member_headers(admin, acme))
        assert response.status_code == 404
