"""Integration tests for tenant-owned horse records

Tests cover:
- New horses stamped with the request's tenant
- Listing and reading only the current tenant's horses
- HorseManagement policy (viewers read, volunteers manage)
- max_horses limit
"""

import pytest

from tenancy.schemas import TenantConfiguration


pytestmark = pytest.mark.integration


def add_horse(client, headers, name="Dakota", **kwargs):
    return client.post("/api/v1/horses", json={"name": name, "breed": "Quarter Horse", **kwargs}, headers=headers)


class TestHorses:
    """Test horse endpoints"""

    def test_create_stamps_tenant(self, client, acme, make_user, member_headers):
        volunteer = make_user(acme)
        response = add_horse(client, member_headers(volunteer, acme))

        assert response.status_code == 201
        data = response.json()
        assert data["tenant_id"] == str(acme.id)
        assert data["status"] == "IN_CARE"

    def test_list_is_isolated(self, client, acme, other_tenant, make_user, member_headers):
        acme_volunteer = make_user(acme)
        meadow_volunteer = make_user(other_tenant)
        add_horse(client, member_headers(acme_volunteer, acme), name="Dakota")
        add_horse(client, member_headers(acme_volunteer, acme), name="Biscuit")
        add_horse(client, member_headers(meadow_volunteer, other_tenant), name="Willow")

        acme_horses = client.get("/api/v1/horses", headers=member_headers(acme_volunteer, acme)).json()
        assert [h["name"] for h in acme_horses["horses"]] == ["Biscuit", "Dakota"]

        meadow_horses = client.get("/api/v1/horses", headers=member_headers(meadow_volunteer, other_tenant)).json()
        assert [h["name"] for h in meadow_horses["horses"]] == ["Willow"]

    def test_status_filter(self, client, acme, make_user, member_headers):
        volunteer = make_user(acme)
        headers = member_headers(volunteer, acme)
        add_horse(client, headers, name="Dakota")
        add_horse(client, headers, name="Biscuit", status="AVAILABLE")

        response = client.get("/api/v1/horses", params={"status": "AVAILABLE"}, headers=headers)
        assert response.json()["total"] == 1

    def test_other_tenant_horse_not_found(self, client, acme, other_tenant, make_user, member_headers):
        acme_volunteer = make_user(acme)
        meadow_volunteer = make_user(other_tenant)
        horse_id = add_horse(client, member_headers(meadow_volunteer, other_tenant)).json()["id"]

        headers = member_headers(acme_volunteer, acme)
        assert client.get(f"/api/v1/horses/{horse_id}", headers=headers).status_code == 404
        assert client.delete(f"/api/v1/horses/{horse_id}", headers=headers).status_code == 404

        # Still there for its owner
        owner_headers = member_headers(meadow_volunteer, other_tenant)
        assert client.get(f"/api/v1/horses/{horse_id}", headers=owner_headers).status_code == 200

    def test_viewer_reads_but_cannot_manage(self, client, acme, make_user, member_headers):
        viewer = make_user(acme, role="VIEWER")
        headers = member_headers(viewer, acme)

        assert client.get("/api/v1/horses", headers=headers).status_code == 200
        assert add_horse(client, headers).status_code == 403

    def test_delete(self, client, acme, make_user, member_headers):
        volunteer = make_user(acme)
        headers = member_headers(volunteer, acme)
        horse_id = add_horse(client, headers).json()["id"]

        assert client.delete(f"/api/v1/horses/{horse_id}", headers=headers).status_code == 204
        assert client.get(f"/api/v1/horses/{horse_id}", headers=headers).status_code == 404

    def test_horse_limit(self, client, make_tenant, make_user, member_headers):
        barn = make_tenant("tiny-barn", "Tiny Barn", configuration=TenantConfiguration(max_horses=1))
        volunteer = make_user(barn)
        headers = member_headers(volunteer, barn)

        assert add_horse(client, headers).status_code == 201
        response = add_horse(client, headers, name="Biscuit")
        assert response.status_code == 403
        assert response.json()["title"] == "Tenant limit reached"

    def test_requires_tenant(self, client, acme, make_user, auth_headers):
        volunteer = make_user(acme)
        response = client.get("/api/v1/horses", headers=auth_headers(volunteer, acme))
        assert response.status_code == 403
