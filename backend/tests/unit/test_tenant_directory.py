"""Unit tests for the tenant directory and tenant context

Tests cover:
- Cache-first lookups by subdomain and ID
- Fallback to the database when the cache is down
- Creation rules (reserved and duplicate subdomains, defaults)
- Status changes visible immediately (cache invalidation)
- Subdomain changes only before the first activation
- TenantContext set/clear and access re-validation
- Tenant-scoped sessions refused once the tenant becomes inaccessible
"""

import pytest
from uuid import uuid4

from fastapi import HTTPException

from models.tenant import TenantStatus
from tenancy.cache import TenantCache, id_key, subdomain_key
from tenancy.context import TenantContext, TenantInfo
from tenancy.dependencies import get_tenant_db
from tenancy.directory import TenantDirectory
from tenancy.errors import TenantErrorKind
from tenancy.isolation import session_context
from tenancy.schemas import TenantConfiguration, TenantCreate, TenantUpdate
from tenancy.router import deep_merge


pytestmark = pytest.mark.unit


class DownRedis:
    def __getattr__(self, name):
        from redis.exceptions import ConnectionError as RedisConnectionError

        def fail(*args, **kwargs):
            raise RedisConnectionError("Connection refused")
        return fail


@pytest.fixture
def directory(db_session, tenant_cache, settings) -> TenantDirectory:
    return TenantDirectory(db_session, tenant_cache, settings)


class TestLookups:
    """Test directory lookups"""

    def test_get_by_subdomain(self, directory, acme):
        tenant = directory.get_by_subdomain("acme")
        assert tenant.id == acme.id
        assert tenant.name == "Acme Horse Rescue"
        assert tenant.status == TenantStatus.ACTIVE

    def test_lookup_is_case_insensitive(self, directory, acme):
        assert directory.get_by_subdomain("  ACME ").id == acme.id

    def test_lookup_populates_cache(self, directory, tenant_cache, acme):
        directory.get_by_subdomain("acme")
        assert tenant_cache.get(subdomain_key("acme")).id == acme.id
        assert tenant_cache.get(id_key(acme.id)).subdomain == "acme"

    def test_get_by_id(self, directory, acme):
        assert directory.get_by_id(acme.id).subdomain == "acme"

    def test_unknown(self, directory, acme):
        assert directory.get_by_subdomain("nobody") is None
        assert directory.get_by_id(uuid4()) is None
        assert directory.get_by_subdomain("") is None

    def test_cache_down_falls_back_to_database(self, db_session, settings, acme):
        directory = TenantDirectory(db_session, TenantCache(DownRedis()), settings)
        assert directory.get_by_subdomain("acme").id == acme.id
        assert directory.get_by_id(acme.id).id == acme.id

    def test_count_active(self, directory, acme, other_tenant, make_tenant):
        make_tenant("newbie", status=TenantStatus.PROVISIONING)
        assert directory.count_active() == 2

    def test_list_tenants_filtered_and_paged(self, directory, acme, other_tenant, make_tenant):
        make_tenant("newbie", status=TenantStatus.PROVISIONING)
        active, total = directory.list_tenants(TenantStatus.ACTIVE)
        assert total == 2
        assert {t.subdomain for t in active} == {"acme", "meadow"}

        page, total = directory.list_tenants(page=2, page_size=2)
        assert total == 3
        assert len(page) == 1


class TestCreate:
    """Test tenant creation"""

    def _data(self, subdomain="happy-hooves", **kwargs):
        return TenantCreate(name="Happy Hooves", subdomain=subdomain, contact_email="Office@HappyHooves.org", **kwargs)

    def test_create_provisioning_with_defaults(self, directory, settings):
        result = directory.create(self._data(), created_by="ops@rescueranger.org")
        assert result.is_ok
        tenant = result.value
        assert tenant.status == TenantStatus.PROVISIONING.value
        assert tenant.contact_email == "office@happyhooves.org"
        assert tenant.configuration["max_users"] == settings.DEFAULT_MAX_USERS
        assert tenant.created_by == "ops@rescueranger.org"

    def test_create_active(self, directory):
        tenant = directory.create(self._data(activate=True)).value
        assert tenant.status == TenantStatus.ACTIVE.value
        assert tenant.activated_at is not None

    @pytest.mark.parametrize("subdomain", ["admin", "www", "staging", "docs"])
    def test_reserved_subdomain(self, directory, subdomain):
        result = directory.create(self._data(subdomain=subdomain))
        assert result.error.kind == TenantErrorKind.MALFORMED_INPUT

    def test_duplicate_subdomain(self, directory, acme):
        result = directory.create(self._data(subdomain="ACME"))
        assert result.error.kind == TenantErrorKind.CONFLICT

    def test_availability(self, directory, acme):
        assert not directory.is_subdomain_available("acme")
        assert directory.is_subdomain_available("acme", exclude_id=acme.id)
        assert directory.is_subdomain_available("fresh")


class TestMutations:
    """Test lifecycle changes and cache invalidation"""

    def test_suspension_visible_immediately(self, directory, acme):
        # Warm the cache with the ACTIVE projection
        assert directory.get_by_id(acme.id).status == TenantStatus.ACTIVE

        result = directory.update_status(acme.id, TenantStatus.SUSPENDED, "Unpaid invoice")
        assert result.is_ok
        assert result.value.suspension_reason == "Unpaid invoice"

        tenant = directory.get_by_id(acme.id)
        assert tenant.status == TenantStatus.SUSPENDED
        assert not tenant.can_access
        assert directory.get_by_subdomain("acme").status == TenantStatus.SUSPENDED

    def test_suspend_default_reason(self, directory, acme):
        tenant = directory.update_status(acme.id, TenantStatus.SUSPENDED).value
        assert tenant.suspension_reason == "No reason provided"

    def test_reactivate_clears_suspension(self, directory, acme):
        directory.update_status(acme.id, TenantStatus.SUSPENDED, "Unpaid invoice")
        tenant = directory.update_status(acme.id, TenantStatus.ACTIVE).value
        assert tenant.suspended_at is None
        assert tenant.suspension_reason is None

    def test_delete_is_soft(self, directory, acme):
        assert directory.delete(acme.id).is_ok
        tenant = directory.get_record(acme.id)
        assert tenant is not None
        assert tenant.status == TenantStatus.PENDING_DELETION.value

    def test_unknown_tenant(self, directory):
        result = directory.update_status(uuid4(), TenantStatus.SUSPENDED)
        assert result.error.kind == TenantErrorKind.NOT_FOUND

    def test_subdomain_change_refused_while_active(self, directory, acme):
        result = directory.update(acme.id, TenantUpdate(subdomain="acme-two"))
        assert result.error.kind == TenantErrorKind.CONFLICT

    def test_subdomain_change_while_provisioning(self, directory, make_tenant):
        tenant = make_tenant("newbie", status=TenantStatus.PROVISIONING)
        directory.get_by_subdomain("newbie")

        result = directory.update(tenant.id, TenantUpdate(subdomain="renamed"))
        assert result.is_ok
        assert directory.get_by_subdomain("newbie") is None
        assert directory.get_by_subdomain("renamed").id == tenant.id

    def test_subdomain_change_refused_after_activation(self, directory, make_tenant):
        tenant = make_tenant("newbie", status=TenantStatus.PROVISIONING)
        directory.update_status(tenant.id, TenantStatus.ACTIVE)
        directory.update_status(tenant.id, TenantStatus.SUSPENDED, "Unpaid invoice")

        result = directory.update(tenant.id, TenantUpdate(subdomain="renamed"))
        assert result.error.kind == TenantErrorKind.CONFLICT
        assert directory.get_by_subdomain("newbie").id == tenant.id
        assert directory.get_by_subdomain("renamed") is None

    def test_subdomain_change_to_taken_name(self, directory, acme, make_tenant):
        tenant = make_tenant("newbie", status=TenantStatus.PROVISIONING)
        result = directory.update(tenant.id, TenantUpdate(subdomain="acme"))
        assert result.error.kind == TenantErrorKind.CONFLICT

    def test_update_configuration_invalidates(self, directory, acme):
        directory.get_by_id(acme.id)
        directory.update_configuration(acme.id, TenantConfiguration(max_horses=3))
        assert directory.get_by_id(acme.id).configuration.max_horses == 3

    def test_rotate_api_key(self, directory, acme):
        tenant = directory.rotate_api_key(acme.id).value
        first_key = tenant.api_key
        assert len(first_key) >= 43
        assert directory.rotate_api_key(acme.id).value.api_key != first_key


class TestTenantContext:
    """Test the request-scoped tenant context"""

    def test_empty(self):
        context = TenantContext()
        assert not context.is_valid
        assert context.tenant_id is None
        assert context.configuration == TenantConfiguration()

    def test_set_and_clear(self):
        tenant = TenantInfo(id=uuid4(), subdomain="acme", name="Acme", status=TenantStatus.ACTIVE)
        context = TenantContext()
        assert context.set_tenant(tenant).is_ok
        assert context.tenant_id == tenant.id
        assert context.subdomain == "acme"

        context.clear()
        assert context.tenant is None
        assert not context.is_valid

    @pytest.mark.parametrize("tenant", [
        None,
        TenantInfo(subdomain="acme"),
        TenantInfo(id=uuid4(), subdomain="  "),
    ])
    def test_invalid_tenant_refused(self, tenant):
        valid = TenantInfo(id=uuid4(), subdomain="acme")
        context = TenantContext(valid)
        result = context.set_tenant(tenant)
        assert result.error.kind == TenantErrorKind.MALFORMED_INPUT
        assert context.tenant == valid

    def test_validate_access_rereads_directory(self, directory, acme):
        context = TenantContext(directory.get_by_id(acme.id))
        assert context.validate_access(directory)

        directory.update_status(acme.id, TenantStatus.SUSPENDED)
        # The held projection is stale, the directory is not
        assert context.validate_access()
        assert not context.validate_access(directory)

    def test_validate_access_empty(self, directory):
        assert not TenantContext().validate_access(directory)


class TestTenantSession:
    """Test the tenant-scoped session dependency"""

    def test_scopes_session(self, directory, db_session, acme):
        context = TenantContext(directory.get_by_id(acme.id))
        session = get_tenant_db(context, db_session, directory)
        assert session_context(session) is context

    def test_suspended_after_resolution(self, directory, db_session, acme):
        context = TenantContext(directory.get_by_id(acme.id))
        directory.update_status(acme.id, TenantStatus.SUSPENDED, reason="Unpaid invoice")

        with pytest.raises(HTTPException) as exc_info:
            get_tenant_db(context, db_session, directory)
        assert exc_info.value.status_code == 403

    def test_tenant_gone_after_resolution(self, directory, db_session):
        context = TenantContext(TenantInfo(id=uuid4(), subdomain="ghost", name="Ghost", status=TenantStatus.ACTIVE))
        with pytest.raises(HTTPException) as exc_info:
            get_tenant_db(context, db_session, directory)
        assert exc_info.value.status_code == 403

    def test_no_tenant_passes_through(self, directory, db_session):
        context = TenantContext()
        assert session_context(get_tenant_db(context, db_session, directory)) is context


class TestDeepMerge:
    """Test configuration deep merge"""

    def test_nested_merge(self):
        base = {"a": 1, "b": {"c": 2, "d": 3}}
        assert deep_merge(base, {"b": {"c": 99}}) == {"a": 1, "b": {"c": 99, "d": 3}}
        assert base == {"a": 1, "b": {"c": 2, "d": 3}}

    def test_non_dict_values_replaced(self):
        assert deep_merge({"a": [1, 2], "b": {"c": 1}}, {"a": [3], "b": 5}) == {"a": [3], "b": 5}
