"""Unit tests for the audit collector and rolling resolution metrics

Tests cover:
- Rolling window aggregation and eviction
- Access, admin and cross-tenant event recording
- Per-list retention (max_events) and TTLs
- Tenant usage metrics computed from collected events
- Degradation when Redis is missing or failing
- Persisted audit log entries
"""

import pytest
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import fakeredis
from redis.exceptions import ConnectionError as RedisConnectionError

from audit.collector import TenantAuditCollector
from audit.schemas import CrossTenantAccessEvent, TenantAccessEvent, TenantAdminOperationEvent
from audit.service import AuditAction, log_audit_event, try_log_audit_event
from models.audit_log import AuditLog
from tenancy.metrics import ResolutionMetrics


pytestmark = pytest.mark.unit


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def access_event(tenant_id, endpoint="/api/v1/horses", status_code=200, response_time_ms=12.0, **kwargs):
    return TenantAccessEvent(
        tenant_id=tenant_id,
        endpoint=endpoint,
        http_method="GET",
        status_code=status_code,
        response_time_ms=response_time_ms,
        **kwargs,
    )


class TestResolutionMetrics:
    """Test the rolling window of resolution outcomes"""

    def test_empty(self):
        metrics = ResolutionMetrics().get_rolling_metrics()
        assert metrics.total_requests == 0
        assert metrics.success_rate == 0.0

    def test_aggregates(self):
        metrics = ResolutionMetrics(clock=FakeClock())
        metrics.record_success("host", 10.0, uuid4())
        metrics.record_success("header_subdomain", 30.0)
        metrics.record_failure("not_found", 20.0, "host")
        metrics.record_failure("malformed", 40.0)

        rolling = metrics.get_rolling_metrics()
        assert rolling.total_requests == 4
        assert rolling.success_count == 2
        assert rolling.failure_count == 2
        assert rolling.success_rate == 0.5
        assert rolling.average_duration_ms == 25.0
        assert rolling.max_duration_ms == 40.0
        assert rolling.min_duration_ms == 10.0
        assert rolling.by_source == {"host": 2, "header_subdomain": 1, "none": 1}
        assert rolling.failures_by_reason == {"not_found": 1, "malformed": 1}

    def test_window_eviction(self):
        clock = FakeClock()
        metrics = ResolutionMetrics(window_minutes=5, clock=clock)
        metrics.record_success("host", 10.0)
        clock.now += 4 * 60
        metrics.record_success("host", 20.0)
        clock.now += 2 * 60

        rolling = metrics.get_rolling_metrics()
        assert rolling.total_requests == 1
        assert rolling.average_duration_ms == 20.0

    def test_to_dict(self):
        metrics = ResolutionMetrics(clock=FakeClock())
        metrics.record_success("query", 1.23456)
        data = metrics.get_rolling_metrics().to_dict()
        assert data["average_duration_ms"] == 1.235
        assert data["by_source"] == {"query": 1}

    def test_reset(self):
        metrics = ResolutionMetrics()
        metrics.record_success("host", 1.0)
        metrics.reset()
        assert metrics.get_rolling_metrics().total_requests == 0


class TestAuditCollector:
    """Test event recording and reading"""

    @pytest.fixture
    def redis(self):
        return fakeredis.FakeRedis(decode_responses=True)

    @pytest.fixture
    def collector(self, redis):
        return TenantAuditCollector(redis, max_events=5)

    def test_access_events_newest_first(self, collector):
        tenant_id = uuid4()
        base = datetime.now(timezone.utc)
        for offset in range(3):
            collector.record_access(access_event(
                tenant_id, endpoint=f"/api/v1/horses/{offset}", timestamp=base + timedelta(seconds=offset)
            ))

        events = collector.get_recent_events(tenant_id)
        assert [e.endpoint for e in events] == [f"/api/v1/horses/{i}" for i in (2, 1, 0)]
        assert all(isinstance(e, TenantAccessEvent) for e in events)

    def test_lists_are_trimmed(self, collector, redis):
        tenant_id = uuid4()
        for _ in range(8):
            collector.record_access(access_event(tenant_id))
        assert redis.llen(f"tenant_audit:{tenant_id}:recent") == 5

    def test_recent_list_expires_within_a_day(self, collector, redis):
        tenant_id = uuid4()
        collector.record_access(access_event(tenant_id))
        assert 0 < redis.ttl(f"tenant_audit:{tenant_id}:recent") <= 24 * 3600

    def test_only_tenant_lists_written(self, collector, redis):
        tenant_id = uuid4()
        collector.record_access(access_event(tenant_id, user_id=uuid4()))
        assert redis.keys("*") == [f"tenant_audit:{tenant_id}:recent"]

    def test_admin_operations(self, collector):
        tenant_id = uuid4()
        collector.record_admin_operation(TenantAdminOperationEvent(
            tenant_id=tenant_id,
            operation="suspend_tenant",
            resource_type="tenant",
            resource_id=str(tenant_id),
            previous_value="ACTIVE",
            new_value="SUSPENDED",
        ))
        operations = collector.get_admin_operations(tenant_id)
        assert len(operations) == 1
        assert isinstance(operations[0], TenantAdminOperationEvent)
        assert operations[0].new_value == "SUSPENDED"
        assert len(collector.get_recent_events(tenant_id)) == 1

    def test_cross_tenant_events_per_tenant_and_global(self, collector):
        home, target = uuid4(), uuid4()
        collector.record_cross_tenant_attempt(CrossTenantAccessEvent(
            tenant_id=home,
            target_tenant_id=target,
            attempted_endpoint="GET /api/v1/horses",
            reason="User does not belong to tenant 'meadow'",
        ))
        collector.record_cross_tenant_attempt(CrossTenantAccessEvent(
            tenant_id=uuid4(),
            target_tenant_id=target,
            attempted_endpoint="GET /api/v1/users",
            was_blocked=False,
        ))

        own = collector.get_cross_tenant_events(home)
        assert len(own) == 1
        assert own[0].target_tenant_id == target
        assert len(collector.get_cross_tenant_events(None)) == 2

    def test_tenant_metrics(self, collector):
        tenant_id = uuid4()
        collector.record_access(access_event(tenant_id, endpoint="/api/v1/horses", response_time_ms=10.0))
        collector.record_access(access_event(tenant_id, endpoint="/api/v1/horses", response_time_ms=30.0))
        collector.record_access(access_event(tenant_id, endpoint="/api/v1/users", status_code=403, response_time_ms=1500.0))
        collector.record_cross_tenant_attempt(CrossTenantAccessEvent(tenant_id=tenant_id, target_tenant_id=uuid4()))

        metrics = collector.get_tenant_metrics(tenant_id, window_minutes=60)
        assert metrics.total_requests == 3
        assert metrics.popular_endpoints[0].endpoint == "/api/v1/horses"
        assert metrics.popular_endpoints[0].count == 2
        assert metrics.status_codes == {"200": 2, "403": 1}
        assert metrics.error_rate == pytest.approx(1 / 3)
        assert metrics.slow_requests == 1
        assert metrics.average_response_time_ms == pytest.approx(1540 / 3)
        assert metrics.cross_tenant_attempts == 1
        assert metrics.blocked_cross_tenant_attempts == 1

    def test_metrics_ignore_old_events(self, collector):
        tenant_id = uuid4()
        collector.record_access(access_event(tenant_id, timestamp=datetime.now(timezone.utc) - timedelta(hours=2)))
        assert collector.get_tenant_metrics(tenant_id, window_minutes=60).total_requests == 0

    def test_unreadable_entries_skipped(self, collector, redis):
        tenant_id = uuid4()
        collector.record_access(access_event(tenant_id))
        redis.lpush(f"tenant_audit:{tenant_id}:recent", "garbage")
        assert len(collector.get_recent_events(tenant_id)) == 1

    def test_without_redis(self):
        collector = TenantAuditCollector(None)
        tenant_id = uuid4()
        collector.record_access(access_event(tenant_id))
        assert collector.get_recent_events(tenant_id) == []
        assert collector.get_tenant_metrics(tenant_id).total_requests == 0

    def test_redis_failure_never_raises(self):
        class BrokenRedis:
            def pipeline(self):
                raise RedisConnectionError("Connection refused")

            def lrange(self, *args):
                raise RedisConnectionError("Connection refused")

        collector = TenantAuditCollector(BrokenRedis())
        tenant_id = uuid4()
        collector.record_access(access_event(tenant_id))
        assert collector.get_recent_events(tenant_id) == []


class TestAuditLog:
    """Test persisted audit log entries"""

    def test_log_audit_event(self, db_session):
        tenant_id, actor_id = uuid4(), uuid4()
        entry = log_audit_event(
            db_session,
            tenant_id=tenant_id,
            action=AuditAction.TENANT_SWITCHED,
            actor_id=actor_id,
            entity_type="tenant",
            entity_id=tenant_id,
            metadata={"reason": "Support ticket 4411"},
            ip_address="203.0.113.7",
        )
        db_session.commit()

        stored = db_session.get(AuditLog, entry.id)
        assert stored.action == "TENANT_SWITCHED"
        assert stored.entity_id == str(tenant_id)
        assert stored.to_dict()["metadata"] == {"reason": "Support ticket 4411"}

    def test_written_without_tenant_context(self, db_session):
        # Audit entries are not tenant-owned: unresolved requests are audited too
        assert try_log_audit_event(db_session, tenant_id=None, action=AuditAction.LOGIN_FAILED) is not None

    def test_try_log_without_session(self):
        assert try_log_audit_event(None, tenant_id=None, action=AuditAction.LOGIN_FAILED) is None
