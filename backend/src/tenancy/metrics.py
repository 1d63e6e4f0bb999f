"""In-process rolling metrics for tenant resolution.

Complements the Prometheus counters in ``observability.metrics`` with a
short rolling window (default 5 minutes) that can be served directly by the
tenant metrics and health endpoints without a Prometheus server.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional
from uuid import UUID

from observability.metrics import tenant_resolution_duration_seconds, tenant_resolutions_total


@dataclass(frozen=True)
class ResolutionSample:
    timestamp: float
    success: bool
    duration_ms: float
    source: str
    reason: Optional[str] = None
    tenant_id: Optional[UUID] = None


@dataclass
class RollingMetrics:
    """Aggregates over the samples inside the window."""
    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 0.0
    average_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    min_duration_ms: float = 0.0
    by_source: Dict[str, int] = field(default_factory=dict)
    failures_by_reason: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "success_rate": round(self.success_rate, 4),
            "average_duration_ms": round(self.average_duration_ms, 3),
            "max_duration_ms": round(self.max_duration_ms, 3),
            "min_duration_ms": round(self.min_duration_ms, 3),
            "by_source": dict(self.by_source),
            "failures_by_reason": dict(self.failures_by_reason),
        }


class ResolutionMetrics:
    """Thread-safe rolling window of resolution outcomes.

    Every recorded sample also feeds the Prometheus resolution counter and
    duration histogram.

    Args:
        window_minutes: Width of the rolling window
        clock: Time source in seconds (injectable for tests)
    """

    def __init__(self, window_minutes: int = 5, clock: Optional[Callable[[], float]] = None):
        self.window_seconds = window_minutes * 60
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._samples: Deque[ResolutionSample] = deque()

    def record_success(self, source: str, duration_ms: float, tenant_id: Optional[UUID] = None) -> None:
        tenant_resolutions_total.labels(outcome="resolved", source=source).inc()
        tenant_resolution_duration_seconds.labels(source=source).observe(duration_ms / 1000.0)
        self._append(ResolutionSample(self._clock(), True, duration_ms, source, tenant_id=tenant_id))

    def record_failure(self, reason: str, duration_ms: float, source: Optional[str] = None) -> None:
        source = source or "none"
        tenant_resolutions_total.labels(outcome=reason, source=source).inc()
        tenant_resolution_duration_seconds.labels(source=source).observe(duration_ms / 1000.0)
        self._append(ResolutionSample(self._clock(), False, duration_ms, source, reason=reason))

    def get_rolling_metrics(self) -> RollingMetrics:
        with self._lock:
            self._evict(self._clock())
            samples = list(self._samples)

        if not samples:
            return RollingMetrics()

        durations = [s.duration_ms for s in samples]
        successes = sum(1 for s in samples if s.success)
        by_source: Dict[str, int] = {}
        failures_by_reason: Dict[str, int] = {}
        for sample in samples:
            by_source[sample.source] = by_source.get(sample.source, 0) + 1
            if not sample.success:
                failures_by_reason[sample.reason] = failures_by_reason.get(sample.reason, 0) + 1

        return RollingMetrics(
            total_requests=len(samples),
            success_count=successes,
            failure_count=len(samples) - successes,
            success_rate=successes / len(samples),
            average_duration_ms=sum(durations) / len(durations),
            max_duration_ms=max(durations),
            min_duration_ms=min(durations),
            by_source=by_source,
            failures_by_reason=failures_by_reason,
        )

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()

    def _append(self, sample: ResolutionSample) -> None:
        with self._lock:
            self._samples.append(sample)
            self._evict(sample.timestamp)

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._samples and self._samples[0].timestamp < cutoff:
            self._samples.popleft()
