"""
Prometheus Metrics Module

Exposes metrics for monitoring the voting core.

Metrics:
- Counters: ballots cast, motions closed, rejected operations
- Histograms: lock wait time

Usage:
    from agvote.core.metrics import metrics

    metrics.record_ballot(source="direct")
    metrics.record_motion_closed(decision="adopted")
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from agvote.core.config import settings


class MetricsCollector:
    """
    Prometheus metrics collector for the voting core.

    Uses its own registry so several app instances (tests) never clash on
    the global default registry.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, enabled: bool = True) -> None:
        """
        Initialize metrics collector.

        Args:
            enabled: Whether to collect metrics
        """
        self.enabled = enabled
        self.registry = CollectorRegistry()

        self.ballots_total = Counter(
            "agvote_ballots_total",
            "Ballots recorded (upserts, excluding idempotent replays)",
            ["source"],
            registry=self.registry,
        )

        self.ballots_cancelled_total = Counter(
            "agvote_ballots_cancelled_total",
            "Manual ballots cancelled by an operator",
            registry=self.registry,
        )

        self.idempotent_replays_total = Counter(
            "agvote_idempotent_replays_total",
            "Cast requests collapsed onto an earlier submission",
            registry=self.registry,
        )

        self.motions_closed_total = Counter(
            "agvote_motions_closed_total",
            "Motions closed, by decision",
            ["decision"],
            registry=self.registry,
        )

        self.rejections_total = Counter(
            "agvote_rejections_total",
            "Operations rejected with a typed error",
            ["code"],
            registry=self.registry,
        )

        self.lock_wait = Histogram(
            "agvote_lock_wait_seconds",
            "Time spent waiting for a keyed lock",
            ["lock"],
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
            registry=self.registry,
        )

    def record_ballot(self, source: str) -> None:
        """Record a stored ballot."""
        if self.enabled:
            self.ballots_total.labels(source=source).inc()

    def record_ballot_cancelled(self) -> None:
        """Record a cancelled manual ballot."""
        if self.enabled:
            self.ballots_cancelled_total.inc()

    def record_idempotent_replay(self) -> None:
        """Record a retry collapsed by its idempotency key."""
        if self.enabled:
            self.idempotent_replays_total.inc()

    def record_motion_closed(self, decision: str) -> None:
        """Record a closed motion."""
        if self.enabled:
            self.motions_closed_total.labels(decision=decision).inc()

    def record_rejection(self, code: str) -> None:
        """Record a typed rejection."""
        if self.enabled:
            self.rejections_total.labels(code=code).inc()

    def record_lock_wait(self, lock: str, seconds: float) -> None:
        """Record how long a caller waited for a lock."""
        if self.enabled:
            self.lock_wait.labels(lock=lock).observe(seconds)

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)


metrics = MetricsCollector(enabled=settings.metrics_enabled)
