from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.context_managers import Timer

from controller.src.errors import ReconcileError

RECONCILE_DURATION_BUCKETS = (0.01, 0.1, 0.25, 0.5, 1, 5, 15, 60, float("inf"))


class ReconcilerMetrics:
    """Prometheus metrics exported by the controller on ``/metrics``.

    Metrics are registered into the registry passed in rather than the
    process default, so each ``State`` (and each test) owns its own set.
    Failures carry an ``instance`` (document name) and an ``error`` label
    built from the error's kind chain.
    """

    def __init__(self, registry: CollectorRegistry) -> None:
        self.registry = registry
        self.reconciliations = Counter(
            "doc_controller_reconciliations",
            "Total reconciliations",
            registry=registry,
        )
        self.failures = Counter(
            "doc_controller_reconciliation_errors",
            "Total reconciliation errors",
            ["instance", "error"],
            registry=registry,
        )
        self.reconcile_duration = Histogram(
            "doc_controller_reconcile_duration_seconds",
            "Duration of reconcile to complete in seconds",
            buckets=RECONCILE_DURATION_BUCKETS,
            registry=registry,
        )

    def count_and_measure(self) -> Timer:
        """Count a reconcile and return a timer observing its duration on exit.

        Use as ``with metrics.count_and_measure():`` around the whole
        reconcile body so the observation is recorded exactly once, whether
        the body returns or raises.
        """
        self.reconciliations.inc()
        return self.reconcile_duration.time()

    def set_failure(self, instance: str, error: ReconcileError) -> None:
        self.failures.labels(instance=instance, error=error.metric_label()).inc()

    def render(self) -> bytes:
        return generate_latest(self.registry)
