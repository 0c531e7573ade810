"""
Prometheus metrics for the registrar, the dispatcher and the retry queue.
"""

from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge


class RegistrarMetrics:
    """Metric families shared by the controller components."""

    def __init__(self, registry: CollectorRegistry = REGISTRY, prefix: str = "pod_registrar"):
        self.registry_operations = Counter(
            f"{prefix}_registry_operations_total",
            "Registry operations by outcome",
            ["operation", "result"],
            registry=registry,
        )
        self.events = Counter(
            f"{prefix}_events_total",
            "Pod notifications handled by the dispatcher",
            ["kind", "outcome"],
            registry=registry,
        )
        self.retries = Counter(
            f"{prefix}_retry_queue_adds_total",
            "Work items handed to the retry queue",
            ["action"],
            registry=registry,
        )
        self.retry_drops = Counter(
            f"{prefix}_retry_queue_drops_total",
            "Work items dropped after exhausting their retries",
            ["action"],
            registry=registry,
        )
        self.queue_depth = Gauge(
            f"{prefix}_retry_queue_depth",
            "Work items waiting in the retry queue",
            registry=registry,
        )
        self.handles = Gauge(
            f"{prefix}_client_handles",
            "Live discovery client handles",
            registry=registry,
        )

    def record_operation(self, operation: str, ok: bool) -> None:
        self.registry_operations.labels(
            operation=operation, result="success" if ok else "failure"
        ).inc()

    def record_event(self, kind: str, outcome: str) -> None:
        self.events.labels(kind=kind, outcome=outcome).inc()


_metrics: RegistrarMetrics | None = None


def get_metrics() -> RegistrarMetrics:
    """Get or create the process-wide metrics singleton."""
    global _metrics
    if _metrics is None:
        _metrics = RegistrarMetrics()
    return _metrics
