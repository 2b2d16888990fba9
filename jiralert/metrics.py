from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

REQUESTS_METRIC = "jiralert_requests_total"


class RequestMetrics:
    """Per-receiver request counters exposed on /metrics."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._requests = Counter(
            REQUESTS_METRIC,
            "Requests processed, by receiver and status code.",
            ["receiver", "code"],
            registry=self.registry,
        )

    def observe(self, receiver: str, status: int) -> None:
        self._requests.labels(receiver=receiver, code=str(status)).inc()

    def value(self, receiver: str, status: int) -> float:
        sample = self.registry.get_sample_value(REQUESTS_METRIC, {"receiver": receiver, "code": str(status)})
        return sample or 0.0

    def exposition(self) -> bytes:
        return generate_latest(self.registry)
