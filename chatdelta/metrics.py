"""Per-provider request metrics (success rate, latency)."""

from dataclasses import dataclass
from typing import Any, Dict, Iterable

from .types import ProviderResult


@dataclass
class ProviderMetrics:
    requests_total: int = 0
    requests_successful: int = 0
    total_latency_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        if not self.requests_total:
            return 0.0
        return self.requests_successful / self.requests_total * 100.0

    @property
    def average_latency_ms(self) -> float:
        if not self.requests_total:
            return 0.0
        return self.total_latency_ms / self.requests_total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requests_total": self.requests_total,
            "requests_successful": self.requests_successful,
            "success_rate": round(self.success_rate, 1),
            "average_latency_ms": round(self.average_latency_ms, 1),
        }


class MetricsRegistry:
    """Accumulates ProviderMetrics keyed by provider name."""

    def __init__(self):
        self._providers: Dict[str, ProviderMetrics] = {}

    def record(self, result: ProviderResult):
        # A cancelled unit says nothing about the provider
        if result.cancelled:
            return
        metrics = self._providers.setdefault(result.provider.name, ProviderMetrics())
        metrics.requests_total += 1
        metrics.total_latency_ms += result.latency_ms
        if result.ok:
            metrics.requests_successful += 1

    def record_all(self, results: Iterable[ProviderResult]):
        for result in results:
            self.record(result)

    def get(self, name: str) -> ProviderMetrics:
        return self._providers.get(name, ProviderMetrics())

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {name: metrics.to_dict() for name, metrics in self._providers.items()}

    def summary(self) -> str:
        total = sum(m.requests_total for m in self._providers.values())
        if not total:
            return "Metrics: ready"
        successful = sum(m.requests_successful for m in self._providers.values())
        return f"{total} requests | {successful / total * 100.0:.0f}% success"
