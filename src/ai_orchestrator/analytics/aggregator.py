"""Pure business-logic helpers for response log aggregation."""

from __future__ import annotations

from typing import Dict, List, Sequence

from ai_orchestrator.analytics.interfaces import IAnalyticsAggregator
from ai_orchestrator.domain.models import CallStatus, LogRecord


class AnalyticsAggregator(IAnalyticsAggregator):
    """Performs read-only calculations on log records."""

    def calculate_total_cost(self, records: Sequence[LogRecord]) -> float:
        return round(
            sum(record.cost_estimate for record in records if record.cost_estimate),
            6,
        )

    def success_rate(self, records: Sequence[LogRecord]) -> float:
        if not records:
            return 0.0
        successes = sum(1 for record in records if record.status is CallStatus.SUCCESS)
        return round(successes / len(records), 6)

    def group_by_provider(
        self, records: Sequence[LogRecord]
    ) -> Dict[str, List[LogRecord]]:
        grouped: Dict[str, List[LogRecord]] = {}
        for record in records:
            grouped.setdefault(record.provider.value, []).append(record)
        return grouped

    def calculate_percentiles(
        self, records: Sequence[LogRecord], metric: str = "latency_ms"
    ) -> Dict[str, float]:
        if metric not in {"cost_estimate", "latency_ms"}:
            raise ValueError("metric must be 'cost_estimate' or 'latency_ms'")
        values = sorted(
            float(value)
            for value in (getattr(record, metric) for record in records)
            if value is not None
        )
        if not values:
            return {"p50": 0.0, "p95": 0.0, "p99": 0.0}
        return {
            "p50": self._percentile(values, 0.5),
            "p95": self._percentile(values, 0.95),
            "p99": self._percentile(values, 0.99),
        }

    @staticmethod
    def _percentile(values: Sequence[float], quantile: float) -> float:
        if not values:
            return 0.0
        index = (len(values) - 1) * quantile
        lower = int(index)
        upper = min(lower + 1, len(values) - 1)
        weight = index - lower
        return round(values[lower] * (1 - weight) + values[upper] * weight, 6)
