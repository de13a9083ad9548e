"""Analytics contracts that separate persistence from aggregation logic."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Protocol, Sequence

from ai_orchestrator.domain.models import LogRecord


class IResponseLogRepository(Protocol):
    """Append-only persistence contract for response log records."""

    def save(self, record: LogRecord) -> None:
        """Insert the record; existing rows are never updated."""

    def find_by_identity(self, identity: str) -> List[LogRecord]:
        """Return records for one rate-limit identity, oldest first."""

    def find_by_date(self, start: datetime, end: datetime) -> List[LogRecord]:
        """Return records whose creation time falls within the inclusive window."""


class IAnalyticsAggregator(Protocol):
    """Business-logic layer that derives metrics from persisted records."""

    def calculate_total_cost(self, records: Sequence[LogRecord]) -> float:
        """Sum known cost estimates across the supplied records."""

    def success_rate(self, records: Sequence[LogRecord]) -> float:
        """Fraction of records with a successful status."""

    def group_by_provider(
        self, records: Sequence[LogRecord]
    ) -> Dict[str, List[LogRecord]]:
        """Bucket records by provider identifier for downstream aggregations."""
