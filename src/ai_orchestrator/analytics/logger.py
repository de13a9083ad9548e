"""Fire-and-forget response logger plus usage summaries over persisted records."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Sequence

from ai_orchestrator.analytics.aggregator import AnalyticsAggregator
from ai_orchestrator.analytics.interfaces import (
    IAnalyticsAggregator,
    IResponseLogRepository,
)
from ai_orchestrator.domain.exceptions import LoggingError
from ai_orchestrator.domain.interfaces import UsageSummary
from ai_orchestrator.domain.models import (
    CallContext,
    CallResult,
    CallStatus,
    LogRecord,
)


class ResponseLogger:
    """Persists one audit record per orchestrated call; never raises."""

    PERIOD_WINDOWS = {
        "last_24_hours": timedelta(days=1),
        "last_7_days": timedelta(days=7),
        "last_30_days": timedelta(days=30),
    }

    def __init__(
        self,
        repository: IResponseLogRepository,
        aggregator: IAnalyticsAggregator | None = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repository = repository
        self._aggregator = aggregator or AnalyticsAggregator()
        self._logger = logger or logging.getLogger(__name__)

    async def log(
        self,
        context: CallContext,
        result: CallResult,
        error_override: Optional[str] = None,
        *,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Persist the call outcome; failures only surface as a local diagnostic."""

        try:
            record = self.build_record(context, result, error_override, metadata)
            await asyncio.to_thread(self._repository.save, record)
        except Exception as exc:
            error = LoggingError(
                f"Failed to persist response log: {exc}",
                context={
                    "function_name": context.function_name,
                    "identity": context.identity,
                },
            )
            error.__cause__ = exc
            self._logger.error("response_log_failed", exc_info=error)

    @staticmethod
    def build_record(
        context: CallContext,
        result: CallResult,
        error_override: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> LogRecord:
        created_at = datetime.now(timezone.utc)
        merged = {
            **dict(context.metadata),
            **dict(metadata or {}),
            "function_name": context.function_name,
            "timestamp": created_at.isoformat(),
            "attempts": result.attempts,
        }
        return LogRecord(
            created_at=created_at,
            function_name=context.function_name,
            identity=context.identity,
            caller_id=context.caller_id,
            provider=result.provider_used,
            model=result.model,
            latency_ms=result.latency_ms,
            cost_estimate=result.cost_estimate_usd,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            total_tokens=result.total_tokens,
            request_id=result.provider_request_id,
            status=result.status,
            error=error_override or result.error_message,
            metadata=merged,
        )

    def get_summary(self, period: str = "last_7_days") -> UsageSummary:
        """Return aggregate metrics for the requested period."""

        start, end = self._period_window(period)
        records = self._repository.find_by_date(start, end)
        by_provider = self._aggregator.group_by_provider(records)
        return UsageSummary(
            period=period,
            total_requests=len(records),
            successful_requests=sum(
                1 for record in records if record.status is CallStatus.SUCCESS
            ),
            total_cost=self._aggregator.calculate_total_cost(records),
            average_latency_ms=self._average_latency(records),
            requests_by_provider={
                provider: len(items) for provider, items in by_provider.items()
            },
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _period_window(self, period: str) -> tuple[datetime, datetime]:
        delta = self.PERIOD_WINDOWS.get(period)
        if delta is None:
            raise ValueError(f"Unsupported period '{period}'")
        end = datetime.now(timezone.utc)
        start = end - delta
        return start, end

    @staticmethod
    def _average_latency(records: Sequence[LogRecord]) -> float:
        if not records:
            return 0.0
        total = sum(record.latency_ms for record in records)
        return round(total / len(records), 6)
