"""Per-identity fixed-window rate limiter."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ai_orchestrator.domain.interfaces import IRateWindowStore
from ai_orchestrator.domain.models import RateLimitDecision

from .window import DEFAULT_WINDOW_SECONDS, window_reset, window_start

DEFAULT_RATE_LIMIT = 20

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Admits at most ``limit`` requests per identity per window.

    The store performs the increment-and-check atomically. When the store is
    unreachable the limiter fails open and flags the decision as degraded.
    """

    def __init__(
        self,
        store: IRateWindowStore,
        *,
        limit: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        self._store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock or utc_now
        self._logger = logger or logging.getLogger(__name__)

    async def check_and_admit(self, identity: str) -> RateLimitDecision:
        now = self._clock()
        start = window_start(now, self.window_seconds)
        reset_time = window_reset(start, self.window_seconds)

        try:
            admission = await self._store.admit(identity, start, self.limit, now)
        except Exception as exc:
            self._logger.warning(
                "rate_limit_store_degraded",
                extra={"identity": identity, "error": str(exc)},
            )
            return RateLimitDecision(
                allowed=True,
                current_count=0,
                limit=self.limit,
                reset_time=reset_time,
                degraded=True,
            )

        decision = RateLimitDecision(
            allowed=admission.admitted,
            current_count=admission.window.count,
            limit=self.limit,
            reset_time=reset_time,
        )
        if not decision.allowed:
            self._logger.info(
                "rate_limit_rejected",
                extra={
                    "identity": identity,
                    "current_count": decision.current_count,
                    "limit": self.limit,
                    "reset_time": reset_time.isoformat(),
                },
            )
        return decision
