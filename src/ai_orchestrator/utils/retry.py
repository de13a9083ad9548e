"""Retry executor with exponential backoff over explicit attempt outcomes."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from ai_orchestrator.domain.exceptions import ProviderError


T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptOutcome(Generic[T]):
    """Result of a single attempt: either a value or the error it failed with."""

    value: Optional[T] = None
    error: Optional[ProviderError] = None

    def __post_init__(self) -> None:
        if (self.value is None) == (self.error is None):
            raise ValueError("exactly one of value or error must be set")

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "AttemptOutcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ProviderError) -> "AttemptOutcome[T]":
        return cls(error=error)


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Aggregate result of running an operation under a retry policy."""

    value: Optional[T]
    last_error: Optional[ProviderError]
    attempts: int
    delays: List[float] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.last_error is None and self.value is not None


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters; delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")

    def delay_for(self, attempt: int) -> float:
        """Deterministic delay slept after failed attempt number ``attempt`` (1-based)."""

        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


Sleep = Callable[[float], Awaitable[None]]


class RetryExecutor:
    """Runs an attempt-returning operation until success, a hard failure or exhaustion."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Sleep | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    async def run(
        self,
        operation: Callable[[], Awaitable[AttemptOutcome[T]]],
        *,
        label: str = "operation",
    ) -> RetryOutcome[T]:
        delays: List[float] = []
        last_error: Optional[ProviderError] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            outcome = await operation()
            if outcome.error is None:
                return RetryOutcome(
                    value=outcome.value,
                    last_error=None,
                    attempts=attempt,
                    delays=delays,
                )

            last_error = outcome.error
            if not last_error.retryable:
                logger.warning(
                    "retry_aborted_non_retryable",
                    extra={
                        "label": label,
                        "attempt": attempt,
                        "error": last_error.message,
                    },
                )
                return RetryOutcome(
                    value=None, last_error=last_error, attempts=attempt, delays=delays
                )
            if attempt == self.policy.max_attempts:
                break

            delay = self._next_delay(attempt)
            delays.append(delay)
            logger.info(
                "retry_backoff",
                extra={"label": label, "attempt": attempt, "delay": delay},
            )
            await self._sleep(delay)

        return RetryOutcome(
            value=None,
            last_error=last_error,
            attempts=self.policy.max_attempts,
            delays=delays,
        )

    def _next_delay(self, attempt: int) -> float:
        delay = self.policy.delay_for(attempt)
        if self.policy.jitter:
            # full jitter
            return self._rng.uniform(0, delay)
        return delay
