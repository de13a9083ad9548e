"""Domain-level interfaces defining contracts for orchestration collaborators."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from pydantic import BaseModel, Field

from ai_orchestrator.utils.retry import AttemptOutcome

from .models import (
    CallOptions,
    Message,
    Provider,
    ProviderCompletion,
    RateWindow,
)


class WindowAdmission(BaseModel):
    """Store-level answer to an atomic increment-with-ceiling."""

    admitted: bool
    window: RateWindow


class UsageSummary(BaseModel):
    """Aggregated usage metrics across a reporting window."""

    period: str
    total_requests: int
    successful_requests: int
    total_cost: float
    average_latency_ms: float
    requests_by_provider: dict[str, int] = Field(default_factory=dict)


class IProvider(Protocol):
    """Contract every provider adapter must satisfy."""

    @property
    def name(self) -> Provider:
        """Stable provider identifier used in results and logs."""

    @property
    def is_configured(self) -> bool:
        """Return True when credentials are present for this provider."""

    @property
    def model_name(self) -> str:
        """Default model used when the caller does not override it."""

    async def complete(
        self, messages: Sequence[Message], options: CallOptions
    ) -> ProviderCompletion:
        """Submit one request; raise ProviderError on any failure."""

    async def attempt(
        self, messages: Sequence[Message], options: CallOptions
    ) -> AttemptOutcome[ProviderCompletion]:
        """Submit one request and report failure in-band instead of raising."""


class IRateWindowStore(Protocol):
    """Counting store that supports atomic increment-with-ceiling."""

    async def admit(
        self, identity: str, window_start: datetime, limit: int, now: datetime
    ) -> WindowAdmission:
        """Create or increment the window unless it already reached ``limit``."""

