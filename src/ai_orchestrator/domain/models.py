"""Domain value objects for the AI request orchestration layer."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Conversation roles understood by both providers."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Provider(str, Enum):
    """Provider identifiers; ``NONE`` marks results no provider produced."""

    OPENAI = "openai"
    GEMINI = "gemini"
    NONE = "none"


class CallStatus(str, Enum):
    """Terminal status persisted with every log record."""

    SUCCESS = "success"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"
    CANCELLED = "cancelled"


class Message(BaseModel):
    """Single chat turn; sequence order is semantically significant."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class CallOptions(BaseModel):
    """Immutable per-call generation options."""

    model_config = ConfigDict(frozen=True)

    max_output_tokens: int = Field(default=800, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    model_name: Optional[str] = None
    fallback_model_name: Optional[str] = None

    @field_validator("model_name", "fallback_model_name")
    @classmethod
    def validate_model_name(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("model name must be non-empty when provided")
        return value


class CallContext(BaseModel):
    """Who is calling and from where; drives rate limiting and audit logs."""

    model_config = ConfigDict(frozen=True)

    function_name: str
    identity: str
    caller_id: Optional[str] = None
    metadata: Mapping[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_identity(self) -> "CallContext":
        if not self.identity:
            raise ValueError("identity must be a non-empty string")
        if not self.function_name:
            raise ValueError("function_name must be a non-empty string")
        return self


class ProviderCompletion(BaseModel):
    """Canonical adapter output. Token counts are ``None`` when unknown."""

    model_config = ConfigDict(frozen=True)

    content: str
    model: str
    prompt_tokens: Optional[int] = Field(default=None, ge=0)
    completion_tokens: Optional[int] = Field(default=None, ge=0)
    total_tokens: Optional[int] = Field(default=None, ge=0)
    request_id: Optional[str] = None


class RateWindow(BaseModel):
    """Counter row for one identity inside one fixed window."""

    model_config = ConfigDict(frozen=True)

    identity: str
    window_start: datetime
    count: int = Field(..., ge=0)
    last_request_at: datetime


class RateLimitDecision(BaseModel):
    """Outcome of an admission check."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    current_count: int
    limit: int
    reset_time: datetime
    degraded: bool = False


class CallResult(BaseModel):
    """The single, always-populated outcome of an orchestrated call.

    ``content`` is only set when ``success`` is true; callers must treat
    ``success`` as the sole failure signal.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    status: CallStatus
    provider_used: Provider
    content: Optional[str] = None
    model: Optional[str] = None
    error_message: Optional[str] = None
    latency_ms: int = Field(default=0, ge=0)
    cost_estimate_usd: Optional[float] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    provider_request_id: Optional[str] = None
    attempts: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_outcome(self) -> "CallResult":
        if self.success and self.content is None:
            raise ValueError("successful results must carry content")
        if not self.success and self.content is not None:
            raise ValueError("failed results must not carry content")
        if not self.success and not self.error_message:
            raise ValueError("failed results must carry an error message")
        return self

    @classmethod
    def failure(
        cls,
        error_message: str,
        *,
        status: CallStatus = CallStatus.ERROR,
        latency_ms: int = 0,
        attempts: int = 0,
    ) -> "CallResult":
        return cls(
            success=False,
            status=status,
            provider_used=Provider.NONE,
            error_message=error_message,
            latency_ms=latency_ms,
            attempts=attempts,
        )


class LogRecord(BaseModel):
    """Append-only audit row written once per orchestrated call."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    created_at: datetime = Field(default_factory=_utcnow)
    function_name: str
    identity: str
    caller_id: Optional[str] = None
    provider: Provider
    model: Optional[str] = None
    latency_ms: int = 0
    cost_estimate: Optional[float] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    request_id: Optional[str] = None
    status: CallStatus
    error: Optional[str] = None
    metadata: Mapping[str, Any] = Field(default_factory=dict)


class ProviderAvailability(BaseModel):
    """Which providers have credentials, and which one would be tried first."""

    model_config = ConfigDict(frozen=True)

    primary: bool
    secondary: bool
    preferred: Provider
