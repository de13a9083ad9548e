"""Exception hierarchy for orchestration, provider and storage failures."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional


class OrchestratorError(Exception):
    """Base class for all domain-level errors in the orchestration layer."""

    default_message = "AI orchestration error occurred"

    def __init__(
        self, message: str | None = None, *, context: Mapping[str, Any] | None = None
    ):
        self.message = message or self.default_message
        self.context: Mapping[str, Any] = dict(context or {})
        formatted = self._format_message()
        super().__init__(formatted)

    def _format_message(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


class ProviderError(OrchestratorError):
    """A single failed attempt against one provider adapter."""

    default_message = "Provider error"
    retryable = True

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        context: Mapping[str, Any] | None = None,
    ):
        self.status_code = status_code
        self.body = body
        merged = dict(context or {})
        if status_code is not None:
            merged.setdefault("status_code", status_code)
        super().__init__(message, context=merged)


class ProviderUnavailableError(ProviderError):
    """Provider service is down, timed out or unreachable."""

    default_message = "Provider is unavailable"


class ProviderRateLimitError(ProviderError):
    """Provider refuses request due to its own rate limiting."""

    default_message = "Provider rate limit exceeded"


class ProviderResponseError(ProviderError):
    """Provider answered 2xx with a body that cannot be interpreted."""

    default_message = "Malformed provider response"


class ProviderAuthError(ProviderError):
    """Authentication or authorization with provider failed."""

    default_message = "Provider authentication failed"
    retryable = False


class ProviderRequestError(ProviderError):
    """Provider rejected the request payload (4xx other than auth/429)."""

    default_message = "Provider rejected the request"
    retryable = False


class ProviderBlockedError(ProviderError):
    """Provider answered but withheld the content (safety or policy block)."""

    default_message = "Provider blocked the response"
    retryable = False


class ProviderExhaustedError(OrchestratorError):
    """Every permitted attempt against one provider failed."""

    default_message = "Provider exhausted"


class AllProvidersFailedError(OrchestratorError):
    """No provider produced a completion for the call."""

    default_message = "All AI providers failed"


class ConfigurationError(OrchestratorError):
    """No provider credentials are configured."""

    default_message = "No AI providers configured"


class RateLimitExceeded(OrchestratorError):
    """Admission denied for the caller's current rate window."""

    default_message = "Rate limit exceeded"

    def __init__(self, current_count: int, limit: int, reset_time: datetime):
        self.current_count = current_count
        self.limit = limit
        self.reset_time = reset_time
        super().__init__(
            f"Rate limit exceeded: {current_count}/{limit} requests in the "
            f"current window, resets at {reset_time.isoformat()}"
        )

    def _format_message(self) -> str:
        return self.message


class RateStoreUnavailableError(OrchestratorError):
    """The rate-window counting store could not be reached."""

    default_message = "Rate window store unavailable"


class LoggingError(OrchestratorError):
    """A response log record could not be persisted."""

    default_message = "Failed to persist response log"


class ValidationError(OrchestratorError):
    """Raised when caller input is malformed before any I/O happens."""

    default_message = "Validation failed"
