"""Provider abstractions and shared behavior implementations."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Pattern, Sequence

import httpx

from ai_orchestrator.domain.exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderResponseError,
    ProviderUnavailableError,
)
from ai_orchestrator.domain.models import (
    CallOptions,
    Message,
    Provider,
    ProviderCompletion,
)
from ai_orchestrator.utils.retry import AttemptOutcome

# Reasoning-style models reject a caller-supplied temperature.
NO_TEMPERATURE_MODELS: Pattern[str] = re.compile(r"^(o\d|gpt-5)", re.IGNORECASE)

_MAX_ERROR_BODY = 2000


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration values shared by all provider adapters.

    ``api_key`` may be absent: the adapter then reports itself as unconfigured
    and the orchestrator skips it without counting an attempt.
    """

    api_key: Optional[str]
    base_url: str
    model_name: str
    timeout: float = 15.0

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url must be provided")
        if not self.model_name:
            raise ValueError("model_name must be provided")
        if self.timeout <= 0:
            raise ValueError("timeout must be greater than zero")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


def supports_temperature(model_name: str) -> bool:
    return NO_TEMPERATURE_MODELS.search(model_name) is None


class BaseProvider(ABC):
    """Template-method base class that handles HTTP error mapping and logging."""

    PROVIDER_KEY = Provider.NONE

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        config: ProviderConfig,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._http = http_client
        self.config = config
        self.logger = logger or logging.getLogger(
            f"{__name__}.{self.__class__.__name__}"
        )

    @property
    def name(self) -> Provider:
        return self.PROVIDER_KEY

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def resolve_model(self, options: CallOptions) -> str:
        return options.model_name or self.config.model_name

    async def complete(
        self, messages: Sequence[Message], options: CallOptions
    ) -> ProviderCompletion:
        """Send one request; raise a ``ProviderError`` subclass on any failure."""

        if not self.is_configured:
            raise ProviderAuthError(
                f"{self.name.value} API key not configured",
                context={"provider": self.name.value},
            )

        model = self.resolve_model(options)
        self.log_request(model, messages)
        try:
            http_response = await self._send(model, messages, options)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                f"{self.name.value} request timed out",
                context={"provider": self.name.value},
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(
                f"{self.name.value} network error: {exc}",
                context={"provider": self.name.value},
            ) from exc

        self._raise_for_status(http_response)
        data = self._parse_json(http_response)
        try:
            completion = self._map_response(model, data, http_response)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderResponseError(
                f"Malformed {self.name.value} response",
                status_code=http_response.status_code,
                body=self._truncate(http_response.text),
            ) from exc

        self.log_response(completion)
        return completion

    async def attempt(
        self, messages: Sequence[Message], options: CallOptions
    ) -> AttemptOutcome[ProviderCompletion]:
        """Run ``complete`` and report the outcome as a value."""

        try:
            return AttemptOutcome.success(await self.complete(messages, options))
        except ProviderError as exc:
            self.logger.warning(
                "provider_attempt_failed",
                extra={
                    "provider": self.name.value,
                    "status_code": exc.status_code,
                    "retryable": exc.retryable,
                    "error": exc.message,
                },
            )
            return AttemptOutcome.failure(exc)
        except Exception as exc:
            self.logger.exception("Unexpected provider failure")
            return AttemptOutcome.failure(
                ProviderError(
                    f"Unexpected {self.name.value} failure: {exc}",
                    context={"provider": self.__class__.__name__},
                )
            )

    @abstractmethod
    async def _send(
        self, model: str, messages: Sequence[Message], options: CallOptions
    ) -> httpx.Response:
        """Provider-specific HTTP interaction implemented by subclasses."""

    @abstractmethod
    def _map_response(
        self, model: str, data: Dict[str, Any], http_response: httpx.Response
    ) -> ProviderCompletion:
        """Translate a 2xx JSON body into a canonical completion."""

    def log_request(self, model: str, messages: Sequence[Message]) -> None:
        self.logger.debug(
            "provider_request",
            extra={
                "provider": self.name.value,
                "model": model,
                "message_count": len(messages),
            },
        )

    def log_response(self, completion: ProviderCompletion) -> None:
        self.logger.debug(
            "provider_response",
            extra={
                "provider": self.name.value,
                "model": completion.model,
                "total_tokens": completion.total_tokens,
                "request_id": completion.request_id,
            },
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _raise_for_status(self, http_response: httpx.Response) -> None:
        status = http_response.status_code
        if status < 400:
            return
        body = self._truncate(http_response.text)
        message = self._error_message(http_response) or (
            f"{self.name.value} request failed"
        )
        context = {"provider": self.name.value}
        if status == 429:
            raise ProviderRateLimitError(
                message, status_code=status, body=body, context=context
            )
        if status >= 500:
            raise ProviderUnavailableError(
                message, status_code=status, body=body, context=context
            )
        if status in (401, 403):
            raise ProviderAuthError(
                message, status_code=status, body=body, context=context
            )
        raise ProviderRequestError(
            message, status_code=status, body=body, context=context
        )

    def _parse_json(self, http_response: httpx.Response) -> Dict[str, Any]:
        try:
            data = http_response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ProviderResponseError(
                f"{self.name.value} returned a non-JSON body",
                status_code=http_response.status_code,
                body=self._truncate(http_response.text),
            ) from exc
        if not isinstance(data, dict):
            raise ProviderResponseError(
                f"{self.name.value} returned an unexpected JSON document",
                status_code=http_response.status_code,
                body=self._truncate(http_response.text),
            )
        return data

    @staticmethod
    def _error_message(http_response: httpx.Response) -> Optional[str]:
        try:
            data = http_response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str):
                return error
        return None

    @staticmethod
    def _optional_int(value: Any) -> Optional[int]:
        if value is None:
            return None
        return int(value)

    @staticmethod
    def _truncate(text: str) -> str:
        return text[:_MAX_ERROR_BODY]
