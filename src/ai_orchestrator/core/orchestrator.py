"""Failover coordinator: the single entry point AI features call."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
)

from ai_orchestrator.analytics.logger import ResponseLogger
from ai_orchestrator.domain.exceptions import (
    AllProvidersFailedError,
    ConfigurationError,
    ProviderExhaustedError,
    RateLimitExceeded,
    ValidationError,
)
from ai_orchestrator.domain.interfaces import IProvider
from ai_orchestrator.domain.models import (
    CallContext,
    CallOptions,
    CallResult,
    CallStatus,
    Message,
    Provider,
    ProviderAvailability,
    ProviderCompletion,
    Role,
)
from ai_orchestrator.ratelimit.limiter import RateLimiter
from ai_orchestrator.utils.cost_calculator import estimate_cost
from ai_orchestrator.utils.retry import RetryExecutor, RetryOutcome
from ai_orchestrator.utils.validators import validate_messages

Closer = Callable[[], Awaitable[None]]


class Orchestrator:
    """Rate-checks, retries and fails over from the primary to the secondary provider.

    Operational failures never raise: every call returns a ``CallResult`` and
    writes exactly one response log record. Only malformed input (detected
    before any I/O) raises, and caller cancellation propagates after a
    ``cancelled`` record is written.
    """

    def __init__(
        self,
        primary: IProvider,
        secondary: IProvider,
        rate_limiter: RateLimiter,
        *,
        retry_executor: Optional[RetryExecutor] = None,
        response_logger: Optional[ResponseLogger] = None,
        default_options: Optional[CallOptions] = None,
        closers: Sequence[Closer] = (),
        clock: Callable[[], float] = time.perf_counter,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._rate_limiter = rate_limiter
        self._retry = retry_executor or RetryExecutor()
        self._response_logger = response_logger
        self._default_options = default_options or CallOptions()
        self._closers = list(closers)
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    async def __aenter__(self) -> "Orchestrator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Run every registered closer once, even if an earlier one fails."""

        closers, self._closers = self._closers, []
        async with contextlib.AsyncExitStack() as stack:
            for close in closers:
                stack.push_async_callback(close)

    async def generate_response(
        self,
        messages: Sequence[Message],
        options: Optional[CallOptions] = None,
        *,
        context: CallContext,
    ) -> CallResult:
        validate_messages(messages)
        call_options = options or self._default_options
        started = self._clock()
        metadata: Dict[str, Any] = {}

        try:
            result = await self._orchestrate(
                list(messages), call_options, context, started, metadata
            )
        except asyncio.CancelledError:
            result = CallResult.failure(
                "Request cancelled by caller",
                status=CallStatus.CANCELLED,
                latency_ms=self._elapsed_ms(started),
            )
            await asyncio.shield(self._log(context, result, metadata))
            raise
        except Exception as exc:
            self._logger.exception(
                "orchestration_failed",
                extra={"function_name": context.function_name},
            )
            result = CallResult.failure(
                f"Unexpected orchestration failure: {exc}",
                latency_ms=self._elapsed_ms(started),
            )

        self._logger.info(
            "orchestration_completed",
            extra={
                "function_name": context.function_name,
                "status": result.status.value,
                "provider": result.provider_used.value,
                "latency_ms": result.latency_ms,
                "attempts": result.attempts,
            },
        )
        await self._log(context, result, metadata)
        return result

    async def generate_text(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[CallOptions] = None,
        *,
        context: CallContext,
    ) -> CallResult:
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt must be non-empty")
        messages: List[Message] = []
        if system_prompt:
            messages.append(Message(role=Role.SYSTEM, content=system_prompt))
        messages.append(Message(role=Role.USER, content=prompt))
        return await self.generate_response(messages, options, context=context)

    def check_availability(self) -> ProviderAvailability:
        if self._primary.is_configured:
            preferred = self._primary.name
        elif self._secondary.is_configured:
            preferred = self._secondary.name
        else:
            preferred = Provider.NONE
        return ProviderAvailability(
            primary=self._primary.is_configured,
            secondary=self._secondary.is_configured,
            preferred=preferred,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _orchestrate(
        self,
        messages: List[Message],
        options: CallOptions,
        context: CallContext,
        started: float,
        metadata: Dict[str, Any],
    ) -> CallResult:
        if self.check_availability().preferred is Provider.NONE:
            error = ConfigurationError(
                "No AI providers configured: "
                f"{self._primary.name.value} and {self._secondary.name.value} "
                "have no API key"
            )
            return CallResult.failure(
                error.message, latency_ms=self._elapsed_ms(started)
            )

        decision = await self._rate_limiter.check_and_admit(context.identity)
        metadata["rate_limit_count"] = decision.current_count
        metadata["rate_limit_degraded"] = decision.degraded
        if not decision.allowed:
            rejection = RateLimitExceeded(
                decision.current_count, decision.limit, decision.reset_time
            )
            return CallResult.failure(
                rejection.message,
                status=CallStatus.RATE_LIMITED,
                latency_ms=self._elapsed_ms(started),
            )

        legs: List[str] = []
        attempts = 0
        for provider in (self._primary, self._secondary):
            if not provider.is_configured:
                legs.append(f"{provider.name.value}: no API key configured")
                continue

            outcome = await self._run_provider(provider, messages, options)
            attempts += outcome.attempts
            if outcome.succeeded and outcome.value is not None:
                return self._success_result(
                    provider.name, outcome.value, attempts, started
                )

            exhausted = self._exhausted(provider, outcome)
            legs.append(exhausted.message)
            self._logger.warning(
                "orchestration_failover",
                extra={
                    "function_name": context.function_name,
                    "provider": provider.name.value,
                    "attempts": outcome.attempts,
                    "error": exhausted.message,
                },
            )

        metadata["providers_attempted"] = [
            provider.name.value
            for provider in (self._primary, self._secondary)
            if provider.is_configured
        ]
        failure = AllProvidersFailedError(
            f"All AI providers failed ({'; '.join(legs)})"
        )
        return CallResult.failure(
            failure.message,
            latency_ms=self._elapsed_ms(started),
            attempts=attempts,
        )

    async def _run_provider(
        self, provider: IProvider, messages: List[Message], options: CallOptions
    ) -> RetryOutcome[ProviderCompletion]:
        return await self._retry.run(
            lambda: provider.attempt(messages, options),
            label=provider.name.value,
        )

    @staticmethod
    def _exhausted(
        provider: IProvider, outcome: RetryOutcome[ProviderCompletion]
    ) -> ProviderExhaustedError:
        error = outcome.last_error
        reason = error.message if error is not None else "unknown error"
        if error is not None and error.status_code is not None:
            reason = f"HTTP {error.status_code}: {reason}"
        return ProviderExhaustedError(
            f"{provider.name.value}: request failed after "
            f"{outcome.attempts} attempt(s): {reason}"
        )

    def _success_result(
        self,
        provider: Provider,
        completion: ProviderCompletion,
        attempts: int,
        started: float,
    ) -> CallResult:
        return CallResult(
            success=True,
            status=CallStatus.SUCCESS,
            provider_used=provider,
            content=completion.content,
            model=completion.model,
            latency_ms=self._elapsed_ms(started),
            cost_estimate_usd=estimate_cost(
                provider, completion.prompt_tokens, completion.completion_tokens
            ),
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
            total_tokens=completion.total_tokens,
            provider_request_id=completion.request_id,
            attempts=attempts,
        )

    async def _log(
        self,
        context: CallContext,
        result: CallResult,
        metadata: Mapping[str, Any],
    ) -> None:
        if self._response_logger is None:
            return
        await self._response_logger.log(context, result, metadata=metadata)

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int((self._clock() - started) * 1000))
