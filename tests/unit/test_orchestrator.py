import asyncio

import pytest

from ai_orchestrator.analytics.logger import ResponseLogger
from ai_orchestrator.core.orchestrator import Orchestrator
from ai_orchestrator.domain.exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderUnavailableError,
    RateStoreUnavailableError,
    ValidationError,
)
from ai_orchestrator.domain.models import (
    CallContext,
    CallOptions,
    CallStatus,
    Message,
    Provider,
    ProviderCompletion,
    Role,
)
from ai_orchestrator.ratelimit.limiter import RateLimiter
from ai_orchestrator.ratelimit.stores import InMemoryRateWindowStore
from ai_orchestrator.utils.cost_calculator import estimate_cost
from ai_orchestrator.utils.retry import AttemptOutcome, RetryExecutor, RetryPolicy

MESSAGES = [Message(role=Role.USER, content="hello")]
CONTEXT = CallContext(function_name="summarize", identity="user-1")


class _FakeProvider:
    def __init__(self, name: Provider, outcomes=None, configured: bool = True):
        self._name = name
        self._configured = configured
        self.outcomes = list(outcomes or [])
        self.calls = []

    @property
    def name(self) -> Provider:
        return self._name

    @property
    def is_configured(self) -> bool:
        return self._configured

    @property
    def model_name(self) -> str:
        return f"{self._name.value}-model"

    async def complete(self, messages, options):
        outcome = await self.attempt(messages, options)
        if outcome.error is not None:
            raise outcome.error
        return outcome.value

    async def attempt(self, messages, options):
        self.calls.append((list(messages), options))
        outcome = self.outcomes.pop(0)
        if callable(outcome):
            outcome = await outcome()
        return outcome


class _HangingProvider(_FakeProvider):
    async def attempt(self, messages, options):
        self.calls.append((list(messages), options))
        await asyncio.Event().wait()


class _RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class _InMemoryRepo:
    def __init__(self):
        self.records = []

    def save(self, record):
        self.records.append(record)

    def find_by_identity(self, identity):
        return [r for r in self.records if r.identity == identity]

    def find_by_date(self, start, end):
        return list(self.records)


class _FailingRepo(_InMemoryRepo):
    def save(self, record):
        raise OSError("log store offline")


class _BrokenRateStore:
    async def admit(self, identity, window_start, limit, now):
        raise RateStoreUnavailableError("rate store offline")


class _ExplodingLimiter:
    async def check_and_admit(self, identity):
        raise RuntimeError("limiter bug")


def _ok(content="answer", prompt=10, completion=5):
    return AttemptOutcome.success(
        ProviderCompletion(
            content=content,
            model="served-model",
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=None if prompt is None else prompt + completion,
            request_id="req-1",
        )
    )


def _unavailable():
    return AttemptOutcome.failure(ProviderUnavailableError("down", status_code=503))


def _build(
    primary,
    secondary,
    *,
    limit=20,
    repo=None,
    rate_store=None,
    sleep=None,
    limiter=None,
):
    repo = repo if repo is not None else _InMemoryRepo()
    orchestrator = Orchestrator(
        primary,
        secondary,
        limiter or RateLimiter(rate_store or InMemoryRateWindowStore(), limit=limit),
        retry_executor=RetryExecutor(
            RetryPolicy(max_attempts=3, base_delay=1.0),
            sleep=sleep or _RecordingSleep(),
        ),
        response_logger=ResponseLogger(repo),
    )
    return orchestrator, repo


@pytest.mark.asyncio
async def test_primary_success_returns_completion_with_cost():
    primary = _FakeProvider(Provider.OPENAI, [_ok()])
    secondary = _FakeProvider(Provider.GEMINI)
    orchestrator, repo = _build(primary, secondary)

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.success is True
    assert result.status is CallStatus.SUCCESS
    assert result.provider_used is Provider.OPENAI
    assert result.content == "answer"
    assert result.model == "served-model"
    assert result.attempts == 1
    assert result.cost_estimate_usd == estimate_cost(Provider.OPENAI, 10, 5)
    assert result.provider_request_id == "req-1"
    assert secondary.calls == []
    assert len(repo.records) == 1
    assert repo.records[0].status is CallStatus.SUCCESS


@pytest.mark.asyncio
async def test_unknown_usage_yields_no_cost_estimate():
    primary = _FakeProvider(Provider.OPENAI, [_ok(prompt=None)])
    orchestrator, _ = _build(primary, _FakeProvider(Provider.GEMINI))

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.success is True
    assert result.cost_estimate_usd is None


@pytest.mark.asyncio
async def test_primary_recovers_after_retry():
    sleep = _RecordingSleep()
    primary = _FakeProvider(Provider.OPENAI, [_unavailable(), _ok()])
    orchestrator, _ = _build(primary, _FakeProvider(Provider.GEMINI), sleep=sleep)

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.provider_used is Provider.OPENAI
    assert result.attempts == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_fails_over_to_secondary_after_primary_exhausted():
    sleep = _RecordingSleep()
    primary = _FakeProvider(Provider.OPENAI, [_unavailable()] * 3)
    secondary = _FakeProvider(Provider.GEMINI, [_ok("from gemini")])
    orchestrator, repo = _build(primary, secondary, sleep=sleep)

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.success is True
    assert result.provider_used is Provider.GEMINI
    assert result.content == "from gemini"
    assert result.attempts == 4
    assert len(primary.calls) == 3
    assert len(secondary.calls) == 1
    assert sleep.delays == [1.0, 2.0]
    assert result.cost_estimate_usd == estimate_cost(Provider.GEMINI, 10, 5)
    assert len(repo.records) == 1


@pytest.mark.asyncio
async def test_secondary_receives_same_messages_and_options():
    options = CallOptions(max_output_tokens=42, fallback_model_name="gemini-2.0-flash")
    primary = _FakeProvider(Provider.OPENAI, [_unavailable()] * 3)
    secondary = _FakeProvider(Provider.GEMINI, [_ok()])
    orchestrator, _ = _build(primary, secondary)

    await orchestrator.generate_response(MESSAGES, options, context=CONTEXT)

    assert secondary.calls[0] == (MESSAGES, options)


@pytest.mark.asyncio
async def test_non_retryable_primary_error_fails_over_immediately():
    sleep = _RecordingSleep()
    primary = _FakeProvider(
        Provider.OPENAI,
        [AttemptOutcome.failure(ProviderAuthError("bad key", status_code=401))],
    )
    secondary = _FakeProvider(Provider.GEMINI, [_ok()])
    orchestrator, _ = _build(primary, secondary, sleep=sleep)

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.provider_used is Provider.GEMINI
    assert len(primary.calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_both_providers_failing_returns_combined_error():
    primary = _FakeProvider(Provider.OPENAI, [_unavailable()] * 3)
    secondary = _FakeProvider(
        Provider.GEMINI,
        [AttemptOutcome.failure(ProviderError("quota", status_code=None))] * 3,
    )
    orchestrator, repo = _build(primary, secondary)

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.success is False
    assert result.status is CallStatus.ERROR
    assert result.content is None
    assert result.provider_used is Provider.NONE
    assert result.attempts == 6
    assert "openai: request failed after 3 attempt(s): HTTP 503: down" in result.error_message
    assert "gemini: request failed after 3 attempt(s): quota" in result.error_message
    (record,) = repo.records
    assert record.status is CallStatus.ERROR
    assert record.error == result.error_message
    assert record.metadata["providers_attempted"] == ["openai", "gemini"]


@pytest.mark.asyncio
async def test_unconfigured_primary_is_skipped_without_counting_attempt():
    primary = _FakeProvider(Provider.OPENAI, configured=False)
    secondary = _FakeProvider(Provider.GEMINI, [_ok()])
    orchestrator, _ = _build(primary, secondary)

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.provider_used is Provider.GEMINI
    assert result.attempts == 1
    assert primary.calls == []


@pytest.mark.asyncio
async def test_unconfigured_secondary_is_named_in_failure():
    primary = _FakeProvider(Provider.OPENAI, [_unavailable()] * 3)
    secondary = _FakeProvider(Provider.GEMINI, configured=False)
    orchestrator, _ = _build(primary, secondary)

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.success is False
    assert "gemini: no API key configured" in result.error_message


@pytest.mark.asyncio
async def test_no_configured_providers_short_circuits_without_rate_budget():
    store = InMemoryRateWindowStore()
    primary = _FakeProvider(Provider.OPENAI, configured=False)
    secondary = _FakeProvider(Provider.GEMINI, configured=False)
    orchestrator, repo = _build(primary, secondary, rate_store=store)

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.success is False
    assert result.status is CallStatus.ERROR
    assert result.attempts == 0
    assert result.error_message.startswith("No AI providers configured")
    assert store._windows == {}
    assert len(repo.records) == 1


@pytest.mark.asyncio
async def test_rate_limit_rejects_twenty_first_call_without_provider_io():
    primary = _FakeProvider(Provider.OPENAI, [_ok()] * 20)
    secondary = _FakeProvider(Provider.GEMINI)
    orchestrator, repo = _build(primary, secondary, limit=20)

    results = [
        await orchestrator.generate_response(MESSAGES, context=CONTEXT)
        for _ in range(21)
    ]

    assert all(r.success for r in results[:20])
    rejected = results[20]
    assert rejected.success is False
    assert rejected.status is CallStatus.RATE_LIMITED
    assert rejected.provider_used is Provider.NONE
    assert "20/20" in rejected.error_message
    assert "resets at" in rejected.error_message
    assert len(primary.calls) == 20
    assert len(repo.records) == 21
    assert repo.records[-1].status is CallStatus.RATE_LIMITED


@pytest.mark.asyncio
async def test_retries_and_failover_do_not_consume_rate_budget():
    store = InMemoryRateWindowStore()
    primary = _FakeProvider(Provider.OPENAI, [_unavailable()] * 3)
    secondary = _FakeProvider(Provider.GEMINI, [_ok()])
    orchestrator, repo = _build(primary, secondary, rate_store=store)

    await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    (window,) = store._windows.values()
    assert window.count == 1
    assert repo.records[0].metadata["rate_limit_count"] == 1


@pytest.mark.asyncio
async def test_rate_store_outage_fails_open_and_is_recorded():
    primary = _FakeProvider(Provider.OPENAI, [_ok()])
    orchestrator, repo = _build(
        primary, _FakeProvider(Provider.GEMINI), rate_store=_BrokenRateStore()
    )

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.success is True
    assert repo.records[0].metadata["rate_limit_degraded"] is True


@pytest.mark.parametrize(
    "primary_outcomes, secondary_outcomes, limit, calls, expected_success, expected_status",
    [
        ([_ok()], [], 20, 1, True, CallStatus.SUCCESS),
        ([_unavailable()] * 3, [_ok()], 20, 1, True, CallStatus.SUCCESS),
        ([_unavailable()] * 3, [_unavailable()] * 3, 20, 1, False, CallStatus.ERROR),
        ([_ok()], [], 1, 2, False, CallStatus.RATE_LIMITED),
    ],
    ids=["primary", "secondary", "all-failed", "rate-limited"],
)
@pytest.mark.asyncio
async def test_log_store_outage_does_not_change_result(
    primary_outcomes,
    secondary_outcomes,
    limit,
    calls,
    expected_success,
    expected_status,
    caplog,
):
    orchestrator, _ = _build(
        _FakeProvider(Provider.OPENAI, primary_outcomes),
        _FakeProvider(Provider.GEMINI, secondary_outcomes),
        limit=limit,
        repo=_FailingRepo(),
    )

    with caplog.at_level("ERROR"):
        for _ in range(calls):
            result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.success is expected_success
    assert result.status is expected_status
    assert "orchestration_failed" not in caplog.text


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_error_result():
    orchestrator, repo = _build(
        _FakeProvider(Provider.OPENAI, [_ok()]),
        _FakeProvider(Provider.GEMINI),
        limiter=_ExplodingLimiter(),
    )

    result = await orchestrator.generate_response(MESSAGES, context=CONTEXT)

    assert result.success is False
    assert result.status is CallStatus.ERROR
    assert "limiter bug" in result.error_message
    assert len(repo.records) == 1


@pytest.mark.asyncio
async def test_cancellation_propagates_after_logging_cancelled_record():
    primary = _HangingProvider(Provider.OPENAI)
    orchestrator, repo = _build(primary, _FakeProvider(Provider.GEMINI))

    task = asyncio.create_task(
        orchestrator.generate_response(MESSAGES, context=CONTEXT)
    )
    while not primary.calls:
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    (record,) = repo.records
    assert record.status is CallStatus.CANCELLED
    assert record.provider is Provider.NONE


@pytest.mark.asyncio
async def test_malformed_messages_raise_before_any_io():
    primary = _FakeProvider(Provider.OPENAI)
    orchestrator, repo = _build(primary, _FakeProvider(Provider.GEMINI))

    with pytest.raises(ValidationError):
        await orchestrator.generate_response([], context=CONTEXT)

    assert primary.calls == []
    assert repo.records == []


@pytest.mark.asyncio
async def test_generate_text_builds_system_and_user_messages():
    primary = _FakeProvider(Provider.OPENAI, [_ok()])
    orchestrator, _ = _build(primary, _FakeProvider(Provider.GEMINI))

    await orchestrator.generate_text(
        "Summarize this", system_prompt="Be brief", context=CONTEXT
    )

    messages, _ = primary.calls[0]
    assert [m.role for m in messages] == [Role.SYSTEM, Role.USER]
    assert messages[1].content == "Summarize this"


@pytest.mark.asyncio
async def test_generate_text_rejects_blank_prompt():
    orchestrator, _ = _build(
        _FakeProvider(Provider.OPENAI), _FakeProvider(Provider.GEMINI)
    )

    with pytest.raises(ValidationError):
        await orchestrator.generate_text("   ", context=CONTEXT)


def test_check_availability_prefers_primary():
    orchestrator, _ = _build(
        _FakeProvider(Provider.OPENAI), _FakeProvider(Provider.GEMINI)
    )
    availability = orchestrator.check_availability()

    assert availability.primary is True
    assert availability.secondary is True
    assert availability.preferred is Provider.OPENAI


def test_check_availability_falls_back_and_reports_none():
    only_secondary, _ = _build(
        _FakeProvider(Provider.OPENAI, configured=False),
        _FakeProvider(Provider.GEMINI),
    )
    neither, _ = _build(
        _FakeProvider(Provider.OPENAI, configured=False),
        _FakeProvider(Provider.GEMINI, configured=False),
    )

    assert only_secondary.check_availability().preferred is Provider.GEMINI
    assert neither.check_availability().preferred is Provider.NONE


@pytest.mark.asyncio
async def test_aclose_runs_closers_once():
    closed = []

    async def closer():
        closed.append(True)

    orchestrator = Orchestrator(
        _FakeProvider(Provider.OPENAI),
        _FakeProvider(Provider.GEMINI),
        RateLimiter(InMemoryRateWindowStore()),
        closers=[closer],
    )

    async with orchestrator:
        pass
    await orchestrator.aclose()

    assert closed == [True]


@pytest.mark.asyncio
async def test_aclose_runs_remaining_closers_when_one_fails():
    closed = []

    async def failing_closer():
        closed.append("failing")
        raise RuntimeError("client already closed")

    async def closer():
        closed.append("ok")

    orchestrator = Orchestrator(
        _FakeProvider(Provider.OPENAI),
        _FakeProvider(Provider.GEMINI),
        RateLimiter(InMemoryRateWindowStore()),
        closers=[closer, failing_closer],
    )

    with pytest.raises(RuntimeError, match="client already closed"):
        await orchestrator.aclose()
    await orchestrator.aclose()

    assert sorted(closed) == ["failing", "ok"]
    assert orchestrator._closers == []
