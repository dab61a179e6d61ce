from __future__ import annotations

import asyncio
import time

import pytest

from ondevice_ai.cancellation import CancellationSignal
from ondevice_ai.errors import (
    AIBadInputError,
    AICancelledError,
    AIError,
    AIInternalError,
    AIRateLimitError,
    AITimeoutError,
)
from ondevice_ai.retry import RetrySpec, run_with_retry
from ondevice_ai.utils import backoff_delay


def run_async(coro):
    return asyncio.run(coro)


FAST = RetrySpec(max_attempts=3, base_delay_s=0.0, max_delay_s=0.0, jitter=False)


def test_succeeds_after_transient_failures():
    calls: list[int] = []

    async def _attempt(attempt: int) -> str:
        calls.append(attempt)
        if attempt < 2:
            raise AIRateLimitError("slow down")
        return "ok"

    result = run_async(run_with_retry(_attempt, FAST, label="call"))

    assert result == "ok"
    assert calls == [0, 1, 2]


def test_runs_at_most_max_attempts_plus_one_times():
    calls: list[int] = []

    async def _attempt(attempt: int) -> str:
        calls.append(attempt)
        raise RuntimeError("internal failure")

    with pytest.raises(AIInternalError):
        run_async(run_with_retry(_attempt, FAST, label="call"))

    assert len(calls) == FAST.max_attempts + 1


def test_zero_attempts_means_single_call():
    calls: list[int] = []

    async def _attempt(attempt: int) -> str:
        calls.append(attempt)
        raise AITimeoutError("slow")

    with pytest.raises(AITimeoutError):
        run_async(run_with_retry(_attempt, RetrySpec(), label="call"))

    assert calls == [0]


@pytest.mark.parametrize(
    "error",
    [AIBadInputError("bad"), AICancelledError("stop"), PermissionError("denied")],
)
def test_non_retryable_kinds_fail_immediately(error):
    calls: list[int] = []

    async def _attempt(attempt: int) -> str:
        calls.append(attempt)
        raise error

    with pytest.raises(AIError):
        run_async(run_with_retry(_attempt, FAST, label="call"))

    assert calls == [0]


def test_retryable_kinds_are_configurable():
    calls: list[int] = []
    spec = RetrySpec(
        max_attempts=3,
        base_delay_s=0.0,
        max_delay_s=0.0,
        jitter=False,
        retryable=frozenset({"RateLimited"}),
    )

    async def _attempt(attempt: int) -> str:
        calls.append(attempt)
        raise AITimeoutError("slow")

    with pytest.raises(AITimeoutError):
        run_async(run_with_retry(_attempt, spec, label="call"))

    assert calls == [0]


def test_raw_exceptions_are_normalized_and_chained():
    async def _attempt(attempt: int) -> str:
        raise ConnectionResetError("Too many requests")

    with pytest.raises(AIRateLimitError) as exc_info:
        run_async(run_with_retry(_attempt, RetrySpec(), label="call"))

    assert isinstance(exc_info.value.__cause__, ConnectionResetError)


def test_abort_during_backoff_stops_retrying_promptly():
    calls: list[int] = []

    async def _scenario():
        signal = CancellationSignal()
        spec = RetrySpec(max_attempts=5, base_delay_s=10.0, max_delay_s=10.0, jitter=False)

        async def _attempt(attempt: int) -> str:
            calls.append(attempt)
            asyncio.get_running_loop().call_later(0.01, signal.abort)
            raise AIRateLimitError("busy")

        started = time.monotonic()
        with pytest.raises(AICancelledError):
            await run_with_retry(_attempt, spec, signal, label="call")
        return time.monotonic() - started

    elapsed = run_async(_scenario())

    assert calls == [0]
    assert elapsed < 1.0


def test_pre_aborted_signal_prevents_first_attempt():
    calls: list[int] = []

    async def _attempt(attempt: int) -> str:
        calls.append(attempt)
        return "never"

    signal = CancellationSignal()
    signal.abort()

    with pytest.raises(AICancelledError):
        run_async(run_with_retry(_attempt, FAST, signal, label="call"))

    assert calls == []


def test_on_retry_callback_sees_attempt_error_and_delay():
    seen: list[tuple[int, str, float]] = []

    def _on_retry(attempt: int, err: Exception, delay: float) -> None:
        seen.append((attempt, err.kind, delay))  # type: ignore[attr-defined]

    async def _attempt(attempt: int) -> str:
        if attempt == 0:
            raise AIRateLimitError("busy")
        return "ok"

    result = run_async(run_with_retry(_attempt, FAST, label="call", on_retry=_on_retry))

    assert result == "ok"
    assert seen == [(0, "RateLimited", 0.0)]


def test_backoff_is_capped_and_jitter_stays_in_band():
    assert backoff_delay(0, 0.25, 5.0, jitter=False) == 0.25
    assert backoff_delay(3, 0.25, 5.0, jitter=False) == 2.0
    assert backoff_delay(10, 0.25, 5.0, jitter=False) == 5.0

    assert backoff_delay(2, 1.0, 10.0, rand=lambda: 0.0) == pytest.approx(2.0)
    assert backoff_delay(2, 1.0, 10.0, rand=lambda: 1.0) == pytest.approx(5.0)
    for attempt in range(6):
        delay = backoff_delay(attempt, 0.25, 5.0)
        cap = min(5.0, 0.25 * 2**attempt)
        assert 0.5 * cap <= delay <= 1.25 * cap


def test_retry_spec_rejects_negative_values():
    with pytest.raises(AIBadInputError):
        RetrySpec(max_attempts=-1)
    with pytest.raises(AIBadInputError):
        RetrySpec(base_delay_s=-0.1)
