from __future__ import annotations

import asyncio
import time

import pytest

from ondevice_ai.cancellation import CancellationSignal
from ondevice_ai.errors import AICancelledError, AITimeoutError
from ondevice_ai.timeouts import cancellable_sleep, race


def run_async(coro):
    return asyncio.run(coro)


def test_race_returns_result_when_operation_wins():
    async def _scenario():
        signal = CancellationSignal()

        async def _work():
            await asyncio.sleep(0.01)
            return "done"

        result = await race(_work(), 1.0, signal, "work")
        return result, signal.listener_count

    result, listeners = run_async(_scenario())

    assert result == "done"
    assert listeners == 0


def test_race_times_out_and_cancels_the_operation():
    state = {"cancelled": False}

    async def _scenario():
        async def _slow():
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                state["cancelled"] = True
                raise

        with pytest.raises(AITimeoutError) as exc_info:
            await race(_slow(), 0.02, None, "slow op")
        leftover = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        return exc_info.value, leftover

    err, leftover = run_async(_scenario())

    assert err.kind == "Timeout"
    assert "slow op timed out after 0.02s" in err.message
    assert state["cancelled"] is True
    assert leftover == []


def test_race_abort_wins_and_detaches_listener():
    async def _scenario():
        signal = CancellationSignal()

        async def _abort_soon():
            await asyncio.sleep(0.01)
            signal.abort("user pressed stop")

        aborter = asyncio.create_task(_abort_soon())
        with pytest.raises(AICancelledError) as exc_info:
            await race(asyncio.sleep(5), 2.0, signal, "invoke")
        await aborter
        return exc_info.value, signal.listener_count

    err, listeners = run_async(_scenario())

    assert err.kind == "Cancelled"
    assert err.cause == "user pressed stop"
    assert listeners == 0


def test_race_with_already_aborted_signal_never_starts_the_operation():
    started = {"value": False}

    async def _work():
        started["value"] = True
        return 1

    async def _scenario():
        signal = CancellationSignal()
        signal.abort()
        with pytest.raises(AICancelledError):
            await race(_work(), None, signal, "work")

    run_async(_scenario())

    assert started["value"] is False


def test_race_propagates_operation_error_untouched():
    async def _scenario():
        async def _boom():
            raise KeyError("missing")

        await race(_boom(), 1.0, CancellationSignal(), "boom")

    with pytest.raises(KeyError):
        run_async(_scenario())


def test_race_without_deadline_or_signal_is_a_plain_await():
    async def _scenario():
        async def _value():
            return 7

        return await race(_value(), None, None)

    assert run_async(_scenario()) == 7


def test_zero_timeout_means_no_deadline():
    async def _scenario():
        async def _work():
            await asyncio.sleep(0.01)
            return "ok"

        return await race(_work(), 0, None, "work")

    assert run_async(_scenario()) == "ok"


def test_cancellable_sleep_is_interrupted_promptly():
    async def _scenario():
        signal = CancellationSignal()
        asyncio.get_running_loop().call_later(0.01, signal.abort)
        started = time.monotonic()
        with pytest.raises(AICancelledError):
            await cancellable_sleep(5.0, signal, "backoff")
        return time.monotonic() - started

    elapsed = run_async(_scenario())

    assert elapsed < 1.0


def test_signal_runs_listeners_once_and_ignores_late_listeners():
    calls: list[object] = []
    signal = CancellationSignal()
    signal.add_listener(calls.append)

    signal.abort("first")
    signal.abort("second")
    signal.add_listener(calls.append)

    assert calls == ["first"]
    assert signal.reason == "first"
    assert signal.listener_count == 0
    with pytest.raises(AICancelledError):
        signal.raise_if_aborted("call")


def test_failing_listener_does_not_stop_other_listeners():
    seen: list[object] = []
    signal = CancellationSignal()

    def _bad(reason: object) -> None:
        raise RuntimeError("listener failed")

    signal.add_listener(_bad)
    signal.add_listener(seen.append)
    signal.abort()

    assert seen == ["aborted"]
