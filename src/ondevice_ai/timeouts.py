from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Cooperative timeout/cancellation envelope used around every suspension point.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, TypeVar

from .cancellation import CancellationSignal
from .errors import AICancelledError, AITimeoutError

logger = logging.getLogger(__name__)

ReturnT = TypeVar("ReturnT")


def _discard(operation: Awaitable[Any]) -> None:
    if inspect.iscoroutine(operation):
        operation.close()
    elif isinstance(operation, asyncio.Future):
        operation.cancel()


async def _reap(task: asyncio.Future[Any]) -> None:
    if not task.done():
        task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def race(
    operation: Awaitable[ReturnT],
    timeout_s: float | None = None,
    signal: CancellationSignal | None = None,
    label: str = "operation",
) -> ReturnT:
    """
    Await `operation` against a deadline and a cancellation signal.

    Exactly one outcome wins:
      - the operation settles: its result is returned or its error re-raised
        untouched (callers normalize),
      - `timeout_s` elapses: `AITimeoutError` naming `label`,
      - `signal` fires: `AICancelledError`.

    The losing paths are torn down before returning: the operation task is
    cancelled and awaited, the timer is cancelled and the abort listener is
    removed. `timeout_s` of `None` or `0` means no deadline.
    """
    if signal is not None and signal.aborted:
        _discard(operation)
        raise AICancelledError(f"{label} cancelled", cause=signal.reason)

    deadline = timeout_s if timeout_s else None
    if deadline is None and signal is None:
        return await operation

    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(operation)
    aborted: asyncio.Future[object] = loop.create_future()

    def _on_abort(reason: object) -> None:
        if not aborted.done():
            aborted.set_result(reason)

    if signal is not None:
        signal.add_listener(_on_abort)

    try:
        done, _ = await asyncio.wait(
            {task, aborted},
            timeout=deadline,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except BaseException:
        await _reap(task)
        raise
    finally:
        if signal is not None:
            signal.remove_listener(_on_abort)
        if not aborted.done():
            aborted.cancel()

    if task in done:
        return task.result()

    await _reap(task)
    if aborted in done:
        raise AICancelledError(f"{label} cancelled", cause=aborted.result())

    logger.warning("%s timed out after %ss", label, deadline)
    raise AITimeoutError(f"{label} timed out after {deadline}s")


async def cancellable_sleep(
    delay_s: float,
    signal: CancellationSignal | None = None,
    label: str = "delay",
) -> None:
    """Sleep for `delay_s`; an abort interrupts the sleep immediately."""
    await race(asyncio.sleep(max(0.0, delay_s)), None, signal, label)
