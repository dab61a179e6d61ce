from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Bounded exponential-backoff retry loop with error-class-aware retryability.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .cancellation import CancellationSignal
from .errors import RETRYABLE_KINDS, AIBadInputError, AICancelledError, ErrorKind, normalize_error
from .timeouts import cancellable_sleep
from .utils import backoff_delay

logger = logging.getLogger(__name__)

ReturnT = TypeVar("ReturnT")

RetryCallback = Callable[[int, Exception, float], None]


@dataclass(frozen=True, slots=True)
class RetrySpec:
    """
    Retry budget for one call.

    `max_attempts` counts retries, not calls: the attempt function runs at
    most `max_attempts + 1` times, and `0` means a single attempt.
    """

    max_attempts: int = 0
    base_delay_s: float = 0.25
    max_delay_s: float = 5.0
    jitter: bool = True
    retryable: frozenset[ErrorKind] = RETRYABLE_KINDS

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise AIBadInputError("RetrySpec.max_attempts must be >= 0")
        if self.base_delay_s < 0:
            raise AIBadInputError("RetrySpec.base_delay_s must be >= 0")
        if self.max_delay_s < 0:
            raise AIBadInputError("RetrySpec.max_delay_s must be >= 0")

    def delay_for(self, attempt: int) -> float:
        return backoff_delay(
            attempt,
            self.base_delay_s,
            self.max_delay_s,
            jitter=self.jitter,
        )


async def run_with_retry(
    attempt_fn: Callable[[int], Awaitable[ReturnT]],
    spec: RetrySpec | None = None,
    signal: CancellationSignal | None = None,
    *,
    label: str = "operation",
    on_retry: RetryCallback | None = None,
) -> ReturnT:
    """
    Execute `attempt_fn(attempt)` with retry-on-transient-error semantics.

    Failures are normalized; kinds outside `spec.retryable` and the last
    attempt's failure are raised immediately. The signal is checked before
    every attempt and interrupts backoff sleeps, so a cancelled call is never
    retried.
    """
    spec = spec or RetrySpec()
    attempt = 0

    while True:
        if signal is not None and signal.aborted:
            raise AICancelledError(f"{label} cancelled", cause=signal.reason)

        try:
            return await attempt_fn(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            err = normalize_error(e)
            if err.kind not in spec.retryable or attempt >= spec.max_attempts:
                if err is e:
                    raise
                raise err from e

            delay = spec.delay_for(attempt)
            logger.warning(
                "%s failed with %s; retrying in %.3fs (attempt %d/%d)",
                label,
                err.kind,
                delay,
                attempt + 1,
                spec.max_attempts,
            )
            if on_retry is not None:
                try:
                    on_retry(attempt, err, delay)
                except Exception:
                    logger.debug("on_retry callback raised", exc_info=True)

            await cancellable_sleep(delay, signal, label=f"{label} retry delay")
            attempt += 1
