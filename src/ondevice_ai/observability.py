from __future__ import annotations

"""
Typed observability primitives for capability call lifecycle events.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Literal, Protocol, Sequence

logger = logging.getLogger(__name__)

LifecycleEventType = Literal[
    "state",
    "retry",
    "session_created",
    "session_reused",
    "session_released",
    "call_success",
    "call_error",
]


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """
    One normalized lifecycle event emitted by the capability facade.

    Observer callbacks are best-effort only; their failures are logged and
    never reach the call.
    """

    event_type: LifecycleEventType
    call_id: str
    capability: str
    state: str | None = None
    attempt: int | None = None
    latency_ms: float | None = None
    error_kind: str | None = None
    error_message: str | None = None


class LifecycleObserver(Protocol):
    """Observer callback protocol used by the capability facade."""

    def __call__(self, event: LifecycleEvent) -> None | Awaitable[None]:
        ...



async def emit_event(
    observers: Sequence[LifecycleObserver],
    event: LifecycleEvent,
) -> None:
    """Deliver one event to every observer, isolating observer failures."""
    for observer in observers:
        try:
            result = observer(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.debug("Lifecycle observer raised on %s", event.event_type, exc_info=True)
