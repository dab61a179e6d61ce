from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Abortable signal shared between a caller and in-flight capability calls.
"""

import logging
from typing import Callable

from .errors import AICancelledError

logger = logging.getLogger(__name__)

AbortListener = Callable[[object], None]


class CancellationSignal:
    """
    One-shot abort signal.

    Offers "is this already aborted" (`aborted`) and "notify me on abort"
    (`add_listener`) semantics. Listeners run synchronously inside `abort()`,
    once, and are dropped afterwards. Listeners added after the signal fired
    are not called; check `aborted` first.
    """

    def __init__(self) -> None:
        self._aborted = False
        self._reason: object = None
        self._listeners: list[AbortListener] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> object:
        return self._reason

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: AbortListener) -> None:
        if self._aborted:
            return
        self._listeners.append(listener)

    def remove_listener(self, listener: AbortListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def abort(self, reason: object = None) -> None:
        """Fire the signal. Subsequent calls are no-ops."""
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason if reason is not None else "aborted"

        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener(self._reason)
            except Exception:
                logger.warning("Abort listener raised", exc_info=True)

    def raise_if_aborted(self, label: str = "operation") -> None:
        if self._aborted:
            raise AICancelledError(f"{label} cancelled", cause=self._reason)
