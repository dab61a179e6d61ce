from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Session lifecycle: per-key singleton cache, de-duplicated construction and
download-progress observation.
"""

import asyncio
import inspect
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from .cancellation import CancellationSignal
from .errors import AIError, AIInternalError, normalize_error
from .timeouts import race
from .types import ProgressCallback

logger = logging.getLogger(__name__)

Teardown = Callable[[Any], Awaitable[None] | None]


class DownloadMonitor:
    """
    Progress adapter handed to provider constructors.

    Providers report progress as a fraction in [0, 1] (a bare number, a
    mapping with `loaded`, or an object with a `loaded` attribute). Subscribers
    receive integer percentages, clamped to 0..100 and never decreasing.
    """

    def __init__(self, label: str) -> None:
        self.label = label
        self.last_percent: int | None = None
        self._subscribers: list[ProgressCallback] = []

    def subscribe(self, callback: ProgressCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: ProgressCallback) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def __call__(self, event: object) -> None:
        self.report(event)

    def report(self, event: object) -> None:
        loaded = _loaded_fraction(event)
        if loaded is None:
            return
        percent = max(0, min(100, round(loaded * 100)))
        if self.last_percent is not None and percent < self.last_percent:
            return
        self.last_percent = percent
        logger.debug("%s download progress %d%%", self.label, percent)

        for callback in list(self._subscribers):
            try:
                callback(percent)
            except Exception:
                logger.warning("Download progress callback raised", exc_info=True)


def _loaded_fraction(event: object) -> float | None:
    if isinstance(event, (int, float)):
        value: object = event
    elif isinstance(event, Mapping):
        value = event.get("loaded")
    else:
        value = getattr(event, "loaded", None)
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    # NaN and infinities carry no usable progress.
    if not math.isfinite(value):
        return None
    return float(value)


@dataclass
class ManagedSession:
    """
    Cache entry wrapping one provider handle.

    `leases` counts the calls currently holding the session. Releasing a
    leased session only evicts it from the cache; the provider teardown runs
    when the last lease is returned. Once `released` is set the handle must
    not be used again; `ensure_live` turns any late use into a fresh
    `Internal` error.
    """

    key: str
    handle: Any
    teardown: Teardown | None = None
    created_at: float = field(default_factory=time.monotonic)
    leases: int = 0
    released: bool = False

    def ensure_live(self) -> Any:
        if self.released:
            raise AIInternalError(f"Session '{self.key}' was released")
        return self.handle


@dataclass(frozen=True, slots=True)
class AcquireOptions:
    """
    `ephemeral` marks a caller that releases the session right after use. A
    creation whose waiters were all ephemeral and all gave up is not kept in
    the cache.
    """

    timeout_s: float | None = None
    signal: CancellationSignal | None = None
    on_download_progress: ProgressCallback | None = None
    ephemeral: bool = False


@dataclass
class _PendingCreation:
    task: asyncio.Task[ManagedSession]
    monitor: DownloadMonitor
    waiters: int = 0
    keep: bool = False


ConstructFn = Callable[[DownloadMonitor], Awaitable[Any]]


class SessionManager:
    """
    Owns every provider session, keyed by capability (or capability plus
    language pair for translators).

    At most one session is cached per key. Concurrent `acquire` calls for a
    key that is being constructed join the same in-flight creation instead of
    starting another one. Every successful `acquire` takes a lease that the
    caller hands back with `return_lease`.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ManagedSession] = {}
        self._pending: dict[str, _PendingCreation] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def keys(self) -> list[str]:
        return sorted(self._sessions)

    def peek(self, key: str) -> ManagedSession | None:
        return self._sessions.get(key)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    async def acquire(
        self,
        key: str,
        construct_fn: ConstructFn,
        options: AcquireOptions | None = None,
        *,
        teardown: Teardown | None = None,
    ) -> ManagedSession:
        options = options or AcquireOptions()

        cached = self._sessions.get(key)
        if cached is not None and not cached.released:
            logger.debug("Reusing session %s", key)
            cached.leases += 1
            return cached

        pending = self._pending.get(key)
        if pending is None:
            logger.info("Creating session %s (first use)", key)
            monitor = DownloadMonitor(key)
            task = asyncio.create_task(self._create(key, construct_fn, monitor, teardown))
            pending = _PendingCreation(task=task, monitor=monitor)
            self._pending[key] = pending
        else:
            logger.debug("Joining in-flight creation of session %s", key)

        callback = options.on_download_progress
        if callback is not None:
            pending.monitor.subscribe(callback)
        pending.waiters += 1
        pending.keep = pending.keep or not options.ephemeral

        claimed: ManagedSession | None = None
        try:
            claimed = await race(
                asyncio.shield(pending.task),
                options.timeout_s,
                options.signal,
                f"create session {key}",
            )
            claimed.leases += 1
            return claimed
        except AIError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise normalize_error(e, f"create session {key}") from e
        finally:
            pending.waiters -= 1
            if callback is not None:
                pending.monitor.unsubscribe(callback)
            if pending.waiters == 0:
                if not pending.task.done():
                    logger.debug("Abandoning creation of session %s; no waiters left", key)
                    pending.task.cancel()
                    if self._pending.get(key) is pending:
                        del self._pending[key]
                elif claimed is None and not pending.keep:
                    await self._discard_unclaimed(pending.task)

    async def _create(
        self,
        key: str,
        construct_fn: ConstructFn,
        monitor: DownloadMonitor,
        teardown: Teardown | None,
    ) -> ManagedSession:
        try:
            handle = await construct_fn(monitor)
        finally:
            current = self._pending.get(key)
            if current is not None and current.task is asyncio.current_task():
                del self._pending[key]

        session = ManagedSession(key=key, handle=handle, teardown=teardown)
        self._sessions[key] = session
        logger.info("Session %s ready", key)
        return session

    async def _discard_unclaimed(self, task: asyncio.Task[ManagedSession]) -> None:
        # The creation finished but every waiter gave up before taking it.
        if task.cancelled() or task.exception() is not None:
            return
        session = task.result()
        if session.leases == 0:
            logger.debug("Discarding unclaimed session %s", session.key)
            await self.release_session(session)

    async def return_lease(self, session: ManagedSession, *, evict: bool = False) -> None:
        """
        Hand back one lease. With `evict` the session also leaves the cache.
        An evicted session is torn down once its last lease is returned.
        """
        session.leases = max(0, session.leases - 1)
        if evict:
            self._evict(session)
        if session.leases == 0 and self._sessions.get(session.key) is not session:
            await self._teardown(session)

    async def release(self, key: str) -> bool:
        """Remove `key` from the cache; teardown waits for outstanding leases."""
        session = self._sessions.get(key)
        if session is None:
            return False
        await self.release_session(session)
        return True

    async def release_session(self, session: ManagedSession) -> None:
        """Evict one specific session and tear it down once it is unleased."""
        self._evict(session)
        if session.leases:
            logger.debug(
                "Session %s evicted; teardown deferred until %d lease(s) return",
                session.key,
                session.leases,
            )
            return
        await self._teardown(session)

    async def close(self) -> None:
        """
        Abandon in-flight creations and tear down every cached session now,
        leased or not.
        """
        pending = list(self._pending.values())
        self._pending.clear()
        for creation in pending:
            creation.task.cancel()
        if pending:
            await asyncio.gather(*(c.task for c in pending), return_exceptions=True)

        for key in list(self._sessions):
            session = self._sessions.pop(key)
            await self._teardown(session)

    def _evict(self, session: ManagedSession) -> None:
        if self._sessions.get(session.key) is session:
            del self._sessions[session.key]

    async def _teardown(self, session: ManagedSession) -> None:
        if session.released:
            return
        session.released = True
        logger.info("Releasing session %s", session.key)

        if session.teardown is None:
            return
        try:
            result = session.teardown(session.handle)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("Teardown of session %s failed", session.key, exc_info=True)
