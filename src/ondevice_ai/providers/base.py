from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Provider contracts for on-device capabilities.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, ClassVar

from ..errors import AINotSupportedError
from ..sessions import DownloadMonitor
from ..types import (
    Availability,
    CapabilityKind,
    CapabilityRequest,
    InvocationOptions,
    Payload,
    ProviderResponse,
    StreamChunk,
)


class CapabilityProvider(ABC):
    """
    Base class for one capability backend.

    The core treats providers as opaque: it only probes availability,
    constructs a session handle (possibly slow, possibly downloading assets)
    and invokes it. Concrete adapters subclass one of the named variants
    below.
    """

    kind: ClassVar[CapabilityKind]

    @property
    def present(self) -> bool:
        """Whether the underlying API exists at all in this runtime."""
        return True

    @property
    def provider_id(self) -> str:
        return type(self).__name__

    def session_key(self, request: CapabilityRequest) -> str:
        """Cache key; one session per key."""
        return request.kind

    @abstractmethod
    async def probe(self, request: CapabilityRequest) -> Availability:
        """Report readiness without side effects."""

    @abstractmethod
    async def construct(self, request: CapabilityRequest, monitor: DownloadMonitor) -> Any:
        """
        Create a session handle. Providers that download assets report
        fractional progress through `monitor`.
        """

    @abstractmethod
    async def invoke(
        self,
        handle: Any,
        payload: Payload,
        options: InvocationOptions,
    ) -> ProviderResponse | str:
        """Run one non-streaming call on `handle`."""

    def stream(
        self,
        handle: Any,
        payload: Payload,
        options: InvocationOptions,
    ) -> AsyncIterator[StreamChunk | str] | None:
        """
        Start incremental delivery. Returns `None` when the provider can't
        stream; callers then fall back to `invoke`.
        """
        _ = handle, payload, options
        return None

    async def destroy(self, handle: Any) -> None:
        """Release provider resources held by `handle`."""
        for name in ("destroy", "close"):
            method = getattr(handle, name, None)
            if callable(method):
                result = method()
                if inspect.isawaitable(result):
                    await result
                return


class LanguageModelProvider(CapabilityProvider):
    """Free-form text completion; also used for structured extraction."""

    kind: ClassVar[CapabilityKind] = "language-model"


class SummarizerProvider(CapabilityProvider):
    kind: ClassVar[CapabilityKind] = "summarizer"


class TranslatorProvider(CapabilityProvider):
    """Translation; sessions are bound to one source→target language pair."""

    kind: ClassVar[CapabilityKind] = "translator"

    def session_key(self, request: CapabilityRequest) -> str:
        return f"{request.kind}:{request.source_language}->{request.target_language}"


class LanguageDetectorProvider(CapabilityProvider):
    """
    Language identification. `invoke` answers with a language code, a mapping
    with `language`/`detectedLanguage`, or a ranked list of such mappings.
    """

    kind: ClassVar[CapabilityKind] = "language-detector"


class UnsupportedProvider(CapabilityProvider):
    """Stand-in for a capability whose API is absent from the runtime."""

    def __init__(self, kind: CapabilityKind) -> None:
        self._kind = kind

    @property
    def kind(self) -> CapabilityKind:  # type: ignore[override]
        return self._kind

    @property
    def present(self) -> bool:
        return False

    async def probe(self, request: CapabilityRequest) -> Availability:
        _ = request
        return "unavailable"

    async def construct(self, request: CapabilityRequest, monitor: DownloadMonitor) -> Any:
        _ = monitor
        raise AINotSupportedError(f"{request.kind} API is missing")

    async def invoke(self, handle: Any, payload: Payload, options: InvocationOptions) -> str:
        _ = handle, payload, options
        raise AINotSupportedError(f"{self._kind} API is missing")
