from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Deterministic, scriptable providers for local development, demos and tests.
Each one records how it was called so callers can assert on construction
counts, invocations and teardown.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Sequence

from ..sessions import DownloadMonitor
from ..types import (
    Availability,
    CapabilityRequest,
    InvocationOptions,
    Payload,
    ProviderResponse,
    StreamChunk,
)
from .base import (
    CapabilityProvider,
    LanguageDetectorProvider,
    LanguageModelProvider,
    SummarizerProvider,
    TranslatorProvider,
)

ScriptedReply = ProviderResponse | str | dict | list | Exception | Callable[[Payload, InvocationOptions], Any]


@dataclass
class ScriptedSession:
    key: str
    request: CapabilityRequest
    invocations: int = 0
    destroyed: bool = False
    destroy_error: Exception | None = None

    def destroy(self) -> None:
        self.destroyed = True
        if self.destroy_error is not None:
            raise self.destroy_error


@dataclass
class _Calls:
    probe: int = 0
    construct: int = 0
    invoke: int = 0
    stream: int = 0
    payloads: list[Payload] = field(default_factory=list)
    options: list[InvocationOptions] = field(default_factory=list)
    requests: list[CapabilityRequest] = field(default_factory=list)


class _ScriptedProvider(CapabilityProvider):
    """
    Shared scripting for every capability variant.

    `availability` may be an exception to make the probe itself fail.
    `create_errors` / `invoke_errors` are consumed one per call; `None`
    entries let that call succeed. `responses` are replayed in order, the
    last one repeating. `chunks=None` means the provider cannot stream.
    """

    def __init__(
        self,
        *,
        availability: Availability | str | Exception = "available",
        progress: Sequence[float | dict] = (),
        create_delay_s: float = 0.0,
        create_errors: Sequence[Exception | None] = (),
        responses: Sequence[ScriptedReply] = (),
        invoke_delay_s: float = 0.0,
        invoke_errors: Sequence[Exception | None] = (),
        chunks: Sequence[StreamChunk | str] | None = None,
        chunk_delay_s: float = 0.0,
        destroy_error: Exception | None = None,
    ) -> None:
        self.availability = availability
        self.progress = list(progress)
        self.create_delay_s = create_delay_s
        self.create_errors = list(create_errors)
        self.responses = list(responses)
        self.invoke_delay_s = invoke_delay_s
        self.invoke_errors = list(invoke_errors)
        self.chunks = list(chunks) if chunks is not None else None
        self.chunk_delay_s = chunk_delay_s
        self.destroy_error = destroy_error
        self.calls = _Calls()
        self.sessions: list[ScriptedSession] = []

    async def probe(self, request: CapabilityRequest) -> Availability:
        self.calls.probe += 1
        if isinstance(self.availability, Exception):
            raise self.availability
        return self.availability  # type: ignore[return-value]

    async def construct(self, request: CapabilityRequest, monitor: DownloadMonitor) -> Any:
        self.calls.construct += 1
        self.calls.requests.append(request)
        attempt = self.calls.construct - 1
        if attempt < len(self.create_errors) and self.create_errors[attempt] is not None:
            raise self.create_errors[attempt]

        for event in self.progress:
            monitor(event)
            await asyncio.sleep(0)
        if self.create_delay_s:
            await asyncio.sleep(self.create_delay_s)

        session = ScriptedSession(
            key=self.session_key(request),
            request=request,
            destroy_error=self.destroy_error,
        )
        self.sessions.append(session)
        return session

    async def invoke(
        self,
        handle: Any,
        payload: Payload,
        options: InvocationOptions,
    ) -> ProviderResponse | str:
        self.calls.invoke += 1
        self.calls.payloads.append(payload)
        self.calls.options.append(options)
        handle.invocations += 1

        attempt = self.calls.invoke - 1
        if attempt < len(self.invoke_errors) and self.invoke_errors[attempt] is not None:
            raise self.invoke_errors[attempt]
        if self.invoke_delay_s:
            await asyncio.sleep(self.invoke_delay_s)

        if not self.responses:
            return self._default_reply(handle, payload)
        reply = self.responses[min(attempt, len(self.responses) - 1)]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(payload, options)
        return reply

    def stream(
        self,
        handle: Any,
        payload: Payload,
        options: InvocationOptions,
    ) -> AsyncIterator[StreamChunk | str] | None:
        if self.chunks is None:
            return None
        self.calls.stream += 1
        self.calls.payloads.append(payload)
        self.calls.options.append(options)
        handle.invocations += 1
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[StreamChunk | str]:
        for chunk in self.chunks or []:
            if self.chunk_delay_s:
                await asyncio.sleep(self.chunk_delay_s)
            yield chunk

    def _default_reply(self, handle: ScriptedSession, payload: Payload) -> Any:
        _ = handle, payload
        return "ok"


class ScriptedLanguageModel(_ScriptedProvider, LanguageModelProvider):
    pass


class ScriptedSummarizer(_ScriptedProvider, SummarizerProvider):
    def _default_reply(self, handle: ScriptedSession, payload: Payload) -> Any:
        text = payload if isinstance(payload, str) else " ".join(m.content for m in payload)
        first = text.strip().splitlines()[0] if text.strip() else ""
        return f"- {first}"


class ScriptedTranslator(_ScriptedProvider, TranslatorProvider):
    def _default_reply(self, handle: ScriptedSession, payload: Payload) -> Any:
        req = handle.request
        return f"[{req.source_language}->{req.target_language}] {payload}"


class ScriptedLanguageDetector(_ScriptedProvider, LanguageDetectorProvider):
    def _default_reply(self, handle: ScriptedSession, payload: Payload) -> Any:
        _ = handle, payload
        return [{"detectedLanguage": "en", "confidence": 0.99}]
