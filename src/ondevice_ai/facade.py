from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Generic, Literal, TypeVar

from pydantic import BaseModel

from .config import CapabilityConfig
from .errors import AIBadInputError, AIError, ErrorKind, normalize_error
from .factory import ProviderSet
from .gate import CapabilityGate, GatePolicy
from .observability import LifecycleEvent, LifecycleObserver, emit_event
from .providers.base import CapabilityProvider
from .retry import RetrySpec, run_with_retry
from .sessions import AcquireOptions, ManagedSession, SessionManager
from .streaming import coerce_response, collect_stream
from .structured import (
    StructuredResult,
    parse_structured,
    response_constraint,
    validate_value,
)
from .timeouts import race
from .types import (
    ApiMissing,
    Availability,
    CapabilityKind,
    CapabilityRequest,
    CreateOptions,
    InvocationOptions,
    JSONSchema,
    Message,
    Payload,
    ProviderResponse,
    StreamResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CallState = Literal[
    "gating",
    "acquiring",
    "invoking",
    "streaming",
    "parsing",
    "done",
    "cancelled",
    "timeout",
    "failed",
]

# Errors after which a reused session is no longer trusted.
_UNRECOVERABLE: frozenset[ErrorKind] = frozenset({"Internal", "NotSupported", "PermissionDenied"})

_SUMMARIZER_DEFAULTS = {"type": "key-points", "format": "markdown", "length": "short"}


@dataclass(frozen=True, slots=True)
class CallResult(Generic[T]):
    """
    Outcome of one public facade call: a value or exactly one normalized
    error, plus the call states visited in order.
    """

    value: T | None = None
    error: AIError | None = None
    states: tuple[CallState, ...] = ()
    call_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def final_state(self) -> CallState | None:
        return self.states[-1] if self.states else None

    def unwrap(self) -> T:
        """Return the value or raise the normalized error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class _CallTrace:
    """Records state transitions of one call and mirrors them to observers."""

    def __init__(
        self,
        call_id: str,
        capability: CapabilityKind,
        observers: list[LifecycleObserver],
    ) -> None:
        self.call_id = call_id
        self.capability = capability
        self._observers = observers
        self.states: list[CallState] = []
        self.started_at = time.monotonic()

    @property
    def latency_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000.0

    async def enter(self, state: CallState, attempt: int | None = None) -> None:
        self.states.append(state)
        await self.emit("state", state=state, attempt=attempt)

    async def emit(self, event_type: str, **fields: Any) -> None:
        if not self._observers:
            return
        await emit_event(
            self._observers,
            LifecycleEvent(
                event_type=event_type,  # type: ignore[arg-type]
                call_id=self.call_id,
                capability=self.capability,
                **fields,
            ),
        )

    async def fail(self, error: AIError) -> None:
        if error.kind == "Cancelled":
            await self.enter("cancelled")
        elif error.kind == "Timeout":
            await self.enter("timeout")
        else:
            await self.enter("failed")
        await self.emit(
            "call_error",
            latency_ms=self.latency_ms,
            error_kind=error.kind,
            error_message=error.message,
        )


Finisher = Callable[
    [CapabilityProvider, ManagedSession, Payload, InvocationOptions, _CallTrace],
    Awaitable[Any],
]


class CapabilityFacade:
    """
    Public entry points for on-device generation capabilities.

    Every call walks gating → acquiring → invoking → (streaming | parsing) →
    done under the caller's timeout, cancellation signal and retry budget, and
    returns a `CallResult` instead of raising.

    `one_shot_*` calls release the session they acquired once the attempt
    ends, whatever the outcome. `text`, `structured_json`, `summarize`,
    `translate` and `stream_text` keep the cached session for later calls and
    only drop it after an unrecoverable error. A dropped session that other
    calls still hold is torn down when the last of them finishes.
    """

    def __init__(
        self,
        providers: ProviderSet | None = None,
        *,
        sessions: SessionManager | None = None,
        config: CapabilityConfig | None = None,
        gate: CapabilityGate | None = None,
        observers: list[LifecycleObserver] | None = None,
    ) -> None:
        self.providers = providers or ProviderSet()
        self.sessions = sessions or SessionManager()
        self.config = config or CapabilityConfig.from_env()
        self.gate = gate or CapabilityGate(probe_timeout_s=self.config.probe_timeout_s)
        self._observers = list(observers or [])

    async def __aenter__(self) -> "CapabilityFacade":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Release every cached session."""
        await self.sessions.close()

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def check_availability(
        self,
        kind: CapabilityKind,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
    ) -> Availability | ApiMissing:
        """Probe one capability; `"api-missing"` when no provider exists."""
        provider = self.providers.for_kind(kind)
        if not provider.present:
            logger.debug("%s availability: api-missing", kind)
            return "api-missing"
        request = CapabilityRequest(
            kind=kind,
            source_language=source_language,
            target_language=target_language,
        )
        return await self.gate.probe(provider, request)

    # ------------------------------------------------------------------
    # One-shot calls
    # ------------------------------------------------------------------

    async def one_shot_text(
        self,
        payload: Payload,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[str]:
        return await self._call(
            "language-model", payload, create, invoke, retry, self._finish_text, one_shot=True
        )

    async def one_shot_stream(
        self,
        payload: Payload,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[StreamResult]:
        invoke = replace(self._invocation(invoke), stream=True)
        return await self._call(
            "language-model", payload, create, invoke, retry, self._finish_generation, one_shot=True
        )

    async def one_shot_structured(
        self,
        payload: Payload,
        schema: JSONSchema | type[BaseModel] | None = None,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[StructuredResult[Any]]:
        return await self._call(
            "language-model",
            payload,
            create,
            self._with_schema(invoke, schema),
            retry,
            self._structured_finisher(schema),
            one_shot=True,
        )

    async def one_shot_json(
        self,
        payload: Payload,
        schema: JSONSchema | type[BaseModel] | None = None,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[Any]:
        """Structured generation returning only the validated value."""
        result = await self.one_shot_structured(payload, schema, create, invoke, retry)
        return _unwrap_structured(result)

    async def one_shot_summarize(
        self,
        text: str,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[str]:
        return await self._call(
            "summarizer", text, create, invoke, retry, self._finish_text, one_shot=True
        )

    async def one_shot_translate(
        self,
        text: str,
        source_language: str,
        target_language: str,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[str]:
        return await self._call(
            "translator",
            text,
            create,
            invoke,
            retry,
            self._finish_text,
            one_shot=True,
            languages=(source_language, target_language),
        )

    # ------------------------------------------------------------------
    # Session-reusing calls
    # ------------------------------------------------------------------

    async def text(
        self,
        payload: Payload,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[str]:
        return await self._call(
            "language-model", payload, create, invoke, retry, self._finish_text, one_shot=False
        )

    async def stream_text(
        self,
        payload: Payload,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[StreamResult]:
        invoke = replace(self._invocation(invoke), stream=True)
        return await self._call(
            "language-model", payload, create, invoke, retry, self._finish_generation, one_shot=False
        )

    async def structured_json(
        self,
        payload: Payload,
        schema: JSONSchema | type[BaseModel] | None = None,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[StructuredResult[Any]]:
        return await self._call(
            "language-model",
            payload,
            create,
            self._with_schema(invoke, schema),
            retry,
            self._structured_finisher(schema),
            one_shot=False,
        )

    async def summarize(
        self,
        text: str,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[str]:
        return await self._call(
            "summarizer", text, create, invoke, retry, self._finish_text, one_shot=False
        )

    async def translate(
        self,
        text: str,
        source_language: str,
        target_language: str,
        create: CreateOptions | None = None,
        invoke: InvocationOptions | None = None,
        retry: RetrySpec | None = None,
    ) -> CallResult[str]:
        return await self._call(
            "translator",
            text,
            create,
            invoke,
            retry,
            self._finish_text,
            one_shot=False,
            languages=(source_language, target_language),
        )

    async def detect_language(self, text: str) -> str | None:
        """
        Best-guess language code for `text`, or `None` when detection is
        missing, unavailable, slow or fails. Never raises.
        """
        if not self.providers.language_detector.present:
            logger.debug("Language detector not available")
            return None

        result = await self._call(
            "language-detector",
            text,
            None,
            InvocationOptions(timeout_s=self.config.detect_timeout_s),
            RetrySpec(),
            self._finish_detect,
            one_shot=False,
        )
        if not result.ok:
            logger.warning("Language detection failed: %s", result.error)
            return None
        return result.value

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _call(
        self,
        kind: CapabilityKind,
        payload: Payload,
        create: CreateOptions | None,
        invoke: InvocationOptions | None,
        retry: RetrySpec | None,
        finish: Finisher,
        *,
        one_shot: bool,
        languages: tuple[str, str] | None = None,
    ) -> CallResult[Any]:
        trace = _CallTrace(uuid.uuid4().hex, kind, self._observers)
        try:
            options = self._invocation(invoke)
            create = create or CreateOptions()
            self._validate_payload(payload)
            self._validate_invocation(options)
            request = self._build_request(kind, create, languages)
            provider = self.providers.for_kind(kind)
            spec = retry if retry is not None else self.config.retry_spec()
            logger.debug("%s call %s started (one_shot=%s)", kind, trace.call_id, one_shot)

            async def _attempt(attempt: int) -> Any:
                return await self._run_attempt(
                    provider, request, payload, create, options, finish, trace, attempt, one_shot
                )

            value = await race(
                run_with_retry(_attempt, spec, options.signal, label=f"{kind} call"),
                options.deadline_s,
                None,
                f"{kind} call",
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = normalize_error(e)
            await trace.fail(error)
            logger.warning("%s call %s failed: %s (%s)", kind, trace.call_id, error.message, error.kind)
            return CallResult(error=error, states=tuple(trace.states), call_id=trace.call_id)

        await trace.enter("done")
        await trace.emit("call_success", latency_ms=trace.latency_ms)
        logger.debug("%s call %s ok", kind, trace.call_id)
        return CallResult(value=value, states=tuple(trace.states), call_id=trace.call_id)

    async def _run_attempt(
        self,
        provider: CapabilityProvider,
        request: CapabilityRequest,
        payload: Payload,
        create: CreateOptions,
        options: InvocationOptions,
        finish: Finisher,
        trace: _CallTrace,
        attempt: int,
        one_shot: bool,
    ) -> Any:
        if attempt:
            await trace.emit("retry", attempt=attempt)

        await trace.enter("gating", attempt)
        policy = GatePolicy(
            require_on_device=(
                create.require_on_device
                if create.require_on_device is not None
                else self.config.require_on_device
            ),
            user_activation=create.user_activation,
        )
        await self.gate.ensure(provider, request, policy, options.signal)

        await trace.enter("acquiring", attempt)
        key = provider.session_key(request)
        reused = self.sessions.peek(key) is not None
        session = await self.sessions.acquire(
            key,
            lambda monitor: provider.construct(request, monitor),
            AcquireOptions(
                timeout_s=self._create_timeout(create, options),
                signal=options.signal,
                on_download_progress=create.on_download_progress,
                ephemeral=one_shot,
            ),
            teardown=provider.destroy,
        )

        failure: AIError | None = None
        try:
            await trace.emit("session_reused" if reused else "session_created", attempt=attempt)
            await trace.enter("invoking", attempt)
            return await finish(provider, session, payload, options, trace)
        except Exception as e:
            failure = normalize_error(e)
            if failure is e:
                raise
            raise failure from e
        finally:
            evict = one_shot or (failure is not None and failure.kind in _UNRECOVERABLE)
            await self.sessions.return_lease(session, evict=evict)
            if evict:
                await trace.emit("session_released", attempt=attempt)

    # ------------------------------------------------------------------
    # Finishers
    # ------------------------------------------------------------------

    async def _invoke_raw(
        self,
        provider: CapabilityProvider,
        session: ManagedSession,
        payload: Payload,
        options: InvocationOptions,
    ) -> Any:
        handle = session.ensure_live()
        label = f"{provider.kind} invoke"
        try:
            return await race(
                provider.invoke(handle, payload, options),
                options.timeout_s,
                options.signal,
                label,
            )
        except AIError:
            raise
        except Exception as e:
            raise normalize_error(e, label) from e

    async def _finish_generation(
        self,
        provider: CapabilityProvider,
        session: ManagedSession,
        payload: Payload,
        options: InvocationOptions,
        trace: _CallTrace,
    ) -> StreamResult:
        if not options.stream:
            response = coerce_response(
                await self._invoke_raw(provider, session, payload, options)
            )
            return StreamResult(
                text=response.best_text,
                usage=response.usage,
                safety=response.safety,
                model_id=response.model_id,
            )

        await trace.enter("streaming")
        handle = session.ensure_live()
        source = provider.stream(handle, payload, options)
        return await collect_stream(
            source,
            options,
            fallback=lambda: provider.invoke(handle, payload, options),
            label=f"{provider.kind} stream",
        )

    async def _finish_text(
        self,
        provider: CapabilityProvider,
        session: ManagedSession,
        payload: Payload,
        options: InvocationOptions,
        trace: _CallTrace,
    ) -> str:
        result = await self._finish_generation(provider, session, payload, options, trace)
        return result.text

    def _structured_finisher(
        self,
        schema: JSONSchema | type[BaseModel] | None,
    ) -> Finisher:
        async def _finish(
            provider: CapabilityProvider,
            session: ManagedSession,
            payload: Payload,
            options: InvocationOptions,
            trace: _CallTrace,
        ) -> StructuredResult[Any]:
            if options.stream:
                streamed = await self._finish_generation(provider, session, payload, options, trace)
                response = ProviderResponse(text=streamed.text)
            else:
                response = coerce_response(
                    await self._invoke_raw(provider, session, payload, options)
                )

            await trace.enter("parsing")
            if response.data is not None and not isinstance(response.data, str):
                raw_text = json.dumps(response.data, ensure_ascii=False)
                return StructuredResult(
                    value=validate_value(response.data, schema, raw_text=raw_text),
                    raw_text=raw_text,
                )
            raw_text = response.data if isinstance(response.data, str) else response.best_text
            return parse_structured(raw_text, schema)

        return _finish

    async def _finish_detect(
        self,
        provider: CapabilityProvider,
        session: ManagedSession,
        payload: Payload,
        options: InvocationOptions,
        trace: _CallTrace,
    ) -> str | None:
        _ = trace
        raw = await self._invoke_raw(provider, session, payload, options)
        return _best_language(raw)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _invocation(self, invoke: InvocationOptions | None) -> InvocationOptions:
        if invoke is not None:
            return invoke
        return InvocationOptions(timeout_s=self.config.timeout_s)

    def _with_schema(
        self,
        invoke: InvocationOptions | None,
        schema: JSONSchema | type[BaseModel] | None,
    ) -> InvocationOptions:
        return replace(self._invocation(invoke), schema=response_constraint(schema))

    def _create_timeout(self, create: CreateOptions, options: InvocationOptions) -> float | None:
        """
        Explicit construction timeout first, then the configured default.
        Otherwise reuse the invocation timeout, except when the caller watches
        download progress: a download may legitimately take long.
        """
        if create.timeout_s is not None:
            return create.timeout_s or None
        if self.config.create_timeout_s is not None:
            return self.config.create_timeout_s
        if create.on_download_progress is not None:
            return None
        return options.timeout_s

    def _build_request(
        self,
        kind: CapabilityKind,
        create: CreateOptions,
        languages: tuple[str, str] | None,
    ) -> CapabilityRequest:
        params = dict(create.params)
        if kind == "summarizer":
            params = {**_SUMMARIZER_DEFAULTS, **params}

        if kind != "translator":
            return CapabilityRequest(kind=kind, params=params)

        source, target = languages or (None, None)
        for name, value in (("source_language", source), ("target_language", target)):
            if not isinstance(value, str) or not value.strip():
                raise AIBadInputError(f"{name} must be a non-empty string")
        return CapabilityRequest(
            kind=kind,
            params=params,
            source_language=source.strip(),
            target_language=target.strip(),
        )

    def _validate_payload(self, payload: Payload) -> None:
        if isinstance(payload, str):
            if not payload.strip():
                raise AIBadInputError("Input text must be a non-empty string")
            return

        if not isinstance(payload, list) or not payload:
            raise AIBadInputError("Input must be a string or a non-empty list of messages")

        for idx, message in enumerate(payload):
            if not isinstance(message, Message):
                raise AIBadInputError(f"Input messages[{idx}] must be a Message")
            if message.role not in ("user", "assistant", "system"):
                raise AIBadInputError(f"Input messages[{idx}] has unsupported role")
            if not isinstance(message.content, str):
                raise AIBadInputError(f"Input messages[{idx}].content must be a string")

    def _validate_invocation(self, options: InvocationOptions) -> None:
        if options.timeout_s is not None and options.timeout_s < 0:
            raise AIBadInputError("InvocationOptions.timeout_s must be >= 0")
        if options.deadline_s is not None and options.deadline_s < 0:
            raise AIBadInputError("InvocationOptions.deadline_s must be >= 0")
        if options.temperature is not None and options.temperature < 0:
            raise AIBadInputError("InvocationOptions.temperature must be >= 0")
        if options.top_p is not None and (options.top_p <= 0 or options.top_p > 1):
            raise AIBadInputError("InvocationOptions.top_p must be in (0, 1]")
        if options.top_k is not None and options.top_k <= 0:
            raise AIBadInputError("InvocationOptions.top_k must be greater than 0")
        if options.candidate_count is not None and options.candidate_count <= 0:
            raise AIBadInputError("InvocationOptions.candidate_count must be greater than 0")
        if options.max_tokens is not None and options.max_tokens <= 0:
            raise AIBadInputError("InvocationOptions.max_tokens must be greater than 0")
        if options.keep_partial and not options.stream:
            raise AIBadInputError("InvocationOptions.keep_partial requires stream=True")


def _unwrap_structured(result: CallResult[StructuredResult[Any]]) -> CallResult[Any]:
    if result.error is not None:
        return result  # type: ignore[return-value]
    value = result.value.value if result.value is not None else None
    return CallResult(value=value, states=result.states, call_id=result.call_id)


def _best_language(raw: Any) -> str | None:
    if isinstance(raw, ProviderResponse):
        return raw.best_text.strip() or None
    if isinstance(raw, str):
        return raw.strip() or None
    if isinstance(raw, list):
        return _best_language(raw[0]) if raw else None
    if isinstance(raw, dict):
        for key in ("language", "detectedLanguage", "detected_language"):
            value = raw.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None
