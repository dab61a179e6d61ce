from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines common provider-agnostic types used by capability calls.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Literal, TypeAlias

if TYPE_CHECKING:
    from .cancellation import CancellationSignal


JSONPrimitive: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]
JSONSchema: TypeAlias = dict[str, JSONValue]

Availability = Literal["available", "after-download", "unavailable", "unknown"]
AVAILABILITY_STATES: tuple[Availability, ...] = (
    "available",
    "after-download",
    "unavailable",
    "unknown",
)
ApiMissing = Literal["api-missing"]

CapabilityKind = Literal["language-model", "summarizer", "translator", "language-detector"]
CAPABILITY_KINDS: tuple[CapabilityKind, ...] = (
    "language-model",
    "summarizer",
    "translator",
    "language-detector",
)

Role = Literal["user", "assistant", "system"]

ProgressCallback: TypeAlias = Callable[[int], None]
UserActivation: TypeAlias = Callable[[], bool]


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    content: str


Payload: TypeAlias = str | list[Message]


@dataclass(frozen=True, slots=True)
class Usage:
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True, slots=True)
class SafetyAnnotation:
    category: str
    probability: str | None = None
    blocked: bool = False


@dataclass(frozen=True, slots=True)
class ProviderResponse:
    """
    Normalized single (non-streaming) provider result.

    `data` carries a provider-native structured payload when the provider
    decoded the response constraint itself.
    """

    text: str = ""
    data: JSONValue | None = None
    candidates: list[str] = field(default_factory=list)
    usage: Usage | None = None
    safety: list[SafetyAnnotation] | None = None
    model_id: str | None = None

    @property
    def best_text(self) -> str:
        if self.text:
            return self.text
        if self.candidates:
            return self.candidates[0]
        return ""


@dataclass(frozen=True, slots=True)
class StreamChunk:
    delta_text: str = ""
    usage: Usage | None = None
    safety: list[SafetyAnnotation] | None = None
    model_id: str | None = None


@dataclass(frozen=True, slots=True)
class StreamResult:
    text: str
    usage: Usage | None = None
    safety: list[SafetyAnnotation] | None = None
    model_id: str | None = None
    partial: bool = False


@dataclass(frozen=True, slots=True)
class CreateOptions:
    """
    Session-construction policy and provider constructor params.

    `require_on_device=None` defers to `CapabilityConfig.require_on_device`.
    `timeout_s=None` derives the construction deadline from the invocation
    (unbounded when a download progress callback is supplied).
    """

    require_on_device: bool | None = None
    timeout_s: float | None = None
    on_download_progress: ProgressCallback | None = None
    user_activation: UserActivation | None = None
    params: JSONObject = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CapabilityRequest:
    """What a provider sees on `probe` and `construct`."""

    kind: CapabilityKind
    params: JSONObject = field(default_factory=dict)
    source_language: str | None = None
    target_language: str | None = None


@dataclass(frozen=True, slots=True)
class InvocationOptions:
    """
    Per-call configuration, immutable for the duration of one call.

    `timeout_s` bounds each provider operation (`None`/`0` = unbounded).
    `deadline_s` bounds the whole call including retries; a call whose
    deadline elapsed is never retried.
    """

    timeout_s: float | None = None
    deadline_s: float | None = None
    signal: "CancellationSignal | None" = None
    temperature: float | None = None
    top_k: int | None = None
    top_p: float | None = None
    candidate_count: int | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None
    context: str | None = None
    schema: JSONSchema | None = None
    stream: bool = False
    keep_partial: bool = False
    vendor: JSONObject = field(default_factory=dict)
