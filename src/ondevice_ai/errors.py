from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the normalized error taxonomy for capability calls and the
single function that maps arbitrary failures onto it.
"""

import asyncio
import re
import socket
from typing import Any, Literal, TypeAlias

ErrorKind: TypeAlias = Literal[
    "Timeout",
    "Cancelled",
    "PermissionDenied",
    "RateLimited",
    "DownloadRequired",
    "NotSupported",
    "BadInput",
    "Internal",
]

ERROR_KINDS: tuple[ErrorKind, ...] = (
    "Timeout",
    "Cancelled",
    "PermissionDenied",
    "RateLimited",
    "DownloadRequired",
    "NotSupported",
    "BadInput",
    "Internal",
)

RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {"RateLimited", "Internal", "DownloadRequired", "Timeout"}
)


class AIError(Exception):
    """
    Base exception for every failure surfaced by the capability core.

    `kind` is always one of `ERROR_KINDS`. `cause` keeps the raw failure (or
    raw non-exception value) that was normalized, `details` carries optional
    diagnostics such as the offending model output.
    """

    kind: ErrorKind = "Internal"

    def __init__(
        self,
        message: str,
        *,
        cause: object = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.details = dict(details or {})

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, message={self.message!r})"


class AITimeoutError(AIError):
    kind: ErrorKind = "Timeout"


class AICancelledError(AIError):
    """Raised when the caller's cancellation signal fires first."""

    kind: ErrorKind = "Cancelled"


class AIPermissionError(AIError):
    kind: ErrorKind = "PermissionDenied"


class AIRateLimitError(AIError):
    kind: ErrorKind = "RateLimited"


class AIDownloadRequiredError(AIError):
    """
    The capability needs a one-time model download that has not happened yet
    (or may not start without user activation).
    """

    kind: ErrorKind = "DownloadRequired"


class AINotSupportedError(AIError):
    """
    Raised when the capability is absent, unavailable on this device, or the
    provider does not implement a requested feature.
    """

    kind: ErrorKind = "NotSupported"


class AIBadInputError(AIError):
    """
    The request was malformed, or the model returned output we couldn't parse
    or validate against the requested schema.
    """

    kind: ErrorKind = "BadInput"


class AIInternalError(AIError):
    kind: ErrorKind = "Internal"


_ERROR_CLASSES: dict[ErrorKind, type[AIError]] = {
    "Timeout": AITimeoutError,
    "Cancelled": AICancelledError,
    "PermissionDenied": AIPermissionError,
    "RateLimited": AIRateLimitError,
    "DownloadRequired": AIDownloadRequiredError,
    "NotSupported": AINotSupportedError,
    "BadInput": AIBadInputError,
    "Internal": AIInternalError,
}


def error_class_for(kind: ErrorKind) -> type[AIError]:
    return _ERROR_CLASSES[kind]


def make_error(
    kind: ErrorKind,
    message: str,
    *,
    cause: object = None,
    details: dict[str, Any] | None = None,
) -> AIError:
    """Build the `AIError` subclass matching `kind`."""
    return error_class_for(kind)(message, cause=cause, details=details)


_TIMEOUT_RE = re.compile(r"timed?\s?out", re.IGNORECASE)
_PERMISSION_RE = re.compile(r"permission|not allowed|forbidden|unauthori[sz]ed", re.IGNORECASE)
_RATE_RE = re.compile(
    r"rate[\s_-]?limit|too many requests|throttl|quota", re.IGNORECASE
)
_DOWNLOAD_RE = re.compile(r"download", re.IGNORECASE)
_NOT_SUPPORTED_RE = re.compile(
    r"not\s*support|unsupported|unavailable|not available", re.IGNORECASE
)


def _message_of(raw: object) -> str:
    if raw is None:
        return "Unknown error"
    if isinstance(raw, BaseException):
        try:
            msg = str(raw)
        except Exception:
            msg = repr(raw)
        return msg or type(raw).__name__
    message = getattr(raw, "message", None)
    if isinstance(message, str) and message:
        return message
    try:
        return str(raw)
    except Exception:
        return repr(raw)


def _status_of(raw: object) -> int | None:
    """Best-effort HTTP-ish status extraction from provider exceptions."""
    for attr in ("status_code", "status", "code"):
        val = getattr(raw, attr, None)
        if isinstance(val, int) and not isinstance(val, bool):
            return val
        if isinstance(val, str) and val.isdigit():
            return int(val)

    resp = getattr(raw, "response", None)
    if resp is not None:
        sc = getattr(resp, "status_code", None) or getattr(resp, "status", None)
        if isinstance(sc, int) and not isinstance(sc, bool):
            return sc
        if isinstance(sc, str) and sc.isdigit():
            return int(sc)
    return None


def _classify(raw: object, message: str) -> ErrorKind:
    name = type(raw).__name__ if isinstance(raw, BaseException) else ""
    declared_name = getattr(raw, "name", None)
    if isinstance(declared_name, str) and declared_name:
        name = declared_name
    status = _status_of(raw)

    if isinstance(raw, asyncio.CancelledError) or name == "AbortError":
        return "Cancelled"

    if (
        isinstance(raw, (asyncio.TimeoutError, TimeoutError, socket.timeout))
        or status in (408, 504)
        or _TIMEOUT_RE.search(message)
    ):
        return "Timeout"

    if (
        isinstance(raw, PermissionError)
        or name == "NotAllowedError"
        or status in (401, 403)
        or _PERMISSION_RE.search(message)
    ):
        return "PermissionDenied"

    if status == 429 or _RATE_RE.search(message):
        return "RateLimited"

    if _DOWNLOAD_RE.search(message):
        return "DownloadRequired"

    if (
        isinstance(raw, NotImplementedError)
        or name == "NotSupportedError"
        or _NOT_SUPPORTED_RE.search(message)
    ):
        return "NotSupported"

    return "Internal"


def normalize_error(raw: object, note: str | None = None) -> AIError:
    """
    Map any failure (exception, `None`, arbitrary value) to an `AIError`.

    Classification order, first match wins: cancellation marker, timeout,
    permission refusal, throttling, pending download, missing/unsupported
    capability, otherwise `Internal`. An `AIError` keeps its kind; without a
    `note` it is returned as-is. `note` is prefixed onto the message.
    """
    if isinstance(raw, AIError):
        if note is None:
            return raw
        return make_error(
            raw.kind,
            f"{note}: {raw.message}",
            cause=raw.cause if raw.cause is not None else raw,
            details=raw.details,
        )

    message = _message_of(raw)
    kind = _classify(raw, message)
    if note:
        message = f"{note}: {message}"

    details: dict[str, Any] = {}
    raw_details = getattr(raw, "details", None)
    if isinstance(raw_details, dict):
        details.update(raw_details)

    return make_error(kind, message, cause=raw, details=details)
