from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Utility functions for capability calls: output cleanup and backoff strategies.
"""
import random
import re
from typing import Callable

_FENCE_OPEN_RE = re.compile(r"^\s*(?:```|~~~)[A-Za-z0-9_+-]*[ \t]*\r?\n?")
_FENCE_CLOSE_RE = re.compile(r"\r?\n?[ \t]*(?:```|~~~)\s*$")


def clamp_str(s: str, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + "…"


def strip_code_fence(text: str) -> str:
    """
    Remove a leading fence marker (``` or ~~~ with an optional language tag,
    e.g. ```json) and a trailing fence marker. Text without fences is only
    whitespace-trimmed.
    """
    t = (text or "").strip()
    if not t:
        return t
    t = _FENCE_OPEN_RE.sub("", t, count=1)
    t = _FENCE_CLOSE_RE.sub("", t, count=1)
    return t.strip()


def backoff_delay(
    attempt: int,
    base_s: float,
    max_s: float,
    jitter: bool = True,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Capped exponential backoff with multiplicative jitter.
    attempt=0 => base, attempt=1 => 2*base, etc., never above `max_s` before
    jitter. With jitter the delay is scaled by a factor in [0.5, 1.25].
    """
    expo = min(max_s, base_s * (2**attempt))
    if not jitter:
        return expo
    return expo * (0.5 + rand() * 0.75)
