from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Folds incremental provider output into one final result.
"""

import asyncio
import logging
from typing import Any, AsyncIterable, Awaitable, Callable

from .errors import AICancelledError, AIError, AINotSupportedError, normalize_error
from .timeouts import race
from .types import InvocationOptions, ProviderResponse, StreamChunk, StreamResult

logger = logging.getLogger(__name__)


def coerce_response(raw: Any) -> ProviderResponse:
    """Accept a bare string, a mapping or a `ProviderResponse`."""
    if isinstance(raw, ProviderResponse):
        return raw
    if raw is None:
        return ProviderResponse()
    if isinstance(raw, str):
        return ProviderResponse(text=raw)
    if isinstance(raw, dict):
        candidates = raw.get("candidates") or []
        return ProviderResponse(
            text=raw.get("text") or "",
            data=raw.get("data"),
            candidates=[c for c in candidates if isinstance(c, str)],
            usage=raw.get("usage"),
            safety=raw.get("safety"),
            model_id=raw.get("model_id"),
        )
    return ProviderResponse(text=str(raw))


def coerce_chunk(raw: Any) -> StreamChunk:
    if isinstance(raw, StreamChunk):
        return raw
    if isinstance(raw, str):
        return StreamChunk(delta_text=raw)
    if isinstance(raw, dict):
        delta = raw.get("delta_text")
        return StreamChunk(
            delta_text=delta if isinstance(delta, str) else "",
            usage=raw.get("usage"),
            safety=raw.get("safety"),
            model_id=raw.get("model_id"),
        )
    raise AINotSupportedError(f"Unsupported stream chunk type: {type(raw).__name__}")


async def collect_stream(
    source: AsyncIterable[Any] | None,
    options: InvocationOptions | None = None,
    *,
    fallback: Callable[[], Awaitable[Any]] | None = None,
    label: str = "stream",
) -> StreamResult:
    """
    Consume `source` fully and return the concatenated text.

    Deltas are joined in arrival order; the latest usage/safety/model id seen
    wins. Without a source (provider can't stream) the single `fallback` call
    is used instead. The consumption loop runs under the options' timeout and
    signal; on cancellation the partial text is discarded unless
    `options.keep_partial` is set.
    """
    options = options or InvocationOptions()

    if source is None:
        if fallback is None:
            raise AINotSupportedError(f"{label}: provider does not support streaming")
        try:
            raw = await race(fallback(), options.timeout_s, options.signal, label)
        except AIError:
            raise
        except Exception as e:
            raise normalize_error(e, label) from e
        response = coerce_response(raw)
        return StreamResult(
            text=response.best_text,
            usage=response.usage,
            safety=response.safety,
            model_id=response.model_id,
        )

    chunks: list[str] = []
    latest: dict[str, Any] = {"usage": None, "safety": None, "model_id": None}

    async def _consume() -> None:
        try:
            async for raw in source:
                chunk = coerce_chunk(raw)
                if chunk.delta_text:
                    chunks.append(chunk.delta_text)
                if chunk.usage is not None:
                    latest["usage"] = chunk.usage
                if chunk.safety is not None:
                    latest["safety"] = chunk.safety
                if chunk.model_id is not None:
                    latest["model_id"] = chunk.model_id
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

    try:
        await race(_consume(), options.timeout_s, options.signal, label)
    except AICancelledError:
        if not options.keep_partial:
            raise
        logger.debug("%s cancelled; returning %d partial chunks", label, len(chunks))
        return StreamResult(
            text="".join(chunks),
            usage=latest["usage"],
            safety=latest["safety"],
            model_id=latest["model_id"],
            partial=True,
        )
    except AIError:
        raise
    except asyncio.CancelledError:
        raise
    except Exception as e:
        raise normalize_error(e, label) from e

    return StreamResult(
        text="".join(chunks),
        usage=latest["usage"],
        safety=latest["safety"],
        model_id=latest["model_id"],
    )
