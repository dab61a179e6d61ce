from __future__ import annotations

import asyncio

import pytest

from ondevice_ai.cancellation import CancellationSignal
from ondevice_ai.errors import (
    AICancelledError,
    AIInternalError,
    AINotSupportedError,
    AITimeoutError,
)
from ondevice_ai.streaming import coerce_response, collect_stream
from ondevice_ai.types import InvocationOptions, ProviderResponse, StreamChunk, Usage


def run_async(coro):
    return asyncio.run(coro)


class ChunkSource:
    """Async iterator over scripted chunks that remembers whether it was closed."""

    def __init__(self, chunks, *, delay_s: float = 0.0, error: Exception | None = None) -> None:
        self._chunks = list(chunks)
        self._delay_s = delay_s
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._delay_s:
            await asyncio.sleep(self._delay_s)
        if not self._chunks:
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        return self._chunks.pop(0)

    async def aclose(self) -> None:
        self.closed = True


def test_chunks_are_concatenated_in_order():
    source = ChunkSource(["Hel", "lo, ", "world"])

    result = run_async(collect_stream(source))

    assert result.text == "Hello, world"
    assert result.partial is False
    assert source.closed is True


def test_latest_metadata_wins():
    source = ChunkSource(
        [
            StreamChunk(delta_text="a", usage=Usage(output_tokens=1), model_id="m-1"),
            {"delta_text": "b", "usage": Usage(output_tokens=2)},
            StreamChunk(delta_text="", model_id="m-2"),
        ]
    )

    result = run_async(collect_stream(source))

    assert result.text == "ab"
    assert result.usage == Usage(output_tokens=2)
    assert result.model_id == "m-2"


def test_missing_stream_falls_back_to_single_call():
    async def _fallback():
        return ProviderResponse(text="", candidates=["whole answer"])

    result = run_async(collect_stream(None, fallback=_fallback))

    assert result.text == "whole answer"


def test_missing_stream_without_fallback_is_not_supported():
    with pytest.raises(AINotSupportedError):
        run_async(collect_stream(None))


def test_stream_timeout_is_reported():
    source = ChunkSource(["a", "b"], delay_s=1.0)

    with pytest.raises(AITimeoutError):
        run_async(collect_stream(source, InvocationOptions(timeout_s=0.02)))

    assert source.closed is True


def test_cancellation_discards_partial_text_by_default():
    async def _scenario():
        signal = CancellationSignal()
        source = ChunkSource(["a", "b", "c", "d"], delay_s=0.02)
        asyncio.get_running_loop().call_later(0.05, signal.abort)
        return await collect_stream(source, InvocationOptions(signal=signal, stream=True))

    with pytest.raises(AICancelledError):
        run_async(_scenario())


def test_cancellation_keeps_partial_text_when_requested():
    async def _scenario():
        signal = CancellationSignal()
        source = ChunkSource(["a", "b", "c", "d", "e", "f"], delay_s=0.02)
        asyncio.get_running_loop().call_later(0.05, signal.abort)
        options = InvocationOptions(signal=signal, stream=True, keep_partial=True)
        return await collect_stream(source, options)

    result = run_async(_scenario())

    assert result.partial is True
    assert 0 < len(result.text) < 6
    assert "abcdef".startswith(result.text)


def test_mid_stream_failure_is_normalized():
    source = ChunkSource(["a"], error=RuntimeError("engine crashed"))

    with pytest.raises(AIInternalError, match="stream: engine crashed"):
        run_async(collect_stream(source))


def test_unknown_chunk_type_is_not_supported():
    with pytest.raises(AINotSupportedError):
        run_async(collect_stream(ChunkSource([object()])))


def test_coerce_response_accepts_common_shapes():
    assert coerce_response("hi").text == "hi"
    assert coerce_response(None).best_text == ""
    assert coerce_response({"data": {"a": 1}}).data == {"a": 1}
    assert coerce_response({"candidates": ["x", 3]}).candidates == ["x"]
