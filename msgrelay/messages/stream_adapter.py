"""Output adapters rendering a ``UnifiedResult`` for the client.

The upstream stream has already been fully assembled by the time these run,
so the streaming adapter replays the result as Messages SSE frames:

    event: message_start
    data: {"type":"message_start","message":{...}}

    event: content_block_start
    data: {"type":"content_block_start","index":0,"content_block":{"type":"text","text":""}}

    event: content_block_delta
    data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hel"}}

    event: content_block_stop
    data: {"type":"content_block_stop","index":0}

    event: message_delta
    data: {"type":"message_delta","delta":{"stop_reason":"end_turn"},"usage":{"output_tokens":10}}

    event: message_stop
    data: {"type":"message_stop"}

Tool calls are replayed the same way with ``tool_use`` blocks and
``input_json_delta`` pieces of the serialized arguments. Text and argument
payloads are cut into UTF-8-safe pieces of at most ``chunk_bytes`` bytes.

The non-streaming adapter returns the same result as one message document.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

from .sequencer import MessageStreamSequencer
from .types import TextBlock, ToolUseBlock, UnifiedResult

logger = logging.getLogger("msgrelay")

DEFAULT_CHUNK_BYTES = 64

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _is_continuation(byte: int) -> bool:
    return byte & 0xC0 == 0x80


def _sequence_length(lead: int) -> int:
    if lead < 0x80:
        return 1
    if lead >= 0xF0:
        return 4
    if lead >= 0xE0:
        return 3
    if lead >= 0xC0:
        return 2
    return 1


def split_utf8_safe_chunks(text: str, max_bytes: int = DEFAULT_CHUNK_BYTES) -> list[str]:
    """Split ``text`` into pieces of at most ``max_bytes`` UTF-8 bytes.

    A cut never lands inside a code point: the end backs off to the previous
    code point start. When that backs all the way to the chunk start (a code
    point wider than ``max_bytes``), the chunk holds exactly one code point.
    Undecodable bytes (lone surrogates) come out as U+FFFD.

    Raises:
        ValueError: If ``max_bytes`` is not positive.
    """
    if max_bytes <= 0:
        raise ValueError("max_bytes must be positive")
    if not text:
        return []

    data = text.encode("utf-8", errors="surrogatepass")
    total = len(data)
    chunks: list[str] = []
    start = 0
    while start < total:
        end = min(start + max_bytes, total)
        while start < end < total and _is_continuation(data[end]):
            end -= 1
        if end <= start:
            end = min(start + _sequence_length(data[start]), total)
        chunks.append(data[start:end].decode("utf-8", errors="replace"))
        start = end
    return chunks


class BufferedFrameSink:
    """Collects frames between yields of the streaming generator."""

    def __init__(self) -> None:
        self._frames: list[bytes] = []
        self.bytes_written = 0

    def write(self, frame: bytes) -> None:
        self._frames.append(frame)
        self.bytes_written += len(frame)

    def drain(self) -> list[bytes]:
        frames, self._frames = self._frames, []
        return frames


def _serialize_input(block: ToolUseBlock) -> str:
    try:
        return json.dumps(block.input, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        logger.warning(f"Failed to serialize input for tool {block.name}: {exc}")
        return "{}"


async def stream_unified_result(
    result: UnifiedResult,
    *,
    chunk_bytes: int = DEFAULT_CHUNK_BYTES,
    request_id: str = "-",
) -> AsyncIterator[bytes]:
    """Yield the Messages SSE frames for ``result``.

    The terminal ``message_delta``/``message_stop`` pair is sent exactly
    once, also when a step fails part way through.
    """
    sink = BufferedFrameSink()
    sequencer = MessageStreamSequencer(sink, request_id=request_id)
    try:
        sequencer.ensure_message_start(result.message_id, result.model)
        for frame in sink.drain():
            yield frame

        if result.is_tool_call:
            for block in result.tool_blocks:
                sequencer.start_tool_use_block(block.id, block.name)
                for piece in split_utf8_safe_chunks(_serialize_input(block), chunk_bytes):
                    sequencer.emit_input_json_delta(piece)
                sequencer.finish_content_block()
                for frame in sink.drain():
                    yield frame
        else:
            for block in result.text_blocks:
                if not block.text.strip():
                    continue
                sequencer.ensure_content_block_start("text")
                for piece in split_utf8_safe_chunks(block.text, chunk_bytes):
                    sequencer.emit_text_delta(piece)
                sequencer.finish_content_block()
                for frame in sink.drain():
                    yield frame

        sequencer.finish_stream(result.stop_reason, result.usage)
        for frame in sink.drain():
            yield frame
    except Exception as exc:
        # Headers are already out; close the stream instead of failing it.
        logger.error(f"[{request_id}] Stream rendering failed: {exc.__class__.__name__}: {exc}")
        if not sequencer.is_finished():
            sequencer.finish_stream(result.stop_reason, result.usage)
        for frame in sink.drain():
            yield frame
    finally:
        logger.debug(
            f"[{request_id}] Stream rendered: events={sequencer.event_count}, "
            f"bytes={sink.bytes_written}, sequence_errors={sequencer.error_count}"
        )


def unified_result_to_message(result: UnifiedResult) -> dict[str, Any]:
    """Render ``result`` as one Messages API response document."""
    content: list[dict[str, Any]] = []
    for block in result.content:
        if isinstance(block, (TextBlock, ToolUseBlock)):
            content.append(block.to_dict())

    if result.usage is not None:
        usage = result.usage.to_message_usage()
    else:
        usage = {"input_tokens": 0, "output_tokens": 0}

    return {
        "id": result.message_id,
        "type": "message",
        "role": "assistant",
        "model": result.model,
        "content": content,
        "stop_reason": result.stop_reason,
        "stop_sequence": None,
        "usage": usage,
    }
