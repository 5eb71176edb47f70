"""Tests for the output adapters and UTF-8-safe chunking."""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from msgrelay.messages import stream_adapter
from msgrelay.messages.stream_adapter import (
    split_utf8_safe_chunks,
    stream_unified_result,
    unified_result_to_message,
)
from msgrelay.messages.types import TextBlock, ToolUseBlock, UnifiedResult, Usage
from msgrelay.testing import (
    assert_anthropic_sse_valid,
    collect_text,
    collect_tool_inputs,
    parse_sse_frames,
)


async def _render(result: UnifiedResult, chunk_bytes: int = 64) -> list[tuple[str, dict]]:
    frames = [frame async for frame in stream_unified_result(result, chunk_bytes=chunk_bytes)]
    return parse_sse_frames(b"".join(frames))


class TestSplitUtf8SafeChunks:
    """UTF-8-safe chunking."""

    def test_empty(self):
        assert split_utf8_safe_chunks("") == []

    def test_ascii_cut_at_budget(self):
        assert split_utf8_safe_chunks("abcdefgh", 3) == ["abc", "def", "gh"]

    def test_never_splits_code_points(self):
        text = "héllo wörld 世界 🎉 ok" * 5
        for budget in range(1, 12):
            chunks = split_utf8_safe_chunks(text, budget)
            assert "".join(chunks) == text
            for chunk in chunks:
                assert "�" not in chunk
                encoded = chunk.encode("utf-8")
                assert len(encoded) <= budget or len(chunk) == 1

    def test_wide_code_point_advances_one_rune(self):
        assert split_utf8_safe_chunks("🎉🎉", 2) == ["🎉", "🎉"]

    def test_lone_surrogate_replaced(self):
        joined = "".join(split_utf8_safe_chunks("a\ud800b", 64))
        assert joined.startswith("a") and joined.endswith("b")
        assert "\ud800" not in joined
        assert "\ufffd" in joined

    def test_rejects_non_positive_budget(self):
        with pytest.raises(ValueError):
            split_utf8_safe_chunks("abc", 0)


class TestStreamUnifiedResult:
    """Streaming adapter."""

    @pytest.mark.asyncio
    async def test_text_result(self):
        text = "Hello, this is a long answer with ünïcödé characters that spans several chunks."
        result = UnifiedResult(
            message_id="msg_1",
            model="claude-4.0",
            content=(TextBlock(text),),
            usage=Usage(input_tokens=3, output_tokens=7),
        )
        frames = await _render(result, chunk_bytes=16)
        events = [data for _, data in frames]

        assert [name for name, _ in frames] == [data["type"] for data in events]
        assert_anthropic_sse_valid(events)
        assert events[0]["message"]["id"] == "msg_1"
        assert collect_text(events) == text
        deltas = [e for e in events if e["type"] == "content_block_delta"]
        assert len(deltas) > 1
        assert events[-2]["delta"]["stop_reason"] == "end_turn"
        assert events[-2]["usage"] == {"output_tokens": 7}

    @pytest.mark.asyncio
    async def test_blank_text_blocks_skipped(self):
        result = UnifiedResult("msg_1", "m", (TextBlock("   "), TextBlock("real")))
        events = [data for _, data in await _render(result)]
        assert_anthropic_sse_valid(events)
        starts = [e for e in events if e["type"] == "content_block_start"]
        assert len(starts) == 1
        assert starts[0]["index"] == 0

    @pytest.mark.asyncio
    async def test_tool_result(self):
        result = UnifiedResult(
            message_id="msg_2",
            model="claude-4.0",
            content=(
                ToolUseBlock("call_1", "read_file", {"path": "/tmp/ä.txt"}),
                ToolUseBlock("call_2", "list_dir", {}),
            ),
            stop_reason="tool_use",
            is_tool_call=True,
        )
        events = [data for _, data in await _render(result, chunk_bytes=8)]

        assert_anthropic_sse_valid(events)
        starts = [e for e in events if e["type"] == "content_block_start"]
        assert [s["content_block"]["id"] for s in starts] == ["call_1", "call_2"]
        assert starts[0]["content_block"]["input"] == {}
        inputs = collect_tool_inputs(events)
        assert json.loads(inputs[0]) == {"path": "/tmp/ä.txt"}
        assert json.loads(inputs[1]) == {}
        assert events[-2]["delta"]["stop_reason"] == "tool_use"
        assert "usage" not in events[-2]

    @pytest.mark.asyncio
    async def test_failure_mid_stream_still_terminates(self, monkeypatch):
        def explode(text, max_bytes=64):
            raise RuntimeError("boom")

        monkeypatch.setattr(stream_adapter, "split_utf8_safe_chunks", explode)
        result = UnifiedResult("msg_3", "m", (TextBlock("hello"),))
        events = [data for _, data in await _render(result)]

        types = [e["type"] for e in events]
        assert types == [
            "message_start",
            "content_block_start",
            "content_block_stop",
            "message_delta",
            "message_stop",
        ]


class TestUnifiedResultToMessage:
    """Non-streaming adapter."""

    def test_text_message(self):
        result = UnifiedResult(
            "msg_1",
            "claude-4.0",
            (TextBlock("Hi"),),
            usage=Usage(input_tokens=4, output_tokens=2, cache_creation_input_tokens=1),
        )
        assert unified_result_to_message(result) == {
            "id": "msg_1",
            "type": "message",
            "role": "assistant",
            "model": "claude-4.0",
            "content": [{"type": "text", "text": "Hi"}],
            "stop_reason": "end_turn",
            "stop_sequence": None,
            "usage": {"input_tokens": 4, "output_tokens": 2, "cache_creation_input_tokens": 1},
        }

    def test_tool_message_without_usage(self):
        result = UnifiedResult(
            "msg_2",
            "m",
            (ToolUseBlock("call_1", "f", {"a": 1}),),
            stop_reason="tool_use",
            is_tool_call=True,
        )
        message = unified_result_to_message(result)
        assert message["content"] == [{"type": "tool_use", "id": "call_1", "name": "f", "input": {"a": 1}}]
        assert message["usage"] == {"input_tokens": 0, "output_tokens": 0}
