"""Tests for Messages SSE frame formatting."""

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from msgrelay.messages.formatter import ENCODE_ERROR_FRAME, AnthropicSSEFormatter
from msgrelay.messages.types import Usage


def _decode(frame: bytes) -> tuple[str, dict]:
    text = frame.decode("utf-8")
    assert text.endswith("\n\n")
    event_line, data_line = text.strip("\n").split("\n")
    assert event_line.startswith("event: ")
    assert data_line.startswith("data: ")
    return event_line[len("event: "):], json.loads(data_line[len("data: "):])


class TestAnthropicSSEFormatter:
    """Frame shapes for each event kind."""

    def setup_method(self):
        self.formatter = AnthropicSSEFormatter()

    def test_message_start(self):
        event, data = _decode(self.formatter.message_start("msg_1", "claude-4.0"))
        assert event == "message_start"
        message = data["message"]
        assert message["id"] == "msg_1"
        assert message["model"] == "claude-4.0"
        assert message["content"] == []
        assert message["stop_reason"] is None
        assert message["usage"] == {
            "input_tokens": 0,
            "cache_creation_input_tokens": 0,
            "cache_read_input_tokens": 0,
            "output_tokens": 0,
        }

    def test_text_block_start_has_empty_text(self):
        _, data = _decode(self.formatter.content_block_start(0, "text"))
        assert data == {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}

    def test_tool_use_block_start(self):
        _, data = _decode(
            self.formatter.content_block_start(2, "tool_use", {"id": "call_1", "name": "read", "input": {}})
        )
        assert data["index"] == 2
        assert data["content_block"] == {"type": "tool_use", "id": "call_1", "name": "read", "input": {}}

    def test_text_delta_keeps_unicode(self):
        frame = self.formatter.content_block_delta(0, "text_delta", "héllo 世界")
        assert "héllo 世界".encode("utf-8") in frame
        _, data = _decode(frame)
        assert data["delta"] == {"type": "text_delta", "text": "héllo 世界"}

    def test_input_json_delta(self):
        _, data = _decode(self.formatter.content_block_delta(1, "input_json_delta", '{"a":'))
        assert data["delta"] == {"type": "input_json_delta", "partial_json": '{"a":'}

    def test_message_delta_with_usage(self):
        usage = Usage(input_tokens=5, output_tokens=9, cache_read_input_tokens=3)
        _, data = _decode(self.formatter.message_delta("end_turn", usage))
        assert data["delta"] == {"stop_reason": "end_turn", "stop_sequence": None}
        assert data["usage"] == {"output_tokens": 9, "cache_read_input_tokens": 3}

    def test_message_delta_without_usage(self):
        _, data = _decode(self.formatter.message_delta("tool_use"))
        assert "usage" not in data

    def test_stop_frames(self):
        assert _decode(self.formatter.content_block_stop(3)) == (
            "content_block_stop",
            {"type": "content_block_stop", "index": 3},
        )
        assert _decode(self.formatter.message_stop()) == ("message_stop", {"type": "message_stop"})

    def test_unserializable_payload_yields_error_frame(self):
        assert self.formatter.format_event("message_start", {"bad": object()}) == ENCODE_ERROR_FRAME
