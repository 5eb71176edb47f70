"""Tests for upstream event interpretation."""

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from msgrelay.messages.interpreter import interpret_event
from msgrelay.messages.types import InvocationFragment, TerminalSignal, TextDelta


def _event(payload: dict) -> str:
    return "data: " + json.dumps(payload)


class TestIgnoredEvents:
    """Events that carry nothing."""

    def test_empty(self):
        assert interpret_event("") is None

    def test_done_sentinel(self):
        assert interpret_event("data: [DONE]") is None

    def test_comment_line(self):
        assert interpret_event(": keep-alive") is None

    def test_malformed_json(self):
        assert interpret_event("data: {invalid json") is None

    def test_non_object_json(self):
        assert interpret_event("data: [1, 2, 3]") is None


class TestChunks:
    """Chunk shapes from OpenAI-style streams."""

    def test_text_delta(self):
        event = interpret_event(_event({
            "id": "chatcmpl-1",
            "model": "claude-4.0",
            "choices": [{"index": 0, "delta": {"content": "Hello"}}],
        }))
        assert event is not None
        assert event.message_id == "chatcmpl-1"
        assert event.model == "claude-4.0"
        assert event.has_choices is True
        assert event.chunks == [TextDelta("Hello")]
        assert event.terminal is None

    def test_empty_content_yields_no_text(self):
        event = interpret_event(_event({"choices": [{"delta": {"role": "assistant", "content": ""}}]}))
        assert event.chunks == []

    def test_finish_reason(self):
        event = interpret_event(_event({"choices": [{"delta": {}, "finish_reason": "stop"}]}))
        assert event.chunks == [TerminalSignal("stop")]
        assert event.terminal == TerminalSignal("stop")

    def test_tool_call_fragments_in_order(self):
        event = interpret_event(_event({
            "choices": [{
                "delta": {
                    "tool_calls": [
                        {"index": 0, "id": "call_a", "function": {"name": "read", "arguments": ""}},
                        {"index": 1, "id": "call_b", "function": {"name": "write", "arguments": "{\"p\""}},
                    ]
                },
                "finish_reason": "tool_calls",
            }]
        }))
        assert event.chunks == [
            InvocationFragment(id="call_a", name="read", arguments="", index=0),
            InvocationFragment(id="call_b", name="write", arguments="{\"p\"", index=1),
            TerminalSignal("tool_calls"),
        ]

    def test_continuation_fragment_without_id(self):
        event = interpret_event(_event({
            "choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": ":1}"}}]}}]
        }))
        assert event.chunks == [InvocationFragment(id=None, name=None, arguments=":1}", index=0)]

    def test_object_arguments_are_serialized(self):
        event = interpret_event(_event({
            "choices": [{"delta": {"tool_calls": [{"id": "c", "function": {"name": "f", "arguments": {"a": 1}}}]}}]
        }))
        assert event.chunks[0].arguments == '{"a": 1}'

    def test_usage_only_chunk(self):
        event = interpret_event(_event({
            "id": "chatcmpl-1",
            "choices": [],
            "usage": {"prompt_tokens": 12, "completion_tokens": 7},
        }))
        assert event.has_choices is False
        assert event.chunks == []
        assert event.usage.input_tokens == 12
        assert event.usage.output_tokens == 7
        assert event.usage.total_tokens == 19


class TestFinishReasonSentinel:
    """Internal finish-reason events."""

    def test_sentinel(self):
        event = interpret_event("internal:finish_reason:tool_calls")
        assert event.chunks == [TerminalSignal("tool_calls")]
        assert event.is_terminal_only is True

    def test_empty_sentinel(self):
        assert interpret_event("internal:finish_reason:") is None
