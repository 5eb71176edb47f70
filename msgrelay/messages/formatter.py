"""Anthropic Messages SSE frame formatting.

Every frame has the shape::

    event: <kind>
    data: <json>

followed by a blank line. The formatter is stateless; ordering is the
sequencer's job.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from .types import Usage

logger = logging.getLogger("msgrelay")

MESSAGE_START = "message_start"
CONTENT_BLOCK_START = "content_block_start"
CONTENT_BLOCK_DELTA = "content_block_delta"
CONTENT_BLOCK_STOP = "content_block_stop"
MESSAGE_DELTA = "message_delta"
MESSAGE_STOP = "message_stop"

TEXT_DELTA = "text_delta"
INPUT_JSON_DELTA = "input_json_delta"

ENCODE_ERROR_FRAME = (
    b'event: error\ndata: {"type":"error","message":"json_marshal_failed"}\n\n'
)


class AnthropicSSEFormatter:
    """Builds encoded SSE frames for each Messages stream event kind."""

    def format_event(self, event_type: str, data: Any) -> bytes:
        """Encode one frame; an unserializable payload yields an error frame."""
        try:
            payload = json.dumps(data, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.warning("Failed to encode %s frame: %s", event_type, exc)
            return ENCODE_ERROR_FRAME
        return f"event: {event_type}\ndata: {payload}\n\n".encode("utf-8")

    def message_start(self, message_id: str, model: str) -> bytes:
        return self.format_event(
            MESSAGE_START,
            {
                "type": MESSAGE_START,
                "message": {
                    "id": message_id,
                    "type": "message",
                    "role": "assistant",
                    "model": model,
                    "content": [],
                    "stop_reason": None,
                    "stop_sequence": None,
                    "usage": {
                        "input_tokens": 0,
                        "cache_creation_input_tokens": 0,
                        "cache_read_input_tokens": 0,
                        "output_tokens": 0,
                    },
                },
            },
        )

    def content_block_start(
        self,
        index: int,
        block_type: str,
        extra: Optional[dict[str, Any]] = None,
    ) -> bytes:
        block: dict[str, Any] = {"type": block_type}
        if block_type == "text":
            block["text"] = ""
        if extra:
            block.update(extra)
        return self.format_event(
            CONTENT_BLOCK_START,
            {"type": CONTENT_BLOCK_START, "index": index, "content_block": block},
        )

    def content_block_delta(self, index: int, delta_type: str, content: str) -> bytes:
        delta: dict[str, Any] = {"type": delta_type}
        if delta_type == TEXT_DELTA:
            delta["text"] = content
        elif delta_type == INPUT_JSON_DELTA:
            delta["partial_json"] = content
        return self.format_event(
            CONTENT_BLOCK_DELTA,
            {"type": CONTENT_BLOCK_DELTA, "index": index, "delta": delta},
        )

    def content_block_stop(self, index: int) -> bytes:
        return self.format_event(CONTENT_BLOCK_STOP, {"type": CONTENT_BLOCK_STOP, "index": index})

    def message_delta(self, stop_reason: str, usage: Optional[Usage] = None) -> bytes:
        event: dict[str, Any] = {
            "type": MESSAGE_DELTA,
            "delta": {"stop_reason": stop_reason, "stop_sequence": None},
        }
        if usage is not None:
            usage_block: dict[str, int] = {"output_tokens": usage.output_tokens}
            if usage.cache_creation_input_tokens > 0:
                usage_block["cache_creation_input_tokens"] = usage.cache_creation_input_tokens
            if usage.cache_read_input_tokens > 0:
                usage_block["cache_read_input_tokens"] = usage.cache_read_input_tokens
            event["usage"] = usage_block
        return self.format_event(MESSAGE_DELTA, event)

    def message_stop(self) -> bytes:
        return self.format_event(MESSAGE_STOP, {"type": MESSAGE_STOP})
