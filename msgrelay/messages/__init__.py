"""Anthropic Messages <-> OpenAI Chat Completions translation pipeline.

Requests are translated to the upstream chat-completions format; the
upstream SSE response is assembled into one result and rendered back as
either a Messages SSE stream or a single message document.
"""

from .aggregator import ToolCallAggregator
from .assembler import ResponseAssembler, parse_tool_arguments
from .formatter import AnthropicSSEFormatter
from .interpreter import interpret_event
from .sequencer import MessageStreamSequencer, SequenceValidator
from .stream_adapter import (
    STREAM_HEADERS,
    split_utf8_safe_chunks,
    stream_unified_result,
    unified_result_to_message,
)
from .translator import convert_stop_reason, messages_to_chat_completions
from .types import TextBlock, ToolUseBlock, UnifiedResult, Usage
from .usage import parse_usage

__all__ = [
    "AnthropicSSEFormatter",
    "MessageStreamSequencer",
    "ResponseAssembler",
    "STREAM_HEADERS",
    "SequenceValidator",
    "TextBlock",
    "ToolCallAggregator",
    "ToolUseBlock",
    "UnifiedResult",
    "Usage",
    "convert_stop_reason",
    "interpret_event",
    "messages_to_chat_completions",
    "parse_tool_arguments",
    "parse_usage",
    "split_utf8_safe_chunks",
    "stream_unified_result",
    "unified_result_to_message",
]
