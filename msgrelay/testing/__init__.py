"""Testing utilities for in-process relay simulations."""

from .assertions import (
    assert_anthropic_message_valid,
    assert_anthropic_sse_valid,
    collect_text,
    collect_tool_inputs,
    parse_sse_frames,
)
from .fake_upstream import FakeUpstream, UpstreamResponse
from .proxy_harness import ProxyHarness
from .response_builders import (
    build_anthropic_request,
    build_openai_stream_chunks,
    build_tool_call,
    encode_sse,
)

__all__ = [
    # Core simulation classes
    "FakeUpstream",
    "UpstreamResponse",
    "ProxyHarness",
    # Builders
    "build_anthropic_request",
    "build_openai_stream_chunks",
    "build_tool_call",
    "encode_sse",
    # Assertions
    "assert_anthropic_message_valid",
    "assert_anthropic_sse_valid",
    "collect_text",
    "collect_tool_inputs",
    "parse_sse_frames",
]
