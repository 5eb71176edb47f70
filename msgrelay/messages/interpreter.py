"""Interpretation of single raw upstream events.

``interpret_event`` is a pure function: it takes one raw event string cut out
by the SSE reader and returns the normalized chunks it carries. Nothing here
raises on bad input; malformed events are simply ignored.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from .types import InterpretedEvent, InvocationFragment, NormalizedChunk, TerminalSignal, TextDelta
from .usage import parse_usage

logger = logging.getLogger("msgrelay")

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
FINISH_REASON_PREFIX = "internal:finish_reason:"


def interpret_event(raw: str) -> Optional[InterpretedEvent]:
    """Turn one raw event into an InterpretedEvent.

    Returns None for events that carry nothing: blank lines, comments,
    ``data: [DONE]``, undecodable or non-object JSON.
    """
    if not raw:
        return None

    if raw.startswith(FINISH_REASON_PREFIX):
        reason = raw[len(FINISH_REASON_PREFIX):].strip()
        if not reason:
            return None
        return InterpretedEvent(chunks=[TerminalSignal(reason)])

    if not raw.startswith(DATA_PREFIX):
        return None

    payload = raw[len(DATA_PREFIX):].strip()
    if not payload or payload == DONE_SENTINEL:
        return None

    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable upstream chunk: %s", payload[:100])
        return None

    if not isinstance(data, dict):
        return None
    return _interpret_chunk(data)


def _interpret_chunk(data: Mapping[str, Any]) -> InterpretedEvent:
    choices = data.get("choices")
    has_choices = isinstance(choices, list) and len(choices) > 0
    event = InterpretedEvent(
        message_id=_str_or_none(data.get("id")),
        model=_str_or_none(data.get("model")),
        usage=parse_usage(data.get("usage")),
        has_choices=has_choices,
    )
    if has_choices and isinstance(choices[0], Mapping):
        event.chunks = _choice_chunks(choices[0])
    return event


def _choice_chunks(choice: Mapping[str, Any]) -> list[NormalizedChunk]:
    chunks: list[NormalizedChunk] = []
    delta = choice.get("delta")
    if not isinstance(delta, Mapping):
        delta = {}

    tool_calls = delta.get("tool_calls")
    if isinstance(tool_calls, list):
        for call in tool_calls:
            fragment = _fragment_from_tool_call(call)
            if fragment is not None:
                chunks.append(fragment)

    content = delta.get("content")
    if isinstance(content, str) and content:
        chunks.append(TextDelta(content))

    finish_reason = choice.get("finish_reason")
    if isinstance(finish_reason, str) and finish_reason:
        chunks.append(TerminalSignal(finish_reason))

    return chunks


def _fragment_from_tool_call(call: Any) -> Optional[InvocationFragment]:
    if not isinstance(call, Mapping):
        return None
    function = call.get("function")
    if not isinstance(function, Mapping):
        function = {}
    arguments = function.get("arguments")
    if not isinstance(arguments, str):
        # Some upstreams send already-decoded argument objects.
        arguments = json.dumps(arguments, ensure_ascii=False) if arguments else ""
    index = call.get("index")
    return InvocationFragment(
        id=_str_or_none(call.get("id")),
        name=_str_or_none(function.get("name")),
        arguments=arguments,
        index=index if isinstance(index, int) and not isinstance(index, bool) else None,
    )


def _str_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None
