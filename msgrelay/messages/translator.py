"""Anthropic Messages request -> OpenAI Chat Completions request translation.

Key mappings:
- Anthropic system (top-level and in-list system messages) -> one system message
- tool_result blocks -> standalone ``role: "tool"`` messages
- tool_use blocks -> assistant ``tool_calls`` (duplicate ids dropped)
- text / image / document blocks -> OpenAI content parts
- tools -> functions with a normalized JSON schema
- tool_choice, stop_sequences, metadata.user_id -> OpenAI equivalents

The upstream only supports streaming, so the translated request always has
``stream: true``; the caller remembers what the client asked for.

Reference:
- Anthropic Messages API: https://docs.anthropic.com/en/api/messages
- OpenAI Chat Completions: https://platform.openai.com/docs/api-reference/chat
"""

from __future__ import annotations

import copy
import json
import logging
import time
from typing import Any, Mapping, Optional

from ..core.exceptions import InvalidRequestError

logger = logging.getLogger("msgrelay")

TOOL_RESULT_PLACEHOLDER = "Tool call completed"
TOOL_USE_PLACEHOLDER = "Using tools"
RENDERER_EMPTY_VALUE = "(No content)"
SCHEMA_KEYS_TO_DROP = ("$schema", "strict", "additionalProperties")


def _is_blank(text: Any) -> bool:
    return not isinstance(text, str) or not text.strip()


def _blocks(content: Any) -> list[Mapping[str, Any]]:
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, Mapping)]


def _is_tool_result_block(block: Mapping[str, Any]) -> bool:
    # "toolResult" is a non-standard shape some CLI clients send.
    return block.get("type") == "tool_result" or "toolResult" in block


def has_tool_result(content: Any) -> bool:
    return any(_is_tool_result_block(block) for block in _blocks(content))


def has_tool_use(content: Any) -> bool:
    return any(block.get("type") == "tool_use" for block in _blocks(content))


def is_content_empty(content: Any) -> bool:
    """True when a message carries nothing worth sending upstream."""
    if content is None:
        return True
    if isinstance(content, str):
        return not content.strip()
    if isinstance(content, list):
        for block in _blocks(content):
            block_type = block.get("type")
            if block_type == "text" and not _is_blank(block.get("text")):
                return False
            if block_type in ("image", "image_url", "document", "tool_use"):
                return False
        return True
    return False


def _convert_anthropic_image_to_openai(block: Mapping[str, Any]) -> dict[str, Any]:
    """Anthropic image block (base64 or url source) -> OpenAI image_url part."""
    source = block.get("source") or {}
    source_type = source.get("type", "")
    if source_type == "base64":
        url = f"data:{source.get('media_type', 'image/png')};base64,{source.get('data', '')}"
    elif source_type == "url":
        url = source.get("url", "")
    else:
        url = source.get("url", source.get("data", ""))
    return {"type": "image_url", "image_url": {"url": url}}


def _convert_anthropic_document_to_openai(block: Mapping[str, Any]) -> dict[str, Any]:
    """OpenAI has no document part: image documents become images, the rest a text note."""
    source = block.get("source") or {}
    media_type = source.get("media_type", "application/pdf")
    if source.get("type") == "base64" and media_type.startswith("image/"):
        return _convert_anthropic_image_to_openai({"type": "image", "source": source})
    return {"type": "text", "text": f"[Document: {block.get('name', 'document')} ({media_type})]"}


def _convert_content_parts(content: Any) -> list[dict[str, Any]]:
    """Convert plain (non-tool) content to OpenAI parts, dropping blank text."""
    if isinstance(content, str):
        return [] if _is_blank(content) else [{"type": "text", "text": content}]

    parts: list[dict[str, Any]] = []
    for block in _blocks(content):
        block_type = block.get("type", "")
        if block_type == "text":
            if not _is_blank(block.get("text")):
                parts.append({"type": "text", "text": block["text"]})
        elif block_type == "image":
            parts.append(_convert_anthropic_image_to_openai(block))
        elif block_type == "image_url":
            parts.append({"type": "image_url", "image_url": dict(block.get("image_url") or {})})
        elif block_type == "document":
            parts.append(_convert_anthropic_document_to_openai(block))
        elif block_type in ("thinking", "redacted_thinking"):
            logger.debug("Dropping %s block during translation", block_type)
        elif block_type in ("tool_use", "tool_result"):
            continue
        elif not _is_blank(block.get("text")):
            parts.append({"type": "text", "text": block["text"]})
        else:
            logger.warning(f"Unknown content block type: {block_type}")
    return parts


def _simplify(parts: list[dict[str, Any]]) -> str | list[dict[str, Any]] | None:
    if not parts:
        return None
    if all(part.get("type") == "text" for part in parts):
        return "\n".join(part["text"] for part in parts)
    return parts


def _text_of(content: Any, *, joiner: str = "") -> str:
    """Concatenate the text inside a string or a list of blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        pieces = []
        for block in _blocks(content):
            if block.get("type") == "text" and isinstance(block.get("text"), str):
                pieces.append(block["text"])
            elif isinstance(block.get("content"), str):
                pieces.append(block["content"])
        return joiner.join(pieces)
    if content is None:
        return ""
    return str(content)


def _parse_is_error(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def _generated_tool_id() -> str:
    tool_id = f"unknown_tool_{time.time_ns()}"
    logger.debug("Missing tool_use_id, generated %s", tool_id)
    return tool_id


def _tool_result_message(block: Mapping[str, Any]) -> dict[str, Any]:
    """Turn one tool_result (or non-standard toolResult) block into a tool message."""
    if block.get("type") == "tool_result":
        tool_call_id = block.get("tool_use_id")
        text = _text_of(block.get("content"))
        if _parse_is_error(block.get("is_error")) and text.strip():
            text = f"[Error] {text}"
    else:
        data = block.get("toolResult")
        data = data if isinstance(data, Mapping) else {}
        tool_call_id = data.get("tool_call_id")
        text = data.get("content") if isinstance(data.get("content"), str) else ""
        renderer = data.get("renderer")
        if not text and isinstance(renderer, Mapping):
            value = renderer.get("value")
            if isinstance(value, str) and value != RENDERER_EMPTY_VALUE:
                text = value

    if _is_blank(tool_call_id):
        tool_call_id = _generated_tool_id()
    if not text.strip():
        text = TOOL_RESULT_PLACEHOLDER
    return {"role": "tool", "tool_call_id": tool_call_id, "content": text}


def _serialize_tool_input(input_data: Any) -> str:
    if isinstance(input_data, str):
        return input_data
    return json.dumps(input_data if input_data is not None else {}, ensure_ascii=False)


def _tool_use_message(content: list[Any]) -> dict[str, Any]:
    """Assistant message with tool_use blocks -> assistant message with tool_calls."""
    tool_calls: list[dict[str, Any]] = []
    seen_ids: set[str] = set()
    texts: list[str] = []

    for block in _blocks(content):
        block_type = block.get("type")
        if block_type == "tool_use":
            tool_id = block.get("id") or ""
            if tool_id in seen_ids:
                logger.debug("Skipping duplicate tool_use id %s", tool_id)
                continue
            seen_ids.add(tool_id)
            tool_calls.append({
                "id": tool_id,
                "type": "function",
                "function": {
                    "name": block.get("name", ""),
                    "arguments": _serialize_tool_input(block.get("input", {})),
                },
            })
        elif block_type == "text" and not _is_blank(block.get("text")):
            texts.append(block["text"])

    message: dict[str, Any] = {"role": "assistant", "tool_calls": tool_calls}
    message["content"] = "\n".join(texts) if texts else TOOL_USE_PLACEHOLDER
    return message


def _openai_tool_calls_message(msg: Mapping[str, Any]) -> dict[str, Any]:
    """Message that already carries OpenAI-style ``tool_calls``."""
    tool_calls = list(msg.get("tool_calls") or [])
    content = _simplify(_convert_content_parts(msg.get("content")))
    if content is None:
        first = tool_calls[0] if tool_calls and isinstance(tool_calls[0], Mapping) else {}
        name = (first.get("function") or {}).get("name") or "tool"
        content = f"Calling {name} tool"
    return {"role": "assistant", "content": content, "tool_calls": tool_calls}


def _system_texts(system: Any) -> list[str]:
    if isinstance(system, str):
        return [system] if system.strip() else []
    texts = []
    for block in _blocks(system):
        if block.get("type", "text") == "text" and not _is_blank(block.get("text")):
            texts.append(block["text"])
        elif block.get("type") != "text":
            logger.warning(f"Non-text block in system parameter: {block.get('type')}")
    return texts


def build_system_prompt(payload: Mapping[str, Any], suffix: str = "") -> Optional[str]:
    """Merge top-level and in-list system text, then append ``suffix``."""
    parts = _system_texts(payload.get("system"))
    for msg in payload.get("messages") or []:
        if isinstance(msg, Mapping) and msg.get("role") == "system":
            parts.extend(_system_texts(msg.get("content")))
    if suffix and suffix.strip():
        parts.append(suffix)
    if not parts:
        return None
    return "\n\n".join(parts)


def normalize_tool_schema(schema: Any) -> dict[str, Any]:
    """Make a tool input_schema acceptable to OpenAI-compatible upstreams."""
    if not isinstance(schema, Mapping):
        return {"type": "object", "properties": {}, "required": []}
    clean = copy.deepcopy(dict(schema))
    for key in SCHEMA_KEYS_TO_DROP:
        clean.pop(key, None)
    clean.setdefault("type", "object")
    clean.setdefault("properties", {})
    return clean


def _convert_tools(tools: Any) -> list[dict[str, Any]] | None:
    if not isinstance(tools, list) or not tools:
        return None
    converted = []
    for tool in tools:
        if not isinstance(tool, Mapping):
            continue
        converted.append({
            "type": "function",
            "function": {
                "name": tool.get("name", ""),
                "description": tool.get("description", ""),
                "parameters": normalize_tool_schema(tool.get("input_schema")),
            },
        })
    return converted or None


def _convert_tool_choice(tool_choice: Any) -> str | dict[str, Any] | None:
    """Anthropic auto/any/none/{type: tool} -> OpenAI auto/required/none/{type: function}."""
    if tool_choice is None:
        return None
    if isinstance(tool_choice, str):
        return "required" if tool_choice == "any" else tool_choice
    if not isinstance(tool_choice, Mapping):
        return None
    choice_type = tool_choice.get("type", "")
    if choice_type == "tool":
        return {"type": "function", "function": {"name": tool_choice.get("name", "")}}
    return {"auto": "auto", "any": "required", "none": "none"}.get(choice_type)


def _append_message(messages: list[dict[str, Any]], message: dict[str, Any]) -> None:
    """Append, folding a tool-call-only assistant turn into a preceding text-only one."""
    previous = messages[-1] if messages else None
    if (
        previous is not None
        and previous.get("role") == "assistant"
        and message.get("role") == "assistant"
        and not previous.get("tool_calls")
        and message.get("tool_calls")
        and message.get("content") == TOOL_USE_PLACEHOLDER
        and previous.get("content")
    ):
        previous["tool_calls"] = message["tool_calls"]
        return
    messages.append(message)


def _convert_messages(raw_messages: list[Any]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []

    for msg in raw_messages:
        if not isinstance(msg, Mapping):
            raise InvalidRequestError("each message must be an object", code="invalid_message")
        role = msg.get("role", "user")
        content = msg.get("content")

        if role == "system":
            continue

        if role == "tool":
            text = _text_of(content).strip() or TOOL_RESULT_PLACEHOLDER
            tool_call_id = msg.get("tool_call_id") or _generated_tool_id()
            converted.append({"role": "tool", "tool_call_id": tool_call_id, "content": text})
            continue

        if msg.get("tool_calls"):
            _append_message(converted, _openai_tool_calls_message(msg))
            continue

        if has_tool_result(content):
            for block in _blocks(content):
                if _is_tool_result_block(block):
                    converted.append(_tool_result_message(block))
            remaining = _simplify(_convert_content_parts(content))
            if remaining is not None:
                converted.append({"role": role, "content": remaining})
            continue

        if has_tool_use(content):
            _append_message(converted, _tool_use_message(content))
            continue

        if role in ("user", "assistant") and is_content_empty(content):
            if not msg.get("tool_call_id"):
                logger.debug("Filtering empty %s message", role)
                continue

        simplified = _simplify(_convert_content_parts(content))
        if simplified is None:
            simplified = TOOL_RESULT_PLACEHOLDER
        entry: dict[str, Any] = {"role": role, "content": simplified}
        if msg.get("tool_call_id"):
            entry["tool_call_id"] = msg["tool_call_id"]
        _append_message(converted, entry)

    return converted


def messages_to_chat_completions(
    payload: Mapping[str, Any],
    *,
    model_map: Optional[Mapping[str, str]] = None,
    system_prompt: str = "",
) -> dict[str, Any]:
    """Translate an Anthropic Messages request to an OpenAI Chat Completions request.

    Args:
        payload: Anthropic Messages API request body.
        model_map: Optional client-model -> upstream-model mapping.
        system_prompt: Text appended to the merged system prompt.

    Returns:
        OpenAI Chat Completions request body, always with ``stream: true``.

    Raises:
        InvalidRequestError: If ``messages`` is missing or malformed.
    """
    raw_messages = payload.get("messages")
    if not isinstance(raw_messages, list):
        raise InvalidRequestError("messages must be a list", code="invalid_messages")

    model = payload.get("model", "")
    if model_map and model in model_map:
        logger.debug("Model mapping: %s -> %s", model, model_map[model])
        model = model_map[model]

    openai_messages: list[dict[str, Any]] = []
    system = build_system_prompt(payload, system_prompt)
    if system:
        openai_messages.append({"role": "system", "content": system})
    openai_messages.extend(_convert_messages(raw_messages))

    result: dict[str, Any] = {"model": model, "messages": openai_messages, "stream": True}

    if "max_tokens" in payload:
        result["max_tokens"] = payload["max_tokens"]
    if "stop_sequences" in payload:
        result["stop"] = payload["stop_sequences"]
    for param in ("temperature", "top_p"):
        if param in payload:
            result[param] = payload[param]
    if "top_k" in payload:
        logger.debug(f"top_k={payload['top_k']} is not supported upstream, ignoring")

    tools = _convert_tools(payload.get("tools"))
    if tools:
        result["tools"] = tools
    tool_choice = _convert_tool_choice(payload.get("tool_choice"))
    if tool_choice is not None:
        result["tool_choice"] = tool_choice

    metadata = payload.get("metadata")
    if isinstance(metadata, Mapping) and "user_id" in metadata:
        result["user"] = metadata["user_id"]

    return result


def convert_stop_reason(finish_reason: str | None) -> str:
    """OpenAI finish_reason -> Anthropic stop_reason.

    OpenAI: stop, length, tool_calls, content_filter, function_call
    Anthropic: end_turn, max_tokens, stop_sequence, tool_use, refusal
    """
    if finish_reason is None:
        return "end_turn"
    mapping = {
        "stop": "end_turn",
        "length": "max_tokens",
        "tool_calls": "tool_use",
        "function_call": "tool_use",
        "content_filter": "refusal",
    }
    return mapping.get(finish_reason, "end_turn")
