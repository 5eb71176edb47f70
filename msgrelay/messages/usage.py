"""Token usage parsing for upstream chunks."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .types import Usage

# Anthropic field -> OpenAI-style field used when the former is missing
_FALLBACKS = {
    "input_tokens": "prompt_tokens",
    "output_tokens": "completion_tokens",
    "cache_creation_input_tokens": "prompt_cache_miss_tokens",
    "cache_read_input_tokens": "prompt_cache_hit_tokens",
}


def _count(value: Any) -> int:
    """Coerce a usage value to a non-negative int; anything unusable is 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    if isinstance(value, str):
        try:
            return max(int(value.strip()), 0)
        except ValueError:
            return 0
    return 0


def parse_usage(raw: Optional[Mapping[str, Any]]) -> Optional[Usage]:
    """Map an upstream ``usage`` object to Anthropic counters.

    Accepts both the OpenAI names (``prompt_tokens`` ...) and the Anthropic
    ones; the Anthropic name wins when both are positive. ``total_tokens``
    is derived from input + output when the upstream omits it.

    Returns:
        Usage, or None when ``raw`` is not a mapping.
    """
    if not isinstance(raw, Mapping):
        return None

    values: dict[str, int] = {}
    for field_name, fallback in _FALLBACKS.items():
        values[field_name] = _count(raw.get(field_name)) or _count(raw.get(fallback))

    total = _count(raw.get("total_tokens"))
    if not total:
        total = values["input_tokens"] + values["output_tokens"]

    return Usage(total_tokens=total, **values)
