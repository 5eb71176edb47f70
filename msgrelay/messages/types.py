"""Value types flowing through the response pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass(frozen=True)
class TextDelta:
    """A piece of free-form assistant text."""

    text: str


@dataclass(frozen=True)
class InvocationFragment:
    """One streamed piece of a tool call.

    ``id`` and ``name`` usually only arrive on the first fragment; later
    fragments carry argument text and, with OpenAI-style streams, the
    ``index`` of the call they continue.
    """

    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""
    index: Optional[int] = None


@dataclass(frozen=True)
class TerminalSignal:
    """Upstream finish reason (``stop``, ``tool_calls``, ``length`` ...)."""

    reason: str


NormalizedChunk = Union[TextDelta, InvocationFragment, TerminalSignal]


@dataclass
class Usage:
    """Token counters in Anthropic terms."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    def to_message_usage(self) -> dict[str, int]:
        """Usage block for a non-streaming message document."""
        usage = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }
        if self.cache_creation_input_tokens > 0:
            usage["cache_creation_input_tokens"] = self.cache_creation_input_tokens
        if self.cache_read_input_tokens > 0:
            usage["cache_read_input_tokens"] = self.cache_read_input_tokens
        return usage


@dataclass
class InterpretedEvent:
    """Everything the assembler needs from one upstream event."""

    message_id: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[Usage] = None
    has_choices: bool = False
    chunks: list[NormalizedChunk] = field(default_factory=list)

    @property
    def terminal(self) -> Optional[TerminalSignal]:
        for chunk in self.chunks:
            if isinstance(chunk, TerminalSignal):
                return chunk
        return None

    @property
    def is_terminal_only(self) -> bool:
        """True for bare finish signals that carry no envelope or content."""
        return (
            len(self.chunks) == 1
            and isinstance(self.chunks[0], TerminalSignal)
            and not self.has_choices
            and self.usage is None
            and not self.message_id
        )


@dataclass(frozen=True)
class TextBlock:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


ContentBlock = Union[TextBlock, ToolUseBlock]


@dataclass(frozen=True)
class UnifiedResult:
    """A fully assembled upstream response, ready for either output adapter."""

    message_id: str
    model: str
    content: tuple[ContentBlock, ...]
    stop_reason: str = "end_turn"
    usage: Optional[Usage] = None
    is_tool_call: bool = False

    @property
    def tool_blocks(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    @property
    def text_blocks(self) -> list[TextBlock]:
        return [block for block in self.content if isinstance(block, TextBlock)]
