"""Assembly of a complete upstream chat-completions stream into one result.

The upstream is always called with ``stream: true``. Whatever the client
asked for, the assembler reads the whole upstream stream first and produces
a ``UnifiedResult``; the output adapters then render it either as a
Messages SSE stream or as a single JSON document.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

from ..config_loader import DEFAULT_PLACEHOLDER_TEXT
from ..core.cancellation import CancellationToken
from ..core.exceptions import StreamCancelled, UpstreamStreamError
from ..core.sse import ByteSource, SSEStreamReader
from .aggregator import MAX_TOOL_CALLS, PendingInvocation, ToolCallAggregator
from .interpreter import interpret_event
from .translator import convert_stop_reason
from .types import (
    ContentBlock,
    InterpretedEvent,
    InvocationFragment,
    TerminalSignal,
    TextBlock,
    TextDelta,
    ToolUseBlock,
    UnifiedResult,
    Usage,
)

logger = logging.getLogger("msgrelay")

DEFAULT_PROCESSING_TIMEOUT = 600.0
DEFAULT_MODEL = "claude-unknown"
TOOL_CALLS_REASON = "tool_calls"


class ResponseAssembler:
    """Drives one upstream stream to a ``UnifiedResult``.

    Create one per request; ``assemble`` may only be called once.
    """

    def __init__(
        self,
        request_id: str,
        *,
        timeout: Optional[float] = DEFAULT_PROCESSING_TIMEOUT,
        max_tool_calls: int = MAX_TOOL_CALLS,
        placeholder_text: str = DEFAULT_PLACEHOLDER_TEXT,
    ) -> None:
        self.request_id = request_id
        self.timeout = timeout
        self.placeholder_text = placeholder_text
        self.aggregator = ToolCallAggregator(request_id, max_invocations=max_tool_calls)

        self.message_id: Optional[str] = None
        self.model: Optional[str] = None
        self.usage: Optional[Usage] = None
        self.stop_reason = "end_turn"
        self.is_tool_call = False
        self.events_seen = 0
        self._text_parts: list[str] = []

    async def assemble(
        self,
        source: ByteSource,
        token: Optional[CancellationToken] = None,
    ) -> UnifiedResult:
        """Read ``source`` to the end and build the result.

        The processing deadline is independent of the inbound connection.
        End of stream, cancellation and timeout all end the loop normally.

        Raises:
            UpstreamStreamError: If reading the upstream body fails.
            AggregatorOverflowError: If the response opens too many tool calls.
        """
        token = token or CancellationToken.with_timeout(self.timeout)
        reader = SSEStreamReader(source)
        try:
            while True:
                try:
                    raw = await reader.next_event(token)
                except StreamCancelled as exc:
                    if exc.timed_out:
                        logger.warning(f"[{self.request_id}] Upstream processing timed out")
                    else:
                        logger.info(f"[{self.request_id}] Upstream processing cancelled")
                    break
                except UpstreamStreamError:
                    raise
                except Exception as exc:
                    logger.error(
                        f"[{self.request_id}] Upstream stream read failed: "
                        f"{exc.__class__.__name__}: {exc}"
                    )
                    raise UpstreamStreamError(f"stream parsing failed: {exc}", cause=exc) from exc

                if raw is None:
                    break
                if not raw:
                    continue
                self.events_seen += 1
                event = interpret_event(raw)
                if event is not None:
                    self._apply(event)

            logger.debug(
                f"[{self.request_id}] Upstream stream done: events={self.events_seen}, "
                f"tools={self.aggregator.stats()}"
            )
            return self._build_result()
        finally:
            self.aggregator.close()

    def _apply(self, event: InterpretedEvent) -> None:
        if event.is_terminal_only:
            self._apply_terminal(event.chunks[0])
            return

        if event.usage is not None:
            self.usage = event.usage

        if event.has_choices and not self.message_id:
            self.message_id = event.message_id
            self.model = event.model

        fragments = [c for c in event.chunks if isinstance(c, InvocationFragment)]
        terminal = event.terminal

        if fragments or (terminal is not None and terminal.reason == TOOL_CALLS_REASON):
            for fragment in fragments:
                self.aggregator.absorb(fragment)
            if terminal is not None:
                self._apply_terminal(terminal)
            return

        if not self.is_tool_call:
            for chunk in event.chunks:
                if isinstance(chunk, TextDelta):
                    self._text_parts.append(chunk.text)
        if terminal is not None:
            self._apply_terminal(terminal)

    def _apply_terminal(self, signal: TerminalSignal) -> None:
        if signal.reason == TOOL_CALLS_REASON:
            if not self.is_tool_call:
                logger.debug(f"[{self.request_id}] Tool call mode latched")
            self.is_tool_call = True
        self.stop_reason = convert_stop_reason(signal.reason)

    def _build_result(self) -> UnifiedResult:
        content: list[ContentBlock] = []
        is_tool_call = self.is_tool_call
        stop_reason = self.stop_reason

        if is_tool_call:
            content = [
                _tool_block(invocation)
                for invocation in self.aggregator.invocations()
                if invocation.name
            ]
            if content:
                stop_reason = "tool_use"
            else:
                logger.warning(
                    f"[{self.request_id}] tool_calls finish without any named tool call"
                )
                is_tool_call = False
                stop_reason = "end_turn"
        else:
            text = "".join(self._text_parts)
            if text.strip():
                content = [TextBlock(text)]

        if not content:
            content = [TextBlock(self.placeholder_text)]

        return UnifiedResult(
            message_id=self.message_id or f"msg_{time.time_ns()}",
            model=self.model or DEFAULT_MODEL,
            content=tuple(content),
            stop_reason=stop_reason,
            usage=self.usage,
            is_tool_call=is_tool_call,
        )


def _tool_block(invocation: PendingInvocation) -> ToolUseBlock:
    return ToolUseBlock(
        id=invocation.id,
        name=invocation.name,
        input=parse_tool_arguments(invocation.arguments),
    )


def parse_tool_arguments(arguments: str) -> dict[str, Any]:
    """Decode accumulated argument text into a JSON object.

    Blank text gives ``{}``; anything that is not a JSON object is kept
    verbatim under ``raw_args``.
    """
    text = arguments.strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {"raw_args": text}
    if not isinstance(parsed, dict):
        return {"raw_args": text}
    return parsed
