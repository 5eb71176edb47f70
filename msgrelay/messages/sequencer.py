"""Ordering state machine for outbound Messages SSE frames.

The Anthropic stream contract is strict::

    message_start
      (content_block_start content_block_delta* content_block_stop)*
    message_delta
    message_stop

``MessageStreamSequencer`` owns that ordering for one response: callers ask
for transitions, and requests that would break the contract are refused
(the method returns False) instead of producing a bad frame.
``SequenceValidator`` watches every frame that does go out and keeps a
bounded history plus a violation count. Validation only logs; it never
blocks a frame.

Neither class is safe to share across tasks. One instance per response.
"""

from __future__ import annotations

import enum
import logging
import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from .formatter import (
    CONTENT_BLOCK_DELTA,
    CONTENT_BLOCK_START,
    CONTENT_BLOCK_STOP,
    INPUT_JSON_DELTA,
    MESSAGE_DELTA,
    MESSAGE_START,
    MESSAGE_STOP,
    TEXT_DELTA,
    AnthropicSSEFormatter,
)
from .types import Usage

logger = logging.getLogger("msgrelay")

HISTORY_LIMIT = 256
RECENT_EVENTS = 5
DEFAULT_MODEL = "claude-unknown"

EXPECTED_SEQUENCE = (
    MESSAGE_START,
    CONTENT_BLOCK_START,
    CONTENT_BLOCK_DELTA,
    CONTENT_BLOCK_STOP,
    MESSAGE_DELTA,
    MESSAGE_STOP,
)


class FrameSink(Protocol):
    """Receives encoded frames in emission order."""

    def write(self, frame: bytes) -> None:
        ...


class OutputSequenceState(enum.Enum):
    IDLE = "idle"
    MESSAGE_OPENED = "message_opened"
    BLOCK_OPEN = "block_open"
    BLOCK_CLOSED = "block_closed"
    FINISHED = "finished"


@dataclass(frozen=True)
class SequenceViolation:
    event: str
    reason: str
    position: int

    def __str__(self) -> str:
        return f"{self.reason} (event={self.event}, position={self.position})"


class SequenceValidator:
    """Checks each emitted event kind against the stream contract."""

    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        self._history: deque[str] = deque(maxlen=history_limit)
        self._seen: Counter[str] = Counter()
        self._first: Optional[str] = None
        self._last: Optional[str] = None
        self._stage = 0
        self.total_events = 0
        self.violations: list[SequenceViolation] = []

    @property
    def error_count(self) -> int:
        return len(self.violations)

    def validate(self, event: str) -> Optional[SequenceViolation]:
        """Record ``event`` and return a violation if it is out of order."""
        reason = self._check(event)
        self._record(event)
        if reason is None:
            return None
        violation = SequenceViolation(event, reason, self.total_events)
        self.violations.append(violation)
        return violation

    def record(self, event: str) -> None:
        """Record ``event`` in the history without ordering checks."""
        self._record(event)

    def _check(self, event: str) -> Optional[str]:
        if event == MESSAGE_START:
            if self.total_events:
                return "message_start must be the first event"
            self._stage = 1
        elif event == CONTENT_BLOCK_START:
            if not self._seen[MESSAGE_START]:
                return "content_block_start before message_start"
            self._stage = 2
        elif event == CONTENT_BLOCK_DELTA:
            if not self._seen[CONTENT_BLOCK_START]:
                return "content_block_delta before content_block_start"
            self._stage = 3
        elif event == CONTENT_BLOCK_STOP:
            if not self._seen[CONTENT_BLOCK_START]:
                return "content_block_stop without content_block_start"
            self._stage = 4
        elif event == MESSAGE_DELTA:
            if not (self._seen[CONTENT_BLOCK_STOP] or self._seen[CONTENT_BLOCK_START]):
                return "message_delta without any content block"
            self._stage = 5
        elif event == MESSAGE_STOP:
            if not self._seen[MESSAGE_DELTA]:
                return "message_stop without message_delta"
            self._stage = 6
        else:
            return f"unknown event type: {event}"
        return None

    def _record(self, event: str) -> None:
        if self._first is None:
            self._first = event
        self._last = event
        self._seen[event] += 1
        self._history.append(event)
        self.total_events += 1

    def validate_complete(self) -> Optional[SequenceViolation]:
        """Check the finished stream: first frame message_start, last message_stop."""
        reason: Optional[str] = None
        if not self.total_events:
            reason = "no events recorded"
        elif self._first != MESSAGE_START:
            reason = f"first event must be message_start, got {self._first}"
        elif self._last != MESSAGE_STOP:
            reason = f"last event must be message_stop, got {self._last}"
        if reason is None:
            return None
        violation = SequenceViolation(self._last or "", reason, self.total_events)
        self.violations.append(violation)
        return violation

    def expected_next(self) -> str:
        if self._stage < len(EXPECTED_SEQUENCE):
            return EXPECTED_SEQUENCE[self._stage]
        return "sequence_complete"

    def report(self) -> dict[str, Any]:
        return {
            "total_events": self.total_events,
            "event_history": list(self._history),
            "sequence_complete": self._stage >= len(EXPECTED_SEQUENCE),
            "expected_next": self.expected_next(),
            "violations": [str(v) for v in self.violations],
        }


class MessageStreamSequencer:
    """Emits Messages SSE frames to a sink in contract order."""

    def __init__(
        self,
        sink: FrameSink,
        *,
        formatter: Optional[AnthropicSSEFormatter] = None,
        request_id: str = "-",
        validation_enabled: bool = True,
    ) -> None:
        self._sink = sink
        self._formatter = formatter or AnthropicSSEFormatter()
        self.request_id = request_id
        self.validation_enabled = validation_enabled
        self.validator = SequenceValidator()

        self.message_id = ""
        self.model = ""
        self.message_start_sent = False
        self.content_block_open = False
        self.stream_finished = False
        self.tool_calls_active = False
        self.block_index = 0
        self.event_count = 0
        self.error_count = 0
        self.last_event_time: Optional[float] = None
        self._recent: deque[str] = deque(maxlen=RECENT_EVENTS)

    @property
    def state(self) -> OutputSequenceState:
        if self.stream_finished:
            return OutputSequenceState.FINISHED
        if self.content_block_open:
            return OutputSequenceState.BLOCK_OPEN
        if self.block_index > 0:
            return OutputSequenceState.BLOCK_CLOSED
        if self.message_start_sent:
            return OutputSequenceState.MESSAGE_OPENED
        return OutputSequenceState.IDLE

    def is_finished(self) -> bool:
        return self.stream_finished

    def enable_validation(self, enabled: bool) -> None:
        self.validation_enabled = enabled
        logger.debug(f"[{self.request_id}] Sequence validation {'enabled' if enabled else 'disabled'}")

    def _emit(self, event: str, frame: bytes) -> None:
        self.event_count += 1
        self.last_event_time = time.time()
        self._recent.append(event)
        if not self.validation_enabled:
            self.validator.record(event)
        else:
            violation = self.validator.validate(event)
            if violation is not None:
                self.error_count += 1
                logger.warning(f"[{self.request_id}] SSE sequence violation: {violation}")
        self._sink.write(frame)

    def ensure_message_start(self, message_id: str = "", model: str = "") -> bool:
        """Send message_start once; later calls are no-ops returning False."""
        if self.message_start_sent:
            return False
        self.message_id = message_id or f"msg_interim_{time.time_ns()}"
        self.model = model or DEFAULT_MODEL
        self._emit(MESSAGE_START, self._formatter.message_start(self.message_id, self.model))
        self.message_start_sent = True
        logger.debug(f"[{self.request_id}] Sent message_start (id={self.message_id}, model={self.model})")
        return True

    def ensure_content_block_start(self, block_type: str = "text") -> bool:
        """Open a free-form block. Refused while a block is open or tool mode is on."""
        if self.content_block_open or self.tool_calls_active:
            return False
        self._emit(
            CONTENT_BLOCK_START,
            self._formatter.content_block_start(self.block_index, block_type),
        )
        self.content_block_open = True
        return True

    def start_tool_use_block(self, tool_id: str, name: str) -> bool:
        """Open a tool_use block and latch tool mode. Refused while a block is open."""
        if self.content_block_open:
            return False
        self.activate_tool_calls()
        self._emit(
            CONTENT_BLOCK_START,
            self._formatter.content_block_start(
                self.block_index, "tool_use", {"id": tool_id, "name": name, "input": {}}
            ),
        )
        self.content_block_open = True
        return True

    def _emit_delta(self, delta_type: str, content: str) -> bool:
        if not self.content_block_open:
            logger.debug(f"[{self.request_id}] Dropping {delta_type} with no open block")
            return False
        self._emit(
            CONTENT_BLOCK_DELTA,
            self._formatter.content_block_delta(self.block_index, delta_type, content),
        )
        return True

    def emit_text_delta(self, text: str) -> bool:
        return self._emit_delta(TEXT_DELTA, text)

    def emit_input_json_delta(self, partial_json: str) -> bool:
        return self._emit_delta(INPUT_JSON_DELTA, partial_json)

    def finish_content_block(self) -> bool:
        """Close the open block and advance the block index."""
        if not self.content_block_open:
            return False
        self._emit(CONTENT_BLOCK_STOP, self._formatter.content_block_stop(self.block_index))
        self.content_block_open = False
        self.block_index += 1
        return True

    def activate_tool_calls(self) -> None:
        if not self.tool_calls_active:
            self.tool_calls_active = True
            logger.debug(f"[{self.request_id}] Tool call mode activated")

    def finish_stream(self, stop_reason: str, usage: Optional[Usage] = None) -> bool:
        """Send message_delta + message_stop exactly once.

        An open block is closed first, and a missing message_start is sent
        so the client always sees a well-formed stream.
        """
        if self.stream_finished:
            return False
        self.ensure_message_start(self.message_id, self.model)
        if self.content_block_open:
            self._emit(CONTENT_BLOCK_STOP, self._formatter.content_block_stop(self.block_index))
            self.content_block_open = False
            self.block_index += 1
            logger.debug(f"[{self.request_id}] Auto-closed content block before finishing")

        self._emit(MESSAGE_DELTA, self._formatter.message_delta(stop_reason, usage))
        self._emit(MESSAGE_STOP, self._formatter.message_stop())
        self.stream_finished = True
        logger.debug(f"[{self.request_id}] Finished stream with reason: {stop_reason}")

        if self.validation_enabled:
            violation = self.validator.validate_complete()
            if violation is not None:
                self.error_count += 1
                logger.warning(f"[{self.request_id}] Final sequence validation failed: {violation}")
        return True

    def validation_report(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "message_start_sent": self.message_start_sent,
            "content_block_started": self.content_block_open,
            "stream_finished": self.stream_finished,
            "tool_calls_active": self.tool_calls_active,
            "current_block_index": self.block_index,
            "event_count": self.event_count,
            "error_count": self.error_count,
            "last_event_time": self.last_event_time,
            "validator": self.validator.report(),
            "recent_events": list(self._recent),
        }
