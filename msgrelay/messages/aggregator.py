"""Reassembly of streamed tool-call fragments.

OpenAI-style streams deliver a tool call in pieces: the first fragment
carries the call id and function name, later ones only append argument
text. The aggregator stitches the pieces back together per call id,
remembering the order in which calls first appeared.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..core.exceptions import AggregatorOverflowError
from .types import InvocationFragment

logger = logging.getLogger("msgrelay")

MAX_TOOL_CALLS = 32


@dataclass
class PendingInvocation:
    """A tool call being reassembled."""

    id: str
    name: str = ""
    _argument_parts: list[str] = field(default_factory=list, repr=False)

    @property
    def arguments(self) -> str:
        return "".join(self._argument_parts)

    def append_arguments(self, text: str) -> None:
        if text:
            self._argument_parts.append(text)


class ToolCallAggregator:
    """Per-request tool-call accumulator.

    One instance belongs to exactly one upstream response and is never
    shared across tasks. Once a fragment overflows the invocation limit the
    aggregator is latched as failed and rejects everything that follows.
    """

    def __init__(self, request_id: str, max_invocations: int = MAX_TOOL_CALLS) -> None:
        self.request_id = request_id
        self.max_invocations = max_invocations
        self._by_id: dict[str, PendingInvocation] = {}
        self._order: list[PendingInvocation] = []
        self._failed = False
        self._closed = False

    @property
    def failed(self) -> bool:
        return self._failed

    def __len__(self) -> int:
        return len(self._order)

    def absorb(self, fragment: InvocationFragment) -> Optional[PendingInvocation]:
        """Apply one fragment.

        Returns:
            The invocation the fragment was applied to, or None if it was
            dropped (no id and nothing to continue).

        Raises:
            AggregatorOverflowError: When the fragment would open one call
                more than ``max_invocations``, or the aggregator already
                overflowed.
        """
        if self._failed:
            raise AggregatorOverflowError(
                f"[{self.request_id}] tool call aggregator already failed", self.max_invocations
            )

        target = self._resolve(fragment)
        if target is None:
            return None

        if fragment.name and not target.name:
            target.name = fragment.name
        target.append_arguments(fragment.arguments)
        return target

    def _resolve(self, fragment: InvocationFragment) -> Optional[PendingInvocation]:
        # Fragments without an id always continue the most recently opened call.
        if fragment.id:
            existing = self._by_id.get(fragment.id)
            if existing is None:
                existing = self._open(fragment.id)
            return existing

        if self._order:
            return self._order[-1]

        logger.debug(f"[{self.request_id}] Dropping tool fragment with no call to continue")
        return None

    def _open(self, call_id: str) -> PendingInvocation:
        if len(self._order) >= self.max_invocations:
            self._failed = True
            logger.warning(
                f"[{self.request_id}] Tool call limit exceeded: "
                f"{len(self._order)} >= {self.max_invocations}"
            )
            raise AggregatorOverflowError(
                f"tool call limit of {self.max_invocations} exceeded", self.max_invocations
            )
        invocation = PendingInvocation(id=call_id)
        self._by_id[call_id] = invocation
        self._order.append(invocation)
        return invocation

    def invocations(self) -> list[PendingInvocation]:
        """Invocations in first-seen order."""
        return list(self._order)

    def stats(self) -> dict[str, int]:
        return {"total_tools": len(self._order), "mapped_tools": len(self._by_id)}

    def close(self) -> None:
        """Drop all accumulated state. Safe to call more than once."""
        if self._closed:
            return
        logger.debug(f"[{self.request_id}] Clearing tool call aggregator: tools={len(self._order)}")
        self._by_id.clear()
        self._order.clear()
        self._closed = True
