"""Cooperative cancellation for per-request stream processing."""

from __future__ import annotations

import time
from typing import Optional

from .exceptions import StreamCancelled


class CancellationToken:
    """A cancel flag with an optional monotonic deadline.

    The token is checked between reads; it never interrupts an in-flight
    read. Owned by a single request task.
    """

    def __init__(self, deadline: Optional[float] = None) -> None:
        self._deadline = deadline
        self._cancelled = False
        self.reason: Optional[str] = None

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> "CancellationToken":
        """Create a token that expires ``seconds`` from now (None = never)."""
        if seconds is None or seconds <= 0:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    @property
    def timed_out(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._cancelled or self.timed_out

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None if there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise StreamCancelled(f"stream cancelled: {self.reason}")
        if self.timed_out:
            raise StreamCancelled("stream processing deadline exceeded", timed_out=True)
