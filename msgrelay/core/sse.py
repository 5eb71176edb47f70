"""Incremental SSE event reader over a live upstream byte stream.

The reader only finds event boundaries; it knows nothing about what the
events mean. Each ``next_event`` call first tries to cut an event out of the
bytes it already holds and only then issues one bounded read.

Boundary rules:
    - find the ``data: `` marker
    - ``\\n\\n`` after the marker ends the event (preferred)
    - otherwise a single ``\\n`` ends it, but only when the event text
      contains ``data: {`` or ``data: [DONE]``
    - bytes before a marker-less newline are noise and are dropped
    - whatever is left at end of stream is flushed as one last event
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Protocol

from .cancellation import CancellationToken
from .exceptions import StreamCancelled

logger = logging.getLogger("msgrelay")

DATA_PREFIX = b"data: "
EVENT_BOUNDARY = b"\n\n"
LINE_BOUNDARY = b"\n"
DEFAULT_READ_SIZE = 1024

# Single-newline events are only trusted when they look like a real payload.
_LINE_EVENT_MARKERS = ("data: {", "data: [DONE]")


class ByteSource(Protocol):
    """Anything that can hand out at most ``size`` bytes per call.

    An empty result means end of stream.
    """

    async def read(self, size: int) -> bytes:
        ...


class IteratorByteSource:
    """Adapt an async iterator of byte chunks (httpx ``aiter_bytes``) to ``ByteSource``."""

    def __init__(self, chunks: AsyncIterator[bytes]) -> None:
        self._chunks = chunks.__aiter__()
        self._pending = b""
        self._exhausted = False

    async def read(self, size: int) -> bytes:
        while not self._pending and not self._exhausted:
            try:
                self._pending = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
        if not self._pending:
            return b""
        data, self._pending = self._pending[:size], self._pending[size:]
        return data


class SSEStreamReader:
    """Pull complete textual events out of an upstream body.

    Not safe to share between tasks; one reader per upstream response.
    """

    def __init__(self, source: ByteSource, read_size: int = DEFAULT_READ_SIZE) -> None:
        if read_size <= 0:
            raise ValueError("read_size must be positive")
        self._source = source
        self._read_size = read_size
        self._buffer = bytearray()
        self._eof = False
        self.bytes_read = 0
        self.events_emitted = 0
        self.bytes_discarded = 0

    async def next_event(self, token: Optional[CancellationToken] = None) -> Optional[str]:
        """Return the next raw event, or None once the stream is exhausted.

        Raises:
            StreamCancelled: If ``token`` is cancelled before the next read.
            Exception: Any transport error raised by the byte source.
        """
        while True:
            event = self._extract()
            if event is not None:
                self.events_emitted += 1
                return event

            if self._eof:
                return self._flush_residue()

            if token is not None:
                token.raise_if_cancelled()

            chunk = await self._read(token)
            if not chunk:
                self._eof = True
                continue
            self.bytes_read += len(chunk)
            self._buffer.extend(chunk)

    async def events(self, token: Optional[CancellationToken] = None) -> AsyncIterator[str]:
        """Iterate over raw events until end of stream."""
        while True:
            event = await self.next_event(token)
            if event is None:
                return
            yield event

    async def _read(self, token: Optional[CancellationToken]) -> bytes:
        remaining = token.remaining() if token is not None else None
        if remaining is None:
            return await self._source.read(self._read_size)
        # A deadline also bounds the read itself.
        try:
            return await asyncio.wait_for(self._source.read(self._read_size), timeout=remaining)
        except asyncio.TimeoutError:
            raise StreamCancelled("stream processing deadline exceeded", timed_out=True)

    def _extract(self) -> Optional[str]:
        while self._buffer:
            start = self._buffer.find(DATA_PREFIX)
            if start == -1:
                newline = self._buffer.find(LINE_BOUNDARY)
                if newline == -1:
                    return None
                self._discard(newline + 1)
                continue

            boundary = self._buffer.find(EVENT_BOUNDARY, start)
            if boundary != -1:
                event = _decode(self._buffer[start:boundary])
                del self._buffer[: boundary + len(EVENT_BOUNDARY)]
                return event

            newline = self._buffer.find(LINE_BOUNDARY, start)
            if newline == -1:
                return None
            event = _decode(self._buffer[start:newline])
            if not any(marker in event for marker in _LINE_EVENT_MARKERS):
                return None
            del self._buffer[: newline + len(LINE_BOUNDARY)]
            return event
        return None

    def _discard(self, count: int) -> None:
        noise = bytes(self._buffer[:count])
        del self._buffer[:count]
        self.bytes_discarded += count
        if noise.strip():
            logger.debug("SSE reader dropped %d bytes without a data prefix", count)

    def _flush_residue(self) -> Optional[str]:
        if not self._buffer:
            return None
        residue = _decode(self._buffer)
        self._buffer.clear()
        if not residue:
            return None
        self.events_emitted += 1
        return residue


def _decode(raw: bytes | bytearray) -> str:
    return bytes(raw).decode("utf-8", errors="replace").strip()
