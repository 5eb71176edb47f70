"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, AsyncIterator, Generator, Iterable

import httpx
import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from msgrelay.config_loader import RelaySettings

UPSTREAM_HOST = "upstream.local"
UPSTREAM_URL = f"http://{UPSTREAM_HOST}/v2/chat/completions"
AUTH_TOKEN = "test-token"


# =============================================================================
# Transport Registry Fixtures
# =============================================================================


@pytest.fixture
def clear_transport_registry() -> Generator[None, None, None]:
    """Clear upstream transport registry after test.

    Use this fixture in tests that register fake transports.
    """
    from msgrelay.core.upstream_transport import clear_upstream_transports

    yield
    clear_upstream_transports()


# =============================================================================
# Settings Builders
# =============================================================================


def build_settings(**overrides: Any) -> RelaySettings:
    """Build relay settings pointed at the fake upstream host.

    Args:
        **overrides: RelaySettings fields to override

    Returns:
        RelaySettings for ProxyHarness
    """
    values: dict[str, Any] = {
        "upstream_url": UPSTREAM_URL,
        "upstream_api_key": "upstream-key",
        "auth_token": AUTH_TOKEN,
        "model_map": {"claude-sonnet-4": "claude-4.0"},
    }
    values.update(overrides)
    return RelaySettings(**values)


def register_fake_upstream(host: str, upstream: Any) -> None:
    """Register a FakeUpstream for the given host.

    Args:
        host: Host to register (e.g., "upstream.local")
        upstream: FakeUpstream instance
    """
    from msgrelay.core.upstream_transport import register_upstream_transport

    register_upstream_transport(host, httpx.ASGITransport(app=upstream.app))


# =============================================================================
# Harness Fixtures
# =============================================================================


@pytest.fixture
def messages_harness(
    clear_transport_registry: None,
) -> Generator[tuple[Any, Any], None, None]:
    """Create a harness configured for messages endpoint testing.

    Returns:
        Tuple of (FakeUpstream, ProxyHarness)

    Usage:
        def test_messages(messages_harness):
            upstream, harness = messages_harness
            upstream.enqueue_chat_stream("Hello")
            # ... test code ...
    """
    from msgrelay.testing import FakeUpstream, ProxyHarness

    upstream = FakeUpstream()
    register_fake_upstream(UPSTREAM_HOST, upstream)

    harness = ProxyHarness(build_settings())
    try:
        yield upstream, harness
    finally:
        harness.close()


# =============================================================================
# Stream Helpers
# =============================================================================


async def aiter_chunks(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    """Async iterator over pre-cut byte chunks."""
    for chunk in chunks:
        yield chunk


class ChunkSource:
    """ByteSource over fixed chunks, recording every read size."""

    def __init__(self, chunks: Iterable[bytes], *, fail_with: BaseException | None = None) -> None:
        self._chunks = list(chunks)
        self._fail_with = fail_with
        self.reads: list[int] = []

    async def read(self, size: int) -> bytes:
        self.reads.append(size)
        if self._chunks:
            chunk = self._chunks.pop(0)
            if len(chunk) > size:
                self._chunks.insert(0, chunk[size:])
                chunk = chunk[:size]
            return chunk
        if self._fail_with is not None:
            raise self._fail_with
        return b""
