"""In-process transports for upstream hosts.

Tests (and local simulations) point the relay at a fake upstream by binding an
``httpx`` transport to the upstream netloc. Real traffic never registers one.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("msgrelay")


class TransportRegistry:
    """Maps an upstream netloc (``host[:port]``) to an httpx transport."""

    def __init__(self) -> None:
        self._by_host: dict[str, httpx.AsyncBaseTransport] = {}

    @staticmethod
    def _key(target: str) -> str:
        # Accept either a full URL or a bare netloc.
        netloc = urlparse(target).netloc if "://" in target else target
        return netloc.strip().lower()

    def register(self, target: str, transport: httpx.AsyncBaseTransport) -> None:
        key = self._key(target)
        if not key:
            raise ValueError("host is required")
        self._by_host[key] = transport
        logger.debug("Bound upstream transport to '%s'", key)

    def unregister(self, target: str) -> None:
        self._by_host.pop(self._key(target), None)

    def lookup(self, url: str) -> Optional[httpx.AsyncBaseTransport]:
        if not url:
            return None
        key = self._key(url)
        return self._by_host.get(key) if key else None

    def clear(self) -> None:
        self._by_host.clear()


_REGISTRY = TransportRegistry()


def register_upstream_transport(target: str, transport: httpx.AsyncBaseTransport) -> None:
    """Route requests for ``target`` (URL or netloc) through ``transport``."""
    _REGISTRY.register(target, transport)


def unregister_upstream_transport(target: str) -> None:
    _REGISTRY.unregister(target)


def clear_upstream_transports() -> None:
    _REGISTRY.clear()


def get_upstream_transport(url: str) -> Optional[httpx.AsyncBaseTransport]:
    return _REGISTRY.lookup(url)
