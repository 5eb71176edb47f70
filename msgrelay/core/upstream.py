"""Upstream HTTP call for the chat-completions peer."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping, Optional

import httpx

from ..config_loader import RelaySettings
from .upstream_transport import get_upstream_transport

logger = logging.getLogger("msgrelay")

# Never forwarded from the client: connection-specific headers, the client's
# own credentials, and headers httpx computes itself.
BLOCKED_REQUEST_HEADERS = {
    "authorization",
    "x-api-key",
    "connection",
    "keep-alive",
    "proxy-connection",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
    "accept-encoding",
}


def build_upstream_headers(
    incoming: Mapping[str, str],
    api_key: str,
    user_agent: str,
) -> dict[str, str]:
    """Build outbound headers: client headers minus the blocked set, plus auth."""
    headers: dict[str, str] = {}
    seen: set[str] = set()
    for key, value in incoming.items():
        lowered = key.lower()
        if lowered in BLOCKED_REQUEST_HEADERS or lowered in seen:
            continue
        headers[key] = value
        seen.add(lowered)

    for key in list(headers):
        if key.lower() in {"content-type", "user-agent"}:
            del headers[key]
    headers["Authorization"] = f"Bearer {api_key}"
    headers["Content-Type"] = "application/json"
    headers["User-Agent"] = user_agent
    headers["Accept-Encoding"] = "identity"
    return headers


def describe_httpx_error(exc: BaseException, url: Optional[str] = None) -> str:
    """Short human-readable description of an httpx failure."""
    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)
    if url:
        parts.append(f"url={url}")
    return "; ".join(parts)


class UpstreamClient:
    """Opens streaming POSTs against the configured upstream URL."""

    def __init__(self, settings: RelaySettings) -> None:
        self.settings = settings

    @property
    def url(self) -> str:
        return self.settings.upstream_url

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.settings.connect_timeout,
            read=self.settings.read_timeout,
            write=self.settings.connect_timeout,
            pool=self.settings.connect_timeout,
        )

    @asynccontextmanager
    async def open_stream(
        self,
        body: bytes,
        incoming_headers: Mapping[str, str],
        req_id: str = "-",
    ) -> AsyncIterator[httpx.Response]:
        """POST ``body`` upstream and yield the response with its body unread.

        Raises:
            httpx.HTTPError: If the connection cannot be established.
        """
        headers = build_upstream_headers(
            incoming_headers, self.settings.upstream_api_key, self.settings.user_agent
        )
        transport = get_upstream_transport(self.url)
        logger.debug(f"[{req_id}] Opening upstream stream to {self.url} ({len(body)} bytes)")

        async with httpx.AsyncClient(
            timeout=self._timeout(), transport=transport, follow_redirects=True
        ) as client:
            request = client.build_request("POST", self.url, headers=headers, content=body)
            response = await client.send(request, stream=True)
            logger.debug(f"[{req_id}] Upstream responded with status {response.status_code}")
            try:
                yield response
            finally:
                await response.aclose()

