"""Core module initialization."""

from .cancellation import CancellationToken
from .exceptions import (
    AggregatorOverflowError,
    ConfigurationError,
    InvalidRequestError,
    ProxyError,
    StreamCancelled,
    UpstreamStreamError,
)
from .registry import get_settings, set_settings
from .sse import IteratorByteSource, SSEStreamReader
from .upstream import UpstreamClient, build_upstream_headers, describe_httpx_error

__all__ = [
    "AggregatorOverflowError",
    "CancellationToken",
    "ConfigurationError",
    "InvalidRequestError",
    "IteratorByteSource",
    "ProxyError",
    "SSEStreamReader",
    "StreamCancelled",
    "UpstreamClient",
    "UpstreamStreamError",
    "build_upstream_headers",
    "describe_httpx_error",
    "get_settings",
    "set_settings",
]
