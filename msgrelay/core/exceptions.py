"""Core exceptions for the relay."""

from typing import Optional


class ProxyError(Exception):
    """Base exception for relay errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ProxyError):
    """Raised when there's an issue with the configuration."""
    pass


class InvalidRequestError(ProxyError):
    """Raised when an incoming request is invalid."""

    def __init__(self, message: str, code: str = "invalid_request") -> None:
        super().__init__(message)
        self.code = code


class UpstreamStreamError(ProxyError):
    """Raised when reading the upstream body fails mid-stream."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class AggregatorOverflowError(ProxyError):
    """Raised when a response opens more tool calls than the aggregator allows."""

    def __init__(self, message: str, limit: int) -> None:
        super().__init__(message)
        self.limit = limit


class StreamCancelled(ProxyError):
    """Raised by the stream reader when its cancellation token fires.

    ``timed_out`` distinguishes a deadline expiry from an explicit cancel.
    """

    def __init__(self, message: str = "stream cancelled", timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out
