"""Inbound token authentication for the relay."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request

from ..core.registry import get_settings

logger = logging.getLogger("msgrelay")

API_KEY_HEADER = "x-api-key"


def _auth_error(status_code: int, message: str, error_type: str, code: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": {"message": message, "type": error_type, "code": code}},
    )


def _matches(candidate: str, expected: str) -> bool:
    # Header values may hold any latin-1 text; compare as bytes.
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


class ApiKeyValidator:
    """Checks X-API-Key or ``Authorization: Bearer`` against one configured token."""

    def __init__(self, token: Optional[str] = None) -> None:
        self._token = token

    @property
    def token(self) -> str:
        if self._token is not None:
            return self._token
        return get_settings().auth_token

    def validate_request(self, request: Request) -> None:
        """Validate an incoming request.

        Raises:
            HTTPException: 500 when no token is configured, 401 for a missing,
                malformed or wrong credential.
        """
        expected = self.token
        if not expected:
            logger.error("Request rejected: auth.token is not configured")
            raise _auth_error(500, "Server configuration error", "api_error", "auth_not_configured")

        api_key = request.headers.get(API_KEY_HEADER)
        if api_key and _matches(api_key, expected):
            return

        auth_header = request.headers.get("Authorization", "")
        if api_key and not auth_header:
            logger.warning("Request rejected: invalid X-API-Key")
            raise _auth_error(401, "Invalid token", "authentication_error", "invalid_api_key")
        if not auth_header:
            logger.warning("Request rejected: missing credentials")
            raise _auth_error(
                401,
                "Authorization header or X-API-Key required",
                "authentication_error",
                "missing_api_key",
            )
        if not auth_header.startswith("Bearer "):
            logger.warning("Request rejected: malformed Authorization header")
            raise _auth_error(
                401,
                "Invalid authorization header format",
                "authentication_error",
                "invalid_authorization_header",
            )

        if not _matches(auth_header[len("Bearer "):].strip(), expected):
            logger.warning("Request rejected: invalid token")
            raise _auth_error(401, "Invalid token", "authentication_error", "invalid_api_key")


_validator: ApiKeyValidator | None = None


def get_api_key_validator() -> ApiKeyValidator:
    """Get the singleton ApiKeyValidator, bound to the active settings."""
    global _validator
    if _validator is None:
        _validator = ApiKeyValidator()
    return _validator


async def require_api_key(request: Request) -> None:
    """FastAPI dependency guarding the /v1 routes."""
    get_api_key_validator().validate_request(request)
