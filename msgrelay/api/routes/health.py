"""Liveness and service information endpoints (unauthenticated)."""

from datetime import datetime, timezone

from ... import SERVICE_NAME, __version__
from ...core.registry import get_settings


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def health() -> dict:
    """GET /health"""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": __version__,
        "timestamp": _timestamp(),
        "upstream_key": "configured" if settings.upstream_api_key else "missing",
    }


async def service_info() -> dict:
    """GET /service/info"""
    settings = get_settings()
    return {
        "service": SERVICE_NAME,
        "version": __version__,
        "status": "running",
        "port": settings.port,
        "debug": settings.debug,
        "timestamp": _timestamp(),
    }
