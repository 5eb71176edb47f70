"""Main FastAPI application for msgrelay."""

import logging
import socket
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from . import SERVICE_NAME, __version__
from .api.routes import health, list_models, messages_endpoint, service_info
from .auth import require_api_key
from .config_loader import RelaySettings, load_config
from .core.exceptions import ConfigurationError
from .core.registry import set_settings
from .logging import setup_logging

logger = logging.getLogger("msgrelay")


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render auth failures as Anthropic error envelopes."""
    detail = exc.detail
    if isinstance(detail, dict) and isinstance(detail.get("error"), dict):
        error = detail["error"]
    else:
        error = {"type": "api_error", "message": str(detail)}
    return JSONResponse({"type": "error", "error": error}, status_code=exc.status_code)


def _validate_settings(settings: RelaySettings) -> None:
    """Reject settings the relay cannot start with.

    Raises:
        ConfigurationError: If the upstream URL or the port is unusable, or a
            processing limit is not positive.
    """
    if not settings.upstream_url.startswith(("http://", "https://")):
        raise ConfigurationError(f"upstream.url must be an http(s) URL, got {settings.upstream_url!r}")
    if not 0 < settings.port < 65536:
        raise ConfigurationError(f"Invalid port: {settings.port}")
    if settings.chunk_bytes <= 0:
        raise ConfigurationError(f"processing.chunk_bytes must be positive, got {settings.chunk_bytes}")
    if settings.max_tool_calls <= 0:
        raise ConfigurationError(f"processing.max_tool_calls must be positive, got {settings.max_tool_calls}")


def _log_bind_address(settings: RelaySettings) -> None:
    logger.info("Configured bind address %s:%s", settings.host, settings.port)
    if settings.host == "0.0.0.0":
        hostname = socket.gethostname()
        logger.info("Reachable on local network at http://%s:%s", hostname, settings.port)


def create_app(settings: Optional[RelaySettings] = None) -> FastAPI:
    """Build the relay application.

    Args:
        settings: Relay settings. Loaded from the config file when omitted.

    Returns:
        The configured FastAPI application instance.

    Raises:
        ConfigurationError: If the settings cannot be served.
    """
    if settings is None:
        settings = RelaySettings.from_config(load_config())

    _validate_settings(settings)
    setup_logging(settings.debug, settings.debug_file)
    set_settings(settings)

    app = FastAPI(title="msgrelay", version=__version__)
    app.add_exception_handler(HTTPException, _http_exception_handler)

    @app.on_event("startup")
    async def startup_event():
        logger.info("%s %s starting up...", SERVICE_NAME, __version__)
        _log_bind_address(settings)
        logger.info("Upstream: %s", settings.upstream_url)
        if not settings.upstream_api_key:
            logger.warning("upstream.api_key is not set; /v1/messages will fail")
        if not settings.auth_token:
            logger.warning("auth.token is not set; /v1 routes will answer 500")
        logger.info("Model mappings: %d", len(settings.model_map))

    protected = [Depends(require_api_key)]
    app.post("/v1/messages", dependencies=protected)(messages_endpoint)
    app.get("/v1/models", dependencies=protected)(list_models)
    app.get("/health")(health)
    app.get("/service/info")(service_info)

    logger.info("FastAPI application created")
    return app


def run(settings: Optional[RelaySettings] = None) -> None:
    """Serve the relay with uvicorn on the configured host and port."""
    settings = settings or RelaySettings.from_config(load_config())
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


__all__ = ["create_app", "run"]
