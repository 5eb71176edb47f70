"""API module for the relay."""

from .routes import health, list_models, messages_endpoint, service_info

__all__ = [
    "health",
    "list_models",
    "messages_endpoint",
    "service_info",
]
