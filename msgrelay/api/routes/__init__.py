"""API routes for the relay."""

from .health import health, service_info
from .messages import messages_endpoint
from .models import list_models

__all__ = [
    "health",
    "list_models",
    "messages_endpoint",
    "service_info",
]
