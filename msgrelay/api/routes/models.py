"""Models listing endpoint - OpenAI compatible."""

import logging
import time

from ... import SERVICE_NAME
from ...core.registry import get_settings

logger = logging.getLogger("msgrelay")


async def list_models() -> dict:
    """List the client-facing model names from ``model_map``.

    GET /v1/models

    Returns:
        A dictionary containing the list of available models.
    """
    settings = get_settings()
    created = int(time.time())
    models = [
        {
            "id": model_name,
            "object": "model",
            "created": created,
            "owned_by": SERVICE_NAME,
        }
        for model_name in settings.model_map
    ]
    logger.debug("Returning %d models from model_map", len(models))

    return {
        "object": "list",
        "data": models
    }
