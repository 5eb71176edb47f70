"""Authentication module for msgrelay."""

from .api_key import ApiKeyValidator, get_api_key_validator, require_api_key

__all__ = ["ApiKeyValidator", "get_api_key_validator", "require_api_key"]
