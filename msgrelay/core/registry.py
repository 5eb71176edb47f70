"""Settings registry for breaking circular imports.

Routes read the active settings from here instead of importing the main
module.
"""

from typing import Optional

from ..config_loader import RelaySettings

# Set by create_app() (or the test harness)
_settings: Optional[RelaySettings] = None


def set_settings(settings: Optional[RelaySettings]) -> None:
    """Set the global relay settings."""
    global _settings
    _settings = settings


def get_settings() -> RelaySettings:
    """Get the global relay settings."""
    if _settings is None:
        raise RuntimeError("Settings not initialized. Did you call set_settings?")
    return _settings
