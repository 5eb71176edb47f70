"""Configuration loading from YAML files with environment variable support."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values

from . import SERVICE_NAME, __version__

logger = logging.getLogger("msgrelay")

# Default path to the config file (relative to project root)
DEFAULT_CONFIG_PATH = "configs/config_default.yaml"
CONFIG_PATH_ENV = "MSGRELAY_CONFIG"

DEFAULT_UPSTREAM_URL = "https://www.codebuddy.ai/v2/chat/completions"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_PLACEHOLDER_TEXT = "Processing complete"

_ENV_REF = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")
_TRUTHY = {"1", "true", "on", "yes"}


def resolve_config_path(path: str) -> Path:
    """Resolve config path relative to project root if needed."""
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    return Path(__file__).parent.parent / candidate


def load_env_values(env_path: Path) -> dict[str, str]:
    """Read a .env file without touching os.environ."""
    if not env_path.exists():
        return {}
    return {k: v for k, v in dotenv_values(env_path).items() if v is not None}


def load_config(
    path: Optional[str] = None,
    env_path: Optional[str] = None,
    substitute_env: bool = True,
) -> dict:
    """Load the relay configuration from a YAML file.

    Args:
        path: Config file path. Defaults to $MSGRELAY_CONFIG, then
              configs/config_default.yaml under the project root.
        env_path: Optional .env override; defaults to a `.env` next to the config.
        substitute_env: Expand ``${VAR}`` / ``$VAR`` references in string values.

    Returns:
        Parsed configuration dictionary.
    """
    config_path = resolve_config_path(path or os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    logger.info("Loading configuration from %s", config_path)

    if not config_path.exists():
        logger.error("Config file not found: %s", config_path)
        raise RuntimeError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    if substitute_env:
        env_file = resolve_config_path(env_path) if env_path else config_path.with_name(".env")
        env_values = load_env_values(env_file)
        if env_values:
            logger.info("Loaded %d values from %s", len(env_values), env_file)
        data = _substitute_env_vars(data, env_values)

    return data


def _substitute_env_vars(obj: Any, env_values: Optional[Mapping[str, str]] = None) -> Any:
    """Recursively expand environment references inside config values.

    Lookups try the .env values first, then the process environment. An unset
    variable is left as its literal placeholder and logged.
    """
    env_values = env_values or {}

    if isinstance(obj, dict):
        return {key: _substitute_env_vars(value, env_values) for key, value in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env_values) for item in obj]
    if not isinstance(obj, str):
        return obj

    def _expand(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        value = env_values.get(name, os.getenv(name))
        if value is None:
            logger.warning(
                "CONFIG ERROR: environment variable '%s' is not set; keeping the placeholder",
                name,
            )
            return match.group(0)
        return value

    return _ENV_REF.sub(_expand, obj)


def _section(config: Mapping[str, Any], *keys: str) -> Mapping[str, Any]:
    current: Any = config
    for key in keys:
        current = current.get(key) if isinstance(current, Mapping) else None
        if current is None:
            return {}
    return current if isinstance(current, Mapping) else {}


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def _secret(value: Any) -> str:
    """A credential value, or "" when it is missing or an unexpanded reference."""
    text = str(value or "").strip()
    if _ENV_REF.fullmatch(text):
        return ""
    return text


@dataclass
class RelaySettings:
    """Typed view of the relay configuration."""

    upstream_url: str = DEFAULT_UPSTREAM_URL
    upstream_api_key: str = ""
    user_agent: str = f"{SERVICE_NAME}/{__version__}"
    connect_timeout: float = 30.0
    read_timeout: float = 300.0
    system_prompt: str = ""
    processing_timeout: float = 600.0
    max_tool_calls: int = 32
    chunk_bytes: int = 64
    placeholder_text: str = DEFAULT_PLACEHOLDER_TEXT
    auth_token: str = ""
    model_map: dict[str, str] = field(default_factory=dict)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    debug: bool = False
    debug_file: Optional[str] = None

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "RelaySettings":
        """Build settings from a loaded config mapping.

        Environment variables (MSGRELAY_UPSTREAM_URL, MSGRELAY_HOST,
        MSGRELAY_PORT, DEBUG, DEBUG_FILE) take priority over the file.
        """
        env = os.environ if environ is None else environ
        upstream = _section(config, "upstream")
        processing = _section(config, "processing")
        server = _section(config, "proxy_settings", "server")
        log_cfg = _section(config, "proxy_settings", "logging")
        defaults = cls()

        model_map = config.get("model_map") or {}
        if not isinstance(model_map, Mapping):
            logger.warning("model_map must be a mapping; ignoring %r", type(model_map).__name__)
            model_map = {}

        debug_raw = env.get("DEBUG")
        debug = _as_bool(debug_raw) if debug_raw is not None else _as_bool(log_cfg.get("debug", False))

        return cls(
            upstream_url=(
                (env.get("MSGRELAY_UPSTREAM_URL") or "").strip()
                or str(upstream.get("url") or DEFAULT_UPSTREAM_URL)
            ),
            upstream_api_key=_secret(upstream.get("api_key")),
            user_agent=str(upstream.get("user_agent") or defaults.user_agent),
            connect_timeout=_as_float(upstream.get("connect_timeout"), defaults.connect_timeout),
            read_timeout=_as_float(upstream.get("read_timeout"), defaults.read_timeout),
            system_prompt=str(upstream.get("system_prompt") or ""),
            processing_timeout=_as_float(processing.get("timeout"), defaults.processing_timeout),
            max_tool_calls=_as_int(processing.get("max_tool_calls"), defaults.max_tool_calls),
            chunk_bytes=_as_int(processing.get("chunk_bytes"), defaults.chunk_bytes),
            placeholder_text=str(processing.get("placeholder_text") or DEFAULT_PLACEHOLDER_TEXT),
            auth_token=_secret(_section(config, "auth").get("token")),
            model_map={str(k): str(v) for k, v in model_map.items()},
            host=env.get("MSGRELAY_HOST") or str(server.get("host", DEFAULT_HOST)),
            port=_as_int(env.get("MSGRELAY_PORT"), _as_int(server.get("port"), DEFAULT_PORT)),
            debug=debug,
            debug_file=env.get("DEBUG_FILE") or log_cfg.get("debug_file") or None,
        )
