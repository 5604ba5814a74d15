from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

from source_rcon.protocol.constants import DEFAULT_FRAGMENT_THRESHOLD, DEFAULT_PORT, ENCODING

DEFAULT_CONFIG: Dict[str, Any] = {
    "host": "127.0.0.1",
    "port": DEFAULT_PORT,
    "password": "",
    "connect_timeout": 5.0,
    "timeout": 5.0,
    "close_on_timeout": False,
    "max_pending": 1,
    "fragment_threshold": DEFAULT_FRAGMENT_THRESHOLD,
    "encoding": ENCODING,
    "log_level": "INFO",
    "server_host": "127.0.0.1",
    "server_port": DEFAULT_PORT,
}

RCON_CONFIG: Dict[str, Any] = DEFAULT_CONFIG.copy()

ENV_PREFIX = "RCON_"


class ConfigError(Exception):
    """Raised when configuration values are invalid."""

    pass


def load_config(env_path: str = ".env") -> Dict[str, Any]:
    """Load RCON configuration from an env file and RCON_* environment variables."""
    if os.path.exists(env_path):
        load_dotenv(env_path)

    for key, default_value in DEFAULT_CONFIG.items():
        env_key = f"{ENV_PREFIX}{key.upper()}"
        value = os.getenv(env_key, default_value)
        RCON_CONFIG[key] = _coerce_type(value, type(default_value))

    validate_config(RCON_CONFIG)
    logging.getLogger().setLevel(RCON_CONFIG["log_level"])
    return RCON_CONFIG


def merge_config(overrides: Dict[str, Any] | None = None) -> Dict[str, Any]:
    """Overlay a partial dict on the loaded configuration and validate the result."""
    config = {**RCON_CONFIG, **(overrides or {})}
    validate_config(config)
    return config


def _coerce_type(value: Any, target_type: type) -> Any:
    if isinstance(value, target_type):
        return value
    try:
        if target_type is bool:
            return str(value).lower() in ("1", "true", "yes", "on")
        return target_type(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Cannot convert {value} to {target_type}") from exc


def validate_config(config: Dict[str, Any]) -> None:
    for key in ("port", "server_port"):
        if not (0 <= int(config[key]) <= 65535):
            raise ConfigError(f"{key} must be between 0 and 65535")
    if config["connect_timeout"] <= 0 or config["timeout"] <= 0:
        raise ConfigError("timeouts must be positive")
    if int(config["max_pending"]) < 1:
        raise ConfigError("max_pending must be at least 1")
    if int(config["fragment_threshold"]) < 0:
        raise ConfigError("fragment_threshold must not be negative")
    try:
        "".encode(config["encoding"])
    except LookupError as exc:
        raise ConfigError(f"Unknown encoding {config['encoding']}") from exc


def get(key: str, default: Any = None) -> Any:
    return RCON_CONFIG.get(key, default)


__all__ = ["RCON_CONFIG", "DEFAULT_CONFIG", "ConfigError", "get", "load_config", "merge_config", "validate_config"]
