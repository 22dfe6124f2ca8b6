"""Runtime configuration for export and import runs.

Values come from the environment (a local .env file is loaded first) and can
be overridden per run by CLI flags.

Environment Variables:
    - IOTHUB_SOURCE_CONNECTION_STRING: Service connection string of the hub to export
    - IOTHUB_DEST_CONNECTION_STRING: Service connection string of the hub to import into
    - IOTHUB_EXPORT_FILE: Snapshot path (default: export.json)
    - IOTHUB_DEVICE_LIMIT: Maximum devices to export (default: 1000)
    - IOTHUB_FORCE_TWIN_UPDATE: Overwrite twins unconditionally (default: true)
    - IOTHUB_API_VERSION: Service api-version (default: 2021-04-12)
    - LOG_LEVEL: Logging level (default: INFO)
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .api.client import DEFAULT_API_VERSION
from .api.exceptions import ConfigurationError

DEFAULT_EXPORT_FILE = "export.json"
DEFAULT_DEVICE_LIMIT = 1000

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value < 1:
        raise ConfigurationError(f"{name} must be at least 1, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean (true/false), got {raw!r}")


@dataclass
class MigrationSettings:
    """Settings shared by the export and import commands."""

    source_connection_string: Optional[str] = None
    dest_connection_string: Optional[str] = None
    export_file: str = DEFAULT_EXPORT_FILE
    device_limit: int = DEFAULT_DEVICE_LIMIT
    force_twin_update: bool = True
    api_version: str = DEFAULT_API_VERSION
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "MigrationSettings":
        """Build settings from environment variables.

        Raises:
            ConfigurationError: If a numeric, boolean or log level value is invalid
        """
        if load_env_file:
            load_dotenv()

        log_level = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ConfigurationError(f"LOG_LEVEL {log_level!r} is not a valid logging level")

        return cls(
            source_connection_string=os.getenv("IOTHUB_SOURCE_CONNECTION_STRING") or None,
            dest_connection_string=os.getenv("IOTHUB_DEST_CONNECTION_STRING") or None,
            export_file=os.getenv("IOTHUB_EXPORT_FILE") or DEFAULT_EXPORT_FILE,
            device_limit=_env_int("IOTHUB_DEVICE_LIMIT", DEFAULT_DEVICE_LIMIT),
            force_twin_update=_env_bool("IOTHUB_FORCE_TWIN_UPDATE", True),
            api_version=os.getenv("IOTHUB_API_VERSION") or DEFAULT_API_VERSION,
            log_level=log_level,
        )
