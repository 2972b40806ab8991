#!/usr/bin/env python3
"""Runtime configuration for the Entity Synchronization Engine.

Settings are read from the environment after loading a local ``.env`` file
(if present) with python-dotenv, so a developer can keep per-machine values
out of the shell profile:

    ENTSYNC_DB_PATH        Ledger database file (default: entsync.db)
    ENTSYNC_DRY_RUN        Skip HTTP writes and echo payloads (default: false)
    ENTSYNC_HEARTBEAT_TTL  Seconds a successful heartbeat is cached (default: 300)
    ENTSYNC_HTTP_TIMEOUT   HTTP timeout in seconds (default: 60)
    ENTSYNC_LOG_LEVEL      Log level used by the CLI (default: INFO)

Example:
    config = SyncConfig.from_env()
    store = SyncStore(config.db_path, command="sync-users")

Author: Entity Sync Team
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


def _parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"{key} must be a boolean, got {value!r}",
        details={"key": key},
    )


def _parse_number(key: str, value: str, cast=int):
    try:
        number = cast(value)
    except ValueError as e:
        raise ConfigurationError(
            f"{key} must be a number, got {value!r}",
            details={"key": key},
            cause=e,
        )
    if number < 0:
        raise ConfigurationError(f"{key} must not be negative", details={"key": key})
    return number


@dataclass
class SyncConfig:
    """Engine settings.

    Attributes:
        db_path: Path of the SQLite ledger (":memory:" for a throwaway ledger)
        dry_run: When True, HTTP providers do not send write requests
        heartbeat_ttl: Seconds a successful heartbeat is trusted
        http_timeout: Timeout applied to every HTTP request
        log_level: Name of the log level the CLI configures
    """
    db_path: str = "entsync.db"
    dry_run: bool = False
    heartbeat_ttl: int = 300
    http_timeout: float = 60.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "SyncConfig":
        """Build settings from the environment.

        Args:
            env_file: Optional path of a dotenv file to load first

        Raises:
            ConfigurationError: If a variable holds a value of the wrong shape
        """
        load_dotenv(env_file)

        level = os.getenv("ENTSYNC_LOG_LEVEL", "INFO").upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigurationError(
                f"Unknown log level: {level}",
                details={"key": "ENTSYNC_LOG_LEVEL"},
            )

        db_path = os.getenv("ENTSYNC_DB_PATH", "entsync.db").strip()
        if not db_path:
            raise ConfigurationError(
                "Ledger path is required. Set ENTSYNC_DB_PATH or leave it unset for the default.",
                missing_keys=["ENTSYNC_DB_PATH"],
            )

        return cls(
            db_path=db_path,
            dry_run=_parse_bool("ENTSYNC_DRY_RUN", os.getenv("ENTSYNC_DRY_RUN", "false")),
            heartbeat_ttl=_parse_number(
                "ENTSYNC_HEARTBEAT_TTL", os.getenv("ENTSYNC_HEARTBEAT_TTL", "300")
            ),
            http_timeout=_parse_number(
                "ENTSYNC_HTTP_TIMEOUT", os.getenv("ENTSYNC_HTTP_TIMEOUT", "60"), float
            ),
            log_level=level,
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging the way the CLI expects."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


__all__ = ["SyncConfig", "configure_logging"]
