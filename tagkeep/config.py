"""
Configuration management for tag stores.

The configuration is stored as a TOML file in the store directory.
It names the database file and sets connection and startup behavior.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import tomli_w


CONFIG_FILENAME = "tagkeep.toml"
CONFIG_VERSION = 1

DEFAULT_DB_FILENAME = "tagease.db"
DEFAULT_BUSY_TIMEOUT_MS = 5000


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # [database]
    db_filename: str = DEFAULT_DB_FILENAME
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS

    # [reconcile]
    reconcile_on_open: bool = True

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database file."""
        return self.path / self.db_filename

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """
    Store directory when none is given.

    Priority:
    1. TAGKEEP_STORE_PATH environment variable
    2. ~/.tagkeep
    """
    env_path = os.environ.get("TAGKEEP_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".tagkeep"


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    database = data.get("database", {})
    reconcile = data.get("reconcile", {})

    busy_timeout = database.get("busy_timeout_ms", DEFAULT_BUSY_TIMEOUT_MS)
    if not isinstance(busy_timeout, int) or busy_timeout < 0:
        raise ValueError(f"database.busy_timeout_ms must be a non-negative integer: {busy_timeout!r}")

    db_filename = database.get("filename", DEFAULT_DB_FILENAME)
    if not isinstance(db_filename, str) or not db_filename:
        raise ValueError(f"database.filename must be a non-empty string: {db_filename!r}")

    return StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        db_filename=db_filename,
        busy_timeout_ms=busy_timeout,
        reconcile_on_open=bool(reconcile.get("on_open", True)),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "database": {
            "filename": config.db_filename,
            "busy_timeout_ms": config.busy_timeout_ms,
        },
        "reconcile": {
            "on_open": config.reconcile_on_open,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Optional[Path] = None) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    store_path = Path(store_path) if store_path is not None else get_default_store_path()
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return config
