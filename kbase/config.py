"""
Configuration management for knowledge base stores.

The configuration is stored as a TOML file in the store directory.
It names the index database and the store's log level.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import tomli_w


CONFIG_FILENAME = "kbase.toml"
CONFIG_VERSION = 1
DEFAULT_INDEX_FILENAME = "index.db"
DEFAULT_STORE_DIRNAME = ".kbase"


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # SQLite secondary index, relative to the store directory
    index_filename: str = DEFAULT_INDEX_FILENAME
    # Level for the persistent operations log
    log_level: str = "INFO"

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def index_path(self) -> Path:
        """Path to the SQLite index database."""
        return self.path / self.index_filename

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """
    Resolve the store directory.

    KBASE_STORE_PATH wins; otherwise ``.kbase`` in the working directory.
    """
    env = os.environ.get("KBASE_STORE_PATH")
    if env:
        return Path(env).expanduser().resolve()
    return (Path.cwd() / DEFAULT_STORE_DIRNAME).resolve()


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

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    index = data.get("index", {})
    logging_section = data.get("logging", {})
    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        index_filename=index.get("filename", DEFAULT_INDEX_FILENAME),
        log_level=str(logging_section.get("level", "INFO")).upper(),
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
        "index": {
            "filename": config.index_filename,
        },
        "logging": {
            "level": config.log_level,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return config
