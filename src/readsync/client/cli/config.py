"""Configuration utilities for the readsync CLI.

This module provides shared configuration functions used across CLI
commands: the config directory, the JSON config file, and factories that
turn the stored configuration into a local store and an engine selector.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from readsync.client.backends import PostgrestBackend, RestBackend
from readsync.client.backends.base import BackendAdapter
from readsync.client.notifications import NotificationCenter
from readsync.client.state import LocalLibraryStore
from readsync.client.sync import EngineSelector
from readsync.core.config import PostgrestConfig, RestConfig, SyncSettings

CONFIG_DIR_ENV = "READSYNC_HOME"


def get_config_dir() -> Path:
    """Get the configuration directory for readsync.

    Returns:
        Path to $READSYNC_HOME, or ~/.readsync.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".readsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_database_path() -> Path:
    """Get the path to the local library database."""
    return get_config_dir() / "library.db"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def load_settings(config: dict[str, Any]) -> SyncSettings:
    """Build sync settings from the ``sync`` section of the config."""
    return SyncSettings(**config.get("sync", {}))


def open_store() -> LocalLibraryStore:
    """Open the local library database."""
    return LocalLibraryStore(get_database_path())


def build_backends(
    config: dict[str, Any], settings: SyncSettings, store: LocalLibraryStore
) -> list[BackendAdapter]:
    """Instantiate every backend that has a config section."""
    backends: list[BackendAdapter] = []
    if "rest" in config:
        backends.append(RestBackend(RestConfig(**config["rest"]), settings, store))
    if "postgrest" in config:
        backends.append(PostgrestBackend(PostgrestConfig(**config["postgrest"]), settings, store))
    return backends


def build_selector(
    store: LocalLibraryStore, notifier: NotificationCenter | None = None
) -> EngineSelector:
    """Build the engine selector from the stored configuration."""
    config = load_config()
    settings = load_settings(config)
    return EngineSelector(
        store, build_backends(config, settings, store), settings=settings, notifier=notifier
    )
