"""Configuration utilities for the davsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

from pathlib import Path

from davsync.core.config import SyncSettings, load_settings, save_settings


def get_config_dir() -> Path:
    """Get the configuration directory for davsync.

    Returns:
        Path to ~/.davsync or equivalent.
    """
    return Path.home() / ".davsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> SyncSettings:
    """Load settings from the config file (defaults if it does not exist)."""
    return load_settings(get_config_file())


def save_config(settings: SyncSettings) -> None:
    """Save settings to the config file."""
    save_settings(get_config_file(), settings)


def get_sync_folder(settings: SyncSettings) -> Path:
    """Get the sync folder path.

    Returns:
        Path to the sync folder (configured or default ~/davsync).
    """
    if settings.sync_folder:
        return Path(settings.sync_folder).expanduser().resolve()
    return Path.home() / "davsync"
