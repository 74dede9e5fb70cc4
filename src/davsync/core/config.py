"""Configuration classes for davsync.

Settings are plain dataclasses that round-trip through JSON via
``from_dict``/``to_dict``. Enum values are stored as their string value.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class ConflictPolicy(str, Enum):
    """Which side wins when a file exists both locally and remotely."""

    OVERWRITE = "overwrite"
    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"
    MERGE = "merge"


class SyncMode(str, Enum):
    """Incremental runs push queued changes; full runs rescan everything."""

    INCREMENTAL = "incremental"
    FULL = "full"


class SyncDirection(str, Enum):
    """Which way content is allowed to flow."""

    BIDIRECTIONAL = "bidirectional"
    UPLOAD_ONLY = "upload_only"
    DOWNLOAD_ONLY = "download_only"

    @property
    def allows_upload(self) -> bool:
        return self is not SyncDirection.DOWNLOAD_ONLY

    @property
    def allows_download(self) -> bool:
        return self is not SyncDirection.UPLOAD_ONLY


class AccountTier(str, Enum):
    """Account tier of a quota-enforcing vendor."""

    FREE = "free"
    PAID = "paid"


class DelayLevel(str, Enum):
    """User-selected pacing level for free-tier accounts."""

    NORMAL = "normal"
    SLOW = "slow"
    VERY_SLOW = "very_slow"


DEFAULT_IGNORE_FOLDERS = [".git", ".obsidian", "node_modules"]
DEFAULT_IGNORE_FILES = [".DS_Store", "desktop.ini", "thumbs.db"]
DEFAULT_IGNORE_EXTENSIONS = ["tmp", "bak", "swp"]


def _enum_or_none(enum_cls: type[Enum], value: Any) -> Any:
    if value is None or value == "":
        return None
    return enum_cls(value)


@dataclass
class WebDAVSettings:
    """Connection settings for one WebDAV server.

    Attributes:
        server_url: Server endpoint (scheme optional, https assumed).
        username: Basic auth user name.
        password: Basic auth password (app password for most vendors).
        base_path: Remote folder that mirrors the local sync root.
        enabled: Whether this provider takes part in sync.
        account_tier: Explicit tier; None lets the vendor infer it from quota.
        delay_level: Pacing level used on free-tier accounts.
        timeout: Per-request timeout in seconds.
    """

    server_url: str
    username: str
    password: str
    base_path: str = ""
    enabled: bool = True
    account_tier: AccountTier | None = None
    delay_level: DelayLevel = DelayLevel.NORMAL
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Normalize user-entered values."""
        self.server_url = self.server_url.strip()
        self.base_path = self.base_path.strip()

    @property
    def is_configured(self) -> bool:
        """Check that URL and credentials are all present."""
        return bool(
            self.server_url and self.username.strip() and self.password.strip()
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WebDAVSettings:
        """Create from a settings dictionary."""
        return cls(
            server_url=data.get("server_url", ""),
            username=data.get("username", ""),
            password=data.get("password", ""),
            base_path=data.get("base_path", ""),
            enabled=data.get("enabled", True),
            account_tier=_enum_or_none(AccountTier, data.get("account_tier")),
            delay_level=DelayLevel(data.get("delay_level", DelayLevel.NORMAL.value)),
            timeout=float(data.get("timeout", 30.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "server_url": self.server_url,
            "username": self.username,
            "password": self.password,
            "base_path": self.base_path,
            "enabled": self.enabled,
            "account_tier": self.account_tier.value if self.account_tier else None,
            "delay_level": self.delay_level.value,
            "timeout": self.timeout,
        }


@dataclass
class EncryptionSettings:
    """Client-side encryption of uploaded content."""

    enabled: bool = False
    key: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EncryptionSettings:
        return cls(enabled=data.get("enabled", False), key=data.get("key", ""))

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "key": self.key}


@dataclass
class SyncSettings:
    """Everything the sync orchestrator consumes.

    Attributes:
        sync_folder: Local directory mirrored to every provider.
        providers: Named WebDAV servers.
        sync_interval: Minutes between automatic runs (0 disables them).
        network_detection: Persisted for the host; davsync never checks connectivity itself.
    """

    sync_folder: str = ""
    providers: dict[str, WebDAVSettings] = field(default_factory=dict)
    encryption: EncryptionSettings = field(default_factory=EncryptionSettings)
    ignore_folders: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_FOLDERS))
    ignore_files: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_FILES))
    ignore_extensions: list[str] = field(
        default_factory=lambda: list(DEFAULT_IGNORE_EXTENSIONS)
    )
    conflict_policy: ConflictPolicy = ConflictPolicy.OVERWRITE
    sync_mode: SyncMode = SyncMode.INCREMENTAL
    sync_direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    enable_sync: bool = True
    sync_interval: int = 0
    delete_remote_extra_files: bool = False
    delete_local_extra_files: bool = False
    network_detection: bool = False

    def enabled_providers(self) -> dict[str, WebDAVSettings]:
        """Providers that are both enabled and fully configured."""
        return {
            name: settings
            for name, settings in self.providers.items()
            if settings.enabled and settings.is_configured
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSettings:
        """Create from a settings dictionary, filling defaults for missing keys."""
        defaults = cls()
        return cls(
            sync_folder=data.get("sync_folder", ""),
            providers={
                name: WebDAVSettings.from_dict(value)
                for name, value in data.get("providers", {}).items()
            },
            encryption=EncryptionSettings.from_dict(data.get("encryption", {})),
            ignore_folders=list(data.get("ignore_folders", defaults.ignore_folders)),
            ignore_files=list(data.get("ignore_files", defaults.ignore_files)),
            ignore_extensions=list(
                data.get("ignore_extensions", defaults.ignore_extensions)
            ),
            conflict_policy=ConflictPolicy(
                data.get("conflict_policy", defaults.conflict_policy.value)
            ),
            sync_mode=SyncMode(data.get("sync_mode", defaults.sync_mode.value)),
            sync_direction=SyncDirection(
                data.get("sync_direction", defaults.sync_direction.value)
            ),
            enable_sync=data.get("enable_sync", True),
            sync_interval=int(data.get("sync_interval", 0)),
            delete_remote_extra_files=data.get("delete_remote_extra_files", False),
            delete_local_extra_files=data.get("delete_local_extra_files", False),
            network_detection=data.get("network_detection", False),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sync_folder": self.sync_folder,
            "providers": {name: p.to_dict() for name, p in self.providers.items()},
            "encryption": self.encryption.to_dict(),
            "ignore_folders": list(self.ignore_folders),
            "ignore_files": list(self.ignore_files),
            "ignore_extensions": list(self.ignore_extensions),
            "conflict_policy": self.conflict_policy.value,
            "sync_mode": self.sync_mode.value,
            "sync_direction": self.sync_direction.value,
            "enable_sync": self.enable_sync,
            "sync_interval": self.sync_interval,
            "delete_remote_extra_files": self.delete_remote_extra_files,
            "delete_local_extra_files": self.delete_local_extra_files,
            "network_detection": self.network_detection,
        }


def load_settings(path: Path) -> SyncSettings:
    """Load settings from a JSON file, returning defaults if it does not exist."""
    if path.exists():
        return SyncSettings.from_dict(json.loads(path.read_text(encoding="utf-8")))
    return SyncSettings()


def save_settings(path: Path, settings: SyncSettings) -> None:
    """Write settings to a JSON file, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
