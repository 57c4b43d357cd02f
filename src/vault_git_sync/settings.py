"""Persisted sync settings.

The sync engine only takes these values as call parameters; this module is
the CLI's settings store. Settings live in a JSON file under the user's
application directory. The token is never written: it is supplied per run
through ``--token`` or the ``VAULT_GIT_SYNC_TOKEN`` environment variable.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import click

from .engine import DEFAULT_COMMIT_MESSAGE
from .models import Credentials
from .transport import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

APP_NAME = "vault-git-sync"
TOKEN_ENV_VAR = "VAULT_GIT_SYNC_TOKEN"

# Keys used by the Obsidian plugin's data.json, mapped to SyncSettings fields.
PLUGIN_KEYS = {
    "repoUrl": "remote_url",
    "branchName": "branch",
    "username": "username",
    "autoSyncInterval": "auto_sync_interval",
    "autoCommitMessage": "commit_message",
}


class SettingsError(Exception):
    """Raised when the settings file cannot be read or written."""


@dataclass
class SyncSettings:
    """Configuration for syncing one vault."""

    remote_url: str = ""
    branch: str = "main"
    username: str = ""
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    auto_sync_interval: float = 0
    commit_message: str = DEFAULT_COMMIT_MESSAGE
    proxy_url: Optional[str] = None
    network_timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncSettings":
        """Build settings from a dict, ignoring unknown keys.

        Accepts both this tool's keys and the Obsidian plugin's camelCase keys.
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            key = PLUGIN_KEYS.get(key, key)
            if key in known:
                values[key] = value

        author = data.get("author")
        if isinstance(author, dict):
            values.setdefault("author_name", author.get("name") or None)
            values.setdefault("author_email", author.get("email") or None)

        settings = cls(**values)
        settings.validate()
        return settings

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def validate(self) -> None:
        if not isinstance(self.auto_sync_interval, (int, float)) or self.auto_sync_interval < 0:
            raise SettingsError("auto_sync_interval must be a number of minutes >= 0")
        if not isinstance(self.network_timeout, (int, float)) or self.network_timeout <= 0:
            raise SettingsError("network_timeout must be a positive number of seconds")
        if not self.branch:
            raise SettingsError("branch must not be empty")

    def credentials(self, token: str = "") -> Credentials:
        """Credentials for one sync call."""
        return Credentials(
            username=self.username,
            token=token,
            author_name=self.author_name,
            author_email=self.author_email,
        )


def default_settings_path() -> Path:
    """Path to the settings file in the user's application directory."""
    return Path(click.get_app_dir(APP_NAME)) / "config.json"


def load_settings(path: Optional[Path] = None) -> SyncSettings:
    """Load settings, falling back to defaults if the file does not exist.

    Args:
        path: Settings file. Defaults to :func:`default_settings_path`.

    Returns:
        The loaded settings.

    Raises:
        SettingsError: If the file exists but is not valid JSON settings.
    """
    path = path or default_settings_path()
    if not path.exists():
        logger.debug(f"No settings file at {path}, using defaults")
        return SyncSettings()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise SettingsError(f"Failed to read settings: {path}\nError: {e}") from e

    if not isinstance(data, dict):
        raise SettingsError(f"Settings file must contain a JSON object: {path}")
    if "token" in data or "password" in data:
        logger.warning(f"Ignoring secret stored in {path}; use {TOKEN_ENV_VAR} instead")
    return SyncSettings.from_dict(data)


def save_settings(settings: SyncSettings, path: Optional[Path] = None) -> Path:
    """Write settings as JSON. Never includes a token.

    Args:
        settings: Settings to persist.
        path: Settings file. Defaults to :func:`default_settings_path`.

    Returns:
        The path written.

    Raises:
        SettingsError: If the file cannot be written.
    """
    settings.validate()
    path = path or default_settings_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(settings.to_dict(), f, indent=2)
    except OSError as e:
        raise SettingsError(f"Failed to write settings: {path}\nError: {e}") from e
    logger.info(f"Saved settings to {path}")
    return path
