"""Tests for persisted settings."""

import json

import pytest

from vault_git_sync.engine import DEFAULT_COMMIT_MESSAGE
from vault_git_sync.settings import (
    SettingsError,
    SyncSettings,
    load_settings,
    save_settings,
)


class TestSyncSettings:
    """Test SyncSettings."""

    def test_defaults(self):
        settings = SyncSettings()
        assert settings.branch == "main"
        assert settings.commit_message == DEFAULT_COMMIT_MESSAGE
        assert settings.auto_sync_interval == 0
        assert settings.author_name is None

    def test_from_dict_accepts_plugin_keys(self):
        """The plugin's data.json can be used as a settings file."""
        settings = SyncSettings.from_dict({
            "repoUrl": "https://github.com/alice/notes.git",
            "branchName": "vault",
            "username": "alice",
            "autoSyncInterval": 15,
            "autoCommitMessage": "Backup {{date}}",
            "author": {"name": "Alice", "email": "alice@example.com"},
            "somethingElse": True,
        })
        assert settings.remote_url == "https://github.com/alice/notes.git"
        assert settings.branch == "vault"
        assert settings.auto_sync_interval == 15
        assert settings.commit_message == "Backup {{date}}"
        assert (settings.author_name, settings.author_email) == ("Alice", "alice@example.com")

    def test_negative_interval_rejected(self):
        with pytest.raises(SettingsError):
            SyncSettings.from_dict({"auto_sync_interval": -1})

    def test_credentials_carry_token_only_in_memory(self):
        settings = SyncSettings(username="alice", author_name="Alice")
        creds = settings.credentials("tok-123")
        assert creds.username == "alice"
        assert creds.token == "tok-123"
        assert creds.author_name == "Alice"
        assert creds.author_email is None


class TestLoadSave:
    """Test reading and writing the settings file."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_settings(tmp_path / "none.json") == SyncSettings()

    def test_round_trip(self, tmp_path):
        path = tmp_path / "conf" / "config.json"
        settings = SyncSettings(remote_url="https://h/r.git", username="alice", proxy_url="http://localhost:3001")

        assert save_settings(settings, path) == path
        assert load_settings(path) == settings

    def test_token_never_written(self, tmp_path):
        path = save_settings(SyncSettings(username="alice"), tmp_path / "config.json")
        data = json.loads(path.read_text())
        assert "token" not in data
        assert "password" not in data

    def test_stored_token_is_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"remote_url": "https://h/r.git", "token": "leaked"}))
        settings = load_settings(path)
        assert settings.remote_url == "https://h/r.git"
        assert "leaked" not in repr(settings)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(SettingsError):
            load_settings(path)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(SettingsError):
            load_settings(path)
