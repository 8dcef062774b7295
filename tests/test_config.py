"""Tests for configuration helpers."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from rtscribe import config


def test_list_environment_settings_reflects_defaults():
    entries = {entry.env_name: entry for entry in config.list_environment_settings()}

    assert "RTSCRIBE_APP_ID" in entries
    assert "RTSCRIBE_ACCESS_KEY_SECRET" in entries
    assert "RTSCRIBE_HANDSHAKE_POLICY" in entries
    assert entries["RTSCRIBE_CHUNK_BYTES"].default == 1280
    assert entries["RTSCRIBE_ENDPOINT"].value == config.DEFAULT_ENDPOINT
    assert entries["RTSCRIBE_ACCESS_KEY_SECRET"].is_secret
    assert not entries["RTSCRIBE_APP_ID"].is_secret


def test_environment_overrides_are_loaded(monkeypatch):
    monkeypatch.setenv("RTSCRIBE_APP_ID", "env-app")
    monkeypatch.setenv("RTSCRIBE_SEND_INTERVAL", "0")
    monkeypatch.setenv("RTSCRIBE_HANDSHAKE_POLICY", "await_started")

    settings = config.get_settings()

    assert settings.app_id == "env-app"
    assert settings.send_interval == 0.0
    assert settings.handshake_policy == "await_started"
    assert config.get_settings() is settings


def test_dotenv_file_is_read(tmp_path):
    (tmp_path / ".env").write_text("RTSCRIBE_LANG=cn\nRTSCRIBE_ACCESS_KEY_ID=from-file\n")

    settings = config.Settings()

    assert settings.lang == "cn"
    assert settings.access_key_id == "from-file"


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        config.Settings(chunk_bytes=0)
    with pytest.raises(ValidationError):
        config.Settings(handshake_policy="whenever")


def test_credentials_apply_overrides():
    settings = config.Settings(app_id="a", access_key_id="k", access_key_secret="s", lang="cn")

    credentials = settings.credentials(lang=None)
    english = settings.credentials(lang="en")

    assert credentials.lang == "cn"
    assert english.lang == "en"
    assert english.missing_fields() == []


def test_credentials_report_unset_fields():
    credentials = config.Settings().credentials()

    assert credentials.missing_fields() == ["appId", "accessKeyId", "accessKeySecret"]
