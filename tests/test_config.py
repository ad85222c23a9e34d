"""Unit tests for settings validation."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from vhostlog.core.config import get_settings
from vhostlog.core.exceptions import EXIT_CONFIG, ConfigurationError


def test_defaults() -> None:
    settings = get_settings()
    assert settings.TEMPLATE == "%Y%m%d-access.log"
    assert settings.ROTATE is True
    assert settings.MAX_HANDLES == 100
    assert settings.FLUSH is True
    assert settings.ACCOUNTING is False


def test_environment_is_read_with_prefix(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("VHOSTLOG_MAX_HANDLES", "7")
    monkeypatch.setenv("VHOSTLOG_BASE_DIR", str(tmp_path))
    settings = get_settings()
    assert settings.MAX_HANDLES == 7
    assert settings.BASE_DIR == tmp_path


def test_overrides_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VHOSTLOG_SUBDIR", "from-env")
    assert get_settings(SUBDIR="from-cli").SUBDIR == "from-cli"


def test_dotenv_file_is_loaded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("VHOSTLOG_IGNORE_WWW", raising=False)
    (tmp_path / ".env").write_text("VHOSTLOG_IGNORE_WWW=true\n", encoding="utf-8")
    try:
        assert get_settings().IGNORE_WWW is True
    finally:
        os.environ.pop("VHOSTLOG_IGNORE_WWW", None)


@pytest.mark.parametrize(
    "overrides",
    [
        {"TEMPLATE": ""},
        {"TEMPLATE": "/etc/%Y%m%d.log"},
        {"STATIC_FILENAME": "   "},
        {"SYMLINK_NAME": "../escape"},
        {"MAX_HANDLES": 0},
        {"FLUSH_INTERVAL": 0},
        {"LOG_FORMAT": "json"},
        {"ACCOUNTING": True},
    ],
)
def test_invalid_settings_are_rejected_up_front(overrides: dict) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        get_settings(**overrides)
    assert excinfo.value.exit_code == EXIT_CONFIG


def test_log_format_is_case_insensitive() -> None:
    assert get_settings(LOG_FORMAT="Combined").LOG_FORMAT == "combined"


def test_accounting_with_database_url() -> None:
    settings = get_settings(ACCOUNTING=True, DATABASE_URL="sqlite://")
    assert settings.DATABASE_URL == "sqlite://"
