"""Tests for environment-driven configuration."""

import pytest

from dose_tracker.config import Config, get_config

DT_VARS = [
    "DT_STORE_BACKEND",
    "DT_EVENTS_CSV_PATH",
    "DT_RATE_SETTINGS_PATH",
    "DT_TIME_ZONE",
    "DT_ANCHOR_MODE",
    "DT_SHEET_URL",
    "DT_HTTP_TIMEOUT",
    "DT_AZURE_BLOB_CONNECTION_STRING",
    "DT_AZURE_BLOB_CONTAINER_NAME",
    "DT_AZURE_BLOB_NAME",
    "DT_LOG_LEVEL",
    "DT_LOG_FILE",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in DT_VARS:
        monkeypatch.delenv(name, raising=False)
    yield monkeypatch
    monkeypatch.undo()
    get_config(force_reload=True)


def test_defaults(clean_env):
    cfg = Config.from_env()
    assert cfg == Config()
    assert cfg.store_backend == "csv"
    assert cfg.anchor_mode == "first_event"
    assert cfg.time_zone == "UTC"
    assert cfg.http_timeout == 10.0
    assert cfg.sheet_url is None


def test_overrides(clean_env):
    clean_env.setenv("DT_STORE_BACKEND", "Sheet")
    clean_env.setenv("DT_SHEET_URL", "https://example.test/exec")
    clean_env.setenv("DT_HTTP_TIMEOUT", "2.5")
    clean_env.setenv("DT_TIME_ZONE", "Europe/London")
    clean_env.setenv("DT_ANCHOR_MODE", "BACKWARD")
    clean_env.setenv("DT_LOG_LEVEL", "debug")
    clean_env.setenv("DT_LOG_FILE", "logs/dose.log")

    cfg = Config.from_env()
    assert cfg.store_backend == "sheet"
    assert cfg.sheet_url == "https://example.test/exec"
    assert cfg.http_timeout == 2.5
    assert cfg.time_zone == "Europe/London"
    assert cfg.anchor_mode == "backward"
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file == "logs/dose.log"


@pytest.mark.parametrize(
    "name, value, field, expected",
    [
        ("DT_STORE_BACKEND", "postgres", "store_backend", "csv"),
        ("DT_ANCHOR_MODE", "sideways", "anchor_mode", "first_event"),
        ("DT_HTTP_TIMEOUT", "soon", "http_timeout", 10.0),
        ("DT_EVENTS_CSV_PATH", "   ", "events_csv_path", Config().events_csv_path),
    ],
)
def test_invalid_values_fall_back(clean_env, name, value, field, expected):
    clean_env.setenv(name, value)
    assert getattr(Config.from_env(), field) == expected


def test_get_config_is_cached_until_reload(clean_env):
    first = get_config(force_reload=True)
    clean_env.setenv("DT_TIME_ZONE", "Asia/Tokyo")
    assert get_config() is first
    assert get_config(force_reload=True).time_zone == "Asia/Tokyo"
