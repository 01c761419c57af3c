"""Pytest configuration and fixtures for the dose tracker tests."""

from datetime import datetime, timezone

import pytest

from dose_tracker.config import get_config
from dose_tracker.data_io import CsvEventStore


T0 = datetime(2025, 3, 14, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0():
    """A fixed first-dose instant (no test reads the clock)."""
    return T0


@pytest.fixture
def events_csv(tmp_path):
    return tmp_path / "data" / "events.csv"


@pytest.fixture
def csv_store(events_csv):
    return CsvEventStore(events_csv)


@pytest.fixture
def dt_env(monkeypatch, tmp_path, events_csv):
    """Point the process-wide Config at a temporary CSV store and rate file."""
    monkeypatch.setenv("DT_STORE_BACKEND", "csv")
    monkeypatch.setenv("DT_EVENTS_CSV_PATH", str(events_csv))
    monkeypatch.setenv("DT_RATE_SETTINGS_PATH", str(tmp_path / "rate_settings.json"))
    monkeypatch.setenv("DT_TIME_ZONE", "UTC")
    monkeypatch.delenv("DT_ANCHOR_MODE", raising=False)
    cfg = get_config(force_reload=True)
    yield cfg
    monkeypatch.undo()
    get_config(force_reload=True)
