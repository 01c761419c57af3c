"""
Configuration module for the dose tracker.

Single source of truth for:
- Which event store backs the tracker (local CSV, Azure Blob CSV, remote sheet)
- Where rate settings are persisted
- Display time zone and projection anchor mode
- Logging level / file

All values can be overridden via environment variables.
The projection model itself never reads this; callers pass values in.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Optional


STORE_BACKENDS = ("csv", "azure", "sheet")


def _get_env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _get_env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class Config:
    """
    Runtime configuration for the dose tracker.

    All fields default from environment variables but can be overridden
    programmatically by constructing Config(...) manually if needed.
    """

    # Event store selection: "csv", "azure" or "sheet"
    store_backend: str = "csv"
    events_csv_path: str = os.path.join("data", "dosage_events.csv")

    # Persisted pills-per-interval / hours-per-interval
    rate_settings_path: str = "rate_settings.json"

    # Display only; all arithmetic is on absolute instants
    time_zone: str = "UTC"

    # "first_event" (canonical) or "backward"
    anchor_mode: str = "first_event"

    # Remote spreadsheet web app (store_backend == "sheet")
    sheet_url: Optional[str] = None
    http_timeout: float = 10.0

    # Azure Blob Storage (store_backend == "azure")
    azure_blob_connection_string: Optional[str] = None
    azure_blob_container_name: Optional[str] = None
    azure_blob_name: str = "dosage/events.csv"

    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Config":
        """
        Construct a Config object by reading environment variables.

        Environment variables (all optional):
        - DT_STORE_BACKEND               (csv / azure / sheet)
        - DT_EVENTS_CSV_PATH
        - DT_RATE_SETTINGS_PATH
        - DT_TIME_ZONE                   (IANA name, e.g. Europe/London)
        - DT_ANCHOR_MODE                 (first_event / backward)
        - DT_SHEET_URL
        - DT_HTTP_TIMEOUT                (seconds, float)
        - DT_AZURE_BLOB_CONNECTION_STRING
        - DT_AZURE_BLOB_CONTAINER_NAME
        - DT_AZURE_BLOB_NAME
        - DT_LOG_LEVEL
        - DT_LOG_FILE
        """
        backend = _get_env_str("DT_STORE_BACKEND", "csv").lower()
        if backend not in STORE_BACKENDS:
            backend = "csv"

        anchor_mode = _get_env_str("DT_ANCHOR_MODE", "first_event").lower()
        if anchor_mode not in ("first_event", "backward"):
            anchor_mode = "first_event"

        return cls(
            store_backend=backend,
            events_csv_path=_get_env_str(
                "DT_EVENTS_CSV_PATH", os.path.join("data", "dosage_events.csv")
            ),
            rate_settings_path=_get_env_str(
                "DT_RATE_SETTINGS_PATH", "rate_settings.json"
            ),
            time_zone=_get_env_str("DT_TIME_ZONE", "UTC"),
            anchor_mode=anchor_mode,
            sheet_url=os.getenv("DT_SHEET_URL"),
            http_timeout=_get_env_float("DT_HTTP_TIMEOUT", default=10.0),
            azure_blob_connection_string=os.getenv(
                "DT_AZURE_BLOB_CONNECTION_STRING"
            ),
            azure_blob_container_name=os.getenv(
                "DT_AZURE_BLOB_CONTAINER_NAME"
            ),
            azure_blob_name=_get_env_str("DT_AZURE_BLOB_NAME", "dosage/events.csv"),
            log_level=_get_env_str("DT_LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("DT_LOG_FILE") or None,
        )


# Convenience singleton-style accessor if you want a shared config
_DEFAULT_CONFIG: Optional[Config] = None


def get_config(force_reload: bool = False) -> Config:
    """
    Return a process-wide Config instance.

    Use `force_reload=True` if environment variables changed at runtime
    and you want to refresh.
    """
    global _DEFAULT_CONFIG
    if _DEFAULT_CONFIG is None or force_reload:
        _DEFAULT_CONFIG = Config.from_env()
    return _DEFAULT_CONFIG
