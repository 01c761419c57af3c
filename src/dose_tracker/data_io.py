"""
Data I/O utilities.

Provides thin event stores over a two-column sheet (Date, Amount):
- CsvEventStore: a local CSV file
- AzureBlobEventStore: the same CSV kept in Azure Blob Storage
- get_event_store: pick a store (or the remote sheet client) from Config

plus JSON persistence of the rate settings and a CSV export of a curve.

Dependencies:
- Standard library only for local CSV / JSON.
- For Azure Blob: `azure-storage-blob` package is required.
"""

from __future__ import annotations

import csv
import json
import logging
import math
from io import StringIO
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from .config import Config, get_config
from .dosage_model import curve_arrays
from .schema import (
    DEFAULT_HOURS_PER_INTERVAL,
    DEFAULT_PILLS_PER_INTERVAL,
    EventRecord,
    ProjectionPoint,
    RateSettings,
)
from .timing import parse_instant

try:
    from azure.storage.blob import BlobServiceClient  # type: ignore[import]
except ImportError:  # pragma: no cover - optional dependency
    BlobServiceClient = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

DATE_HEADER = "Date"
AMOUNT_HEADER = "Amount"
HEADERS = [DATE_HEADER, AMOUNT_HEADER]


# --- Sheet codec -------------------------------------------------------------


def _parse_rows(text: str) -> List[List[str]]:
    return [row for row in csv.reader(StringIO(text)) if any(cell.strip() for cell in row)]


def _format_rows(rows: Iterable[List[Any]]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def _ensure_header_row(rows: List[List[str]]) -> Tuple[bool, str]:
    """
    Make sure the first row is exactly Date, Amount (in place).

    Returns (changed, message).
    """
    if not rows:
        rows.append(list(HEADERS))
        return True, "Headers added to empty sheet."

    if [cell.strip() for cell in rows[0][:2]] != HEADERS:
        rows.insert(0, list(HEADERS))
        return True, "Headers (re-)inserted at the first row."

    return False, "Headers already exist and are correct."


def _amount_cell(value: str) -> Any:
    """Amount cell as read: float if numeric, None if blank, else the raw text."""
    text = value.strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return text


def _records_from_rows(rows: List[List[str]]) -> List[EventRecord]:
    records: List[EventRecord] = []
    for row in rows[1:]:
        date_cell = row[0].strip() if len(row) > 0 else ""
        amount = _amount_cell(row[1]) if len(row) > 1 else None
        records.append(EventRecord(date=date_cell, value=amount))
    return records


def _validate_new_event(amount: Any, timestamp: Any):
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid floatValue: '{amount}'. Must be a number.")
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"Invalid floatValue: '{amount}'. Must be a positive number.")

    when = parse_instant(timestamp)
    if when is None:
        raise ValueError(f"Invalid date string: '{timestamp}'. Could not parse.")
    return value, when


# --- Stores ------------------------------------------------------------------


class _SheetStore:
    """
    Event store over CSV text with a Date, Amount header row.

    Subclasses only say where the text lives (_read_text / _write_text).
    """

    def _read_text(self) -> str:
        raise NotImplementedError

    def _write_text(self, text: str) -> None:
        raise NotImplementedError

    def _load_rows(self) -> List[List[str]]:
        return _parse_rows(self._read_text())

    def _save_rows(self, rows: List[List[Any]]) -> None:
        self._write_text(_format_rows(rows))

    def ensure_headers(self) -> Tuple[bool, str]:
        """Write the header row if it is missing. Returns (changed, message)."""
        rows = self._load_rows()
        changed, message = _ensure_header_row(rows)
        if changed:
            self._save_rows(rows)
        logger.info(message)
        return changed, message

    def fetch_events(self) -> List[EventRecord]:
        """
        All rows below the header, in sheet order.

        A missing or wrong header row is repaired first, so a sheet holding
        a single dose and no header reads as that dose.
        """
        rows = self._load_rows()
        if not rows:
            return []
        changed, _ = _ensure_header_row(rows)
        if changed:
            self._save_rows(rows)
        return _records_from_rows(rows)

    def append_event(self, amount: Any, timestamp: Any) -> EventRecord:
        """
        Append one dose.

        Raises ValueError if the amount is not a positive number or the
        timestamp cannot be parsed.
        """
        value, when = _validate_new_event(amount, timestamp)

        rows = self._load_rows()
        _ensure_header_row(rows)
        record = EventRecord(date=when.isoformat(), value=value)
        rows.append([record.date, repr(value)])
        self._save_rows(rows)

        logger.info("Added %s at %s", value, record.date)
        return record

    def remove_event(self, timestamp: Any) -> bool:
        """
        Remove one dose recorded at the same instant as `timestamp`.

        The sheet is scanned from the bottom and only the first match is
        removed. Events have no id, so of several doses sharing a timestamp
        the most recently appended one goes.
        """
        target = parse_instant(timestamp)
        if target is None:
            raise ValueError(f"Invalid date string for removal: '{timestamp}'.")

        rows = self._load_rows()
        if len(rows) <= 1:
            return False

        _ensure_header_row(rows)
        for i in range(len(rows) - 1, 0, -1):
            cell = rows[i][0] if rows[i] else ""
            when = parse_instant(cell.strip())
            if when is None:
                continue
            if when == target:
                del rows[i]
                self._save_rows(rows)
                logger.info("Removed dose at %s", target.isoformat())
                return True

        logger.info("No dose found at %s", target.isoformat())
        return False


class CsvEventStore(_SheetStore):
    """Event sheet kept in a local CSV file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read_text(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")

    def _write_text(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, mode="w", newline="", encoding="utf-8") as f:
            f.write(text)


# --- Azure Blob helpers ----------------------------------------------------


def _get_blob_service(config: Optional[Config] = None):
    if BlobServiceClient is None:
        raise ImportError(
            "azure-storage-blob is required for Azure Blob operations. "
            "Install via `pip install azure-storage-blob`."
        )
    cfg = config or get_config()
    if not cfg.azure_blob_connection_string:
        raise ValueError(
            "Azure blob connection string is not configured. "
            "Set DT_AZURE_BLOB_CONNECTION_STRING or pass Config explicitly."
        )
    return BlobServiceClient.from_connection_string(
        cfg.azure_blob_connection_string
    ), cfg


class AzureBlobEventStore(_SheetStore):
    """
    Event sheet kept as a CSV blob in Azure Blob Storage.

    - blob_name: name of the blob (e.g., 'dosage/events.csv')
    - container_name: overrides Config.azure_blob_container_name if provided
    """

    def __init__(
        self,
        blob_name: str,
        *,
        container_name: Optional[str] = None,
        config: Optional[Config] = None,
    ) -> None:
        service_client, cfg = _get_blob_service(config)
        container = container_name or cfg.azure_blob_container_name
        if not container:
            raise ValueError(
                "Azure blob container name is not configured. "
                "Set DT_AZURE_BLOB_CONTAINER_NAME or pass container_name."
            )
        self.blob_name = blob_name
        self.container = container
        self._blob_client = service_client.get_blob_client(
            container=container, blob=blob_name
        )

    def _read_text(self) -> str:
        if not self._blob_client.exists():
            return ""
        return self._blob_client.download_blob().readall().decode("utf-8")

    def _write_text(self, text: str) -> None:
        self._blob_client.upload_blob(text.encode("utf-8"), overwrite=True)


def get_event_store(config: Optional[Config] = None):
    """
    Return the event store selected by `config.store_backend`.

    All backends offer fetch_events / append_event / remove_event /
    ensure_headers.
    """
    cfg = config or get_config()
    if cfg.store_backend == "azure":
        return AzureBlobEventStore(cfg.azure_blob_name, config=cfg)
    if cfg.store_backend == "sheet":
        from .sheet_client import SheetClient

        return SheetClient(cfg.sheet_url, timeout=cfg.http_timeout)
    return CsvEventStore(cfg.events_csv_path)


# --- Rate settings -----------------------------------------------------------


def load_rate_settings(path: str | Path) -> RateSettings:
    """
    Load RateSettings from a JSON file.

    Expected keys: pills_per_interval, hours_per_interval.
    A missing file gives the defaults (1 unit every 8 hours); so does an
    unreadable one, with a warning.
    """
    path = Path(path)
    if not path.exists():
        return RateSettings()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load rate settings from {path}: {e}")
        return RateSettings()

    if not isinstance(data, dict):
        logger.warning(f"Rate settings in {path} are not an object; using defaults")
        return RateSettings()

    return RateSettings(
        pills_per_interval=data.get("pills_per_interval", DEFAULT_PILLS_PER_INTERVAL),
        hours_per_interval=data.get("hours_per_interval", DEFAULT_HOURS_PER_INTERVAL),
    )


def save_rate_settings(settings: RateSettings, path: str | Path) -> None:
    """Persist RateSettings as JSON (the derived rate is stored alongside)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = settings.to_dict()
    payload["rate"] = settings.rate
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


# --- Curve export ------------------------------------------------------------


def save_curve_to_csv(curve: Iterable[ProjectionPoint], path: str | Path) -> None:
    """
    Save a deficit curve to a CSV file.

    Columns:
    at, hours (since the first point), deficit
    """
    points = list(curve)
    hours, _ = curve_arrays(points)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, mode="w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=["at", "hours", "deficit"])
        writer.writeheader()
        for point, offset in zip(points, hours.tolist()):
            row = point.to_dict()
            row["hours"] = offset
            writer.writerow(row)
