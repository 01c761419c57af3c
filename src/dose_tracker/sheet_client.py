"""Client for a spreadsheet web app holding the dosing events.

The web app speaks a small action protocol on a single URL:

- ``GET  ?action=get``                          -> ``{success, data: [{date, value}]}``
- ``GET  ?action=ensureHeaders``                -> ``{success, message, headersChanged}``
- ``POST ?action=add&date=...&floatValue=...``  -> ``{success, message}``
- ``POST ?action=remove&date=...``              -> ``{success, removed, message}``

Failures never propagate into the projection: a failed fetch is an empty
timeline, a failed add/remove is ``False``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from .schema import EventRecord
from .timing import parse_instant, to_utc_iso

LOGGER = logging.getLogger(__name__)


class SheetClientError(RuntimeError):
    """Raised when the client cannot be constructed."""


class SheetClient:
    """Blocking client with coroutine-friendly wrappers."""

    def __init__(
        self,
        base_url: Optional[str],
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise SheetClientError(
                "Sheet web app URL is not configured. Set DT_SHEET_URL."
            )
        self.base_url = base_url
        self.timeout = timeout
        self._session = session or requests.Session()

    def _call(self, action: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        query = {"action": action}
        query.update(params or {})
        method = "GET" if action in ("get", "ensureHeaders") else "POST"

        try:
            response = self._session.request(
                method, self.base_url, params=query, timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.error("Sheet request %s failed: %s", action, exc)
            return {"success": False, "error": str(exc)}

        if not isinstance(payload, dict):
            LOGGER.error("Sheet request %s returned a non-object payload", action)
            return {"success": False, "error": "Malformed response"}
        if not payload.get("success") and payload.get("error"):
            LOGGER.error("Error from sheet API (%s): %s", action, payload["error"])
        return payload

    def fetch_events(self) -> List[EventRecord]:
        """Rows of the sheet, or an empty list if they could not be fetched."""
        payload = self._call("get")
        if not payload.get("success"):
            return []

        data = payload.get("data") or []
        if not isinstance(data, list):
            LOGGER.error("Sheet returned data of type %s", type(data).__name__)
            return []

        return [
            EventRecord(date=item.get("date"), value=item.get("value"))
            for item in data
            if isinstance(item, dict)
        ]

    def append_event(self, amount: float, timestamp: Any) -> bool:
        when = parse_instant(timestamp)
        if when is None:
            LOGGER.warning("Not sending dose with invalid timestamp %r", timestamp)
            return False
        payload = self._call(
            "add", {"date": to_utc_iso(when), "floatValue": str(amount)}
        )
        return bool(payload.get("success"))

    def remove_event(self, timestamp: Any) -> bool:
        when = parse_instant(timestamp)
        if when is None:
            LOGGER.warning("Not sending removal with invalid timestamp %r", timestamp)
            return False
        payload = self._call("remove", {"date": to_utc_iso(when)})
        return bool(payload.get("success") and payload.get("removed"))

    def ensure_headers(self) -> Tuple[bool, str]:
        payload = self._call("ensureHeaders")
        message = payload.get("message") or payload.get("error") or ""
        return bool(payload.get("headersChanged")), message

    async def afetch_events(self) -> List[EventRecord]:
        return await asyncio.to_thread(self.fetch_events)

    async def aappend_event(self, amount: float, timestamp: Any) -> bool:
        return await asyncio.to_thread(self.append_event, amount, timestamp)

    async def aremove_event(self, timestamp: Any) -> bool:
        return await asyncio.to_thread(self.remove_event, timestamp)
