"""
Pure math for the dosage projection model.

No I/O, no clock reads. Just:
- Rate from the two configured inputs
- Normalization of raw event records into a sorted timeline
- The deficit curve (ramp between doses, vertical drop at each dose)
- Summary statistics ("owed now", time until half/full unit is owed)
- numpy views of the deficit for plotting
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .schema import (
    AnchorMode,
    DosageEvent,
    DosageStatistics,
    EventRecord,
    Projection,
    ProjectionPoint,
)
from .timing import SECONDS_PER_HOUR, hours_between, parse_instant

logger = logging.getLogger(__name__)

HALF_UNIT = 0.5
FULL_UNIT = 1.0


def _to_float(value: Any) -> Optional[float]:
    """Parse a number-like value; None if it is not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def compute_rate(pills_per_interval: Any, hours_per_interval: Any) -> float:
    """
    Units per hour = pills_per_interval / hours_per_interval.

    Returns 0.0 if either input is missing or non-numeric, if
    hours_per_interval is 0, or if the ratio would be negative.
    """
    pills = _to_float(pills_per_interval)
    hours = _to_float(hours_per_interval)
    if pills is None or hours is None or hours == 0.0:
        return 0.0

    rate = pills / hours
    if rate < 0.0:
        logger.warning(
            "Negative rate %s/%s ignored; using 0", pills_per_interval, hours_per_interval
        )
        return 0.0
    return rate


def _safe_rate(rate: Any) -> float:
    value = _to_float(rate)
    if value is None or value < 0.0:
        logger.warning("Invalid rate %r; using 0", rate)
        return 0.0
    return value


# --- Timeline normalization ----------------------------------------------------


def _event_fields(raw: Any) -> Tuple[Any, Any]:
    """Pull (timestamp, amount) out of any supported event shape."""
    if isinstance(raw, DosageEvent):
        return raw.timestamp, raw.amount
    if isinstance(raw, EventRecord):
        return raw.date, raw.value
    if isinstance(raw, Mapping):
        if "timestamp" in raw or "amount" in raw:
            return raw.get("timestamp"), raw.get("amount")
        return raw.get("date"), raw.get("value")
    if isinstance(raw, (tuple, list)) and len(raw) == 2:
        return raw[0], raw[1]
    return getattr(raw, "timestamp", None), getattr(raw, "amount", None)


def normalize_events(events: Iterable[Any]) -> List[DosageEvent]:
    """
    Turn raw events into a timeline sorted ascending by timestamp.

    Accepts DosageEvent, EventRecord, mappings ("amount"/"timestamp" or the
    store's "value"/"date") and (timestamp, amount) pairs.

    - An event whose timestamp cannot be parsed is dropped (warning logged).
    - An amount that cannot be parsed counts as 0 (warning logged).

    Sorting is stable, so events sharing a timestamp keep their input order.
    """
    timeline: List[DosageEvent] = []
    for index, raw in enumerate(events or ()):
        raw_timestamp, raw_amount = _event_fields(raw)

        timestamp = parse_instant(raw_timestamp)
        if timestamp is None:
            logger.warning(
                "Skipping event #%d with malformed timestamp %r", index, raw_timestamp
            )
            continue

        amount = _to_float(raw_amount)
        if amount is None:
            logger.warning(
                "Event at %s has malformed amount %r; counting it as 0",
                timestamp.isoformat(),
                raw_amount,
            )
            amount = 0.0

        timeline.append(DosageEvent(amount=amount, timestamp=timestamp))

    timeline.sort(key=lambda e: e.timestamp)
    return timeline


def _ideal_origin(rate: float, timeline: Sequence[DosageEvent], anchor: AnchorMode) -> datetime:
    """Instant at which the ideal cumulative intake is zero."""
    first = timeline[0]
    if anchor is AnchorMode.BACKWARD and rate > 0.0 and first.amount > 0.0:
        try:
            return first.timestamp - timedelta(hours=first.amount / rate)
        except OverflowError:
            logger.warning(
                "Backward anchor out of range for rate %s; anchoring at first event", rate
            )
    return first.timestamp


def _append_vertex(curve: List[ProjectionPoint], at: datetime, deficit: float) -> None:
    # No zero-length segments: drop a vertex identical to the previous one
    if curve and curve[-1].at == at and curve[-1].deficit == deficit:
        return
    curve.append(ProjectionPoint(at=at, deficit=deficit))


def _offset_instant(now: datetime, hours: float) -> Optional[datetime]:
    try:
        return now + timedelta(hours=hours)
    except OverflowError:
        return None


# --- Projection ----------------------------------------------------------------


def project(
    rate: float,
    events: Iterable[Any],
    now: Any,
    *,
    anchor: AnchorMode | str = AnchorMode.FIRST_EVENT,
) -> Projection:
    """
    Project a constant intake rate over a dosing timeline.

    With t0 the earliest event, ideal(t) = rate * hours(t0, t) is what should
    have been taken by t. Walking the sorted timeline:

        before each dose:  (t, ideal(t) - given)
        after each dose:   (t, ideal(t) - given - amount)

    then a final vertex for `now` with the live deficit, dropped when it
    repeats the last dose vertex. If `now` precedes the last dose that
    vertex is placed at the last dose, so `curve[-1].at` can differ from
    `Projection.now`. The curve itself is not clamped (negative = surplus);
    `current_deficit` is clamped at 0.

    Threshold statistics answer "in how many hours does the owed amount
    reach 0.5 / 1.0 units" and are negative when that is already past.
    They are None when the rate is 0. With no usable events the curve is
    empty and every statistic is None.

    `now` is required: the model never reads a clock.
    """
    rate_value = _safe_rate(rate)
    anchor = AnchorMode(anchor)

    now_dt = parse_instant(now)
    if now_dt is None:
        raise ValueError(f"now must be an instant (got {now!r}).")

    timeline = normalize_events(events)
    if not timeline:
        return Projection(
            curve=(),
            stats=DosageStatistics(),
            rate=rate_value,
            now=now_dt,
            anchor=anchor,
        )

    origin = _ideal_origin(rate_value, timeline, anchor)

    def ideal(t: datetime) -> float:
        return rate_value * hours_between(origin, t)

    curve: List[ProjectionPoint] = []
    given = 0.0
    for event in timeline:
        needed = ideal(event.timestamp)
        _append_vertex(curve, event.timestamp, needed - given)
        given += event.amount
        _append_vertex(curve, event.timestamp, needed - given)

    needed_now = ideal(now_dt)
    live_deficit = needed_now - given

    # A `now` earlier than the last dose (clock skew, future-dated entries)
    # still gets its vertex, but plotted at the last dose: its `at` is then
    # later than `now` while its deficit is the one evaluated at `now`.
    _append_vertex(curve, max(now_dt, timeline[-1].timestamp), live_deficit)

    current_deficit = max(0.0, live_deficit)

    half_hours: Optional[float] = None
    full_hours: Optional[float] = None
    if rate_value > 0.0:
        half_hours = (HALF_UNIT - current_deficit) / rate_value
        full_hours = (FULL_UNIT - current_deficit) / rate_value

    stats = DosageStatistics(
        total_given=given,
        total_ideally_needed_by_now=needed_now,
        current_deficit=current_deficit,
        hours_until_half_unit_owed=half_hours,
        hours_until_full_unit_owed=full_hours,
        half_unit_owed_at=_offset_instant(now_dt, half_hours) if half_hours is not None else None,
        full_unit_owed_at=_offset_instant(now_dt, full_hours) if full_hours is not None else None,
    )

    return Projection(
        curve=tuple(curve),
        stats=stats,
        rate=rate_value,
        now=now_dt,
        anchor=anchor,
        events=tuple(timeline),
    )


# --- numpy views -------------------------------------------------------------------


def curve_arrays(
    curve: Sequence[ProjectionPoint],
    origin: Optional[datetime] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return (hours, deficit) arrays for plotting a curve.

    hours are measured from `origin` (default: the first vertex) and keep
    their sign, so vertices before the origin are negative.
    """
    if not curve:
        return np.empty(0, dtype=float), np.empty(0, dtype=float)

    start = origin if origin is not None else curve[0].at
    hours = np.fromiter(
        ((p.at - start).total_seconds() / SECONDS_PER_HOUR for p in curve),
        dtype=float,
        count=len(curve),
    )
    deficit = np.fromiter((p.deficit for p in curve), dtype=float, count=len(curve))
    return hours, deficit


def sample_deficit(
    rate: float,
    events: Iterable[Any],
    start: Any,
    end: Any,
    step_h: float,
    *,
    anchor: AnchorMode | str = AnchorMode.FIRST_EVENT,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Evaluate the deficit on a regular grid from `start` to `end`.

    Returns (hours since start, deficit). A dose exactly on a grid instant
    counts as already given at that instant. No usable events gives empty
    arrays, matching the empty curve of `project`.
    """
    if not (step_h > 0):
        raise ValueError(f"step_h must be > 0 (got {step_h}).")

    start_dt = parse_instant(start)
    end_dt = parse_instant(end)
    if start_dt is None or end_dt is None:
        raise ValueError(f"start/end must be instants (got {start!r}, {end!r}).")
    if end_dt < start_dt:
        raise ValueError("end must not precede start.")

    rate_value = _safe_rate(rate)
    timeline = normalize_events(events)
    if not timeline:
        return np.empty(0, dtype=float), np.empty(0, dtype=float)

    origin = _ideal_origin(rate_value, timeline, AnchorMode(anchor))

    def _hours_from_start(t: datetime) -> float:
        return (t - start_dt).total_seconds() / SECONDS_PER_HOUR

    span_h = _hours_from_start(end_dt)
    # Small epsilon so `end` itself is on the grid when span is a multiple of step
    grid = np.arange(0.0, span_h + step_h * 1e-9, step_h, dtype=float)

    event_h = np.asarray([_hours_from_start(e.timestamp) for e in timeline], dtype=float)
    amounts = np.asarray([e.amount for e in timeline], dtype=float)
    given_after = np.concatenate(([0.0], np.cumsum(amounts)))

    given = given_after[np.searchsorted(event_h, grid, side="right")]
    ideal = rate_value * np.abs(grid - _hours_from_start(origin))
    return grid, ideal - given
