"""
Data schemas for the dose tracker.

Defines:
- DosageEvent: a single administered amount at an instant
- EventRecord: a raw row as kept by an event store
- ProjectionPoint / DosageStatistics / Projection: output of the projection
- RateSettings: the two persisted inputs that define the intake rate
- AnchorMode: where the ideal-intake line starts
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple


DEFAULT_PILLS_PER_INTERVAL = 1.0
DEFAULT_HOURS_PER_INTERVAL = 8.0


class AnchorMode(str, Enum):
    """
    Where the ideal cumulative intake line is anchored.

    FIRST_EVENT: ideal(t) = rate * hours(t0, t), zero at the first dose.
    BACKWARD:    the line is projected back from the first dose so that the
                 first dose exactly covers what was owed at that moment.
    """

    FIRST_EVENT = "first_event"
    BACKWARD = "backward"


@dataclass(frozen=True)
class DosageEvent:
    """
    One administered dose.

    Events carry no surrogate id; two events are the "same" event for
    removal purposes when their timestamps are the same instant.
    """

    amount: float
    timestamp: datetime


@dataclass(frozen=True)
class EventRecord:
    """
    A row as read from an event store (columns Date, Amount).

    Values are kept as read; parsing and the per-record fail-soft rules
    are applied by the projection model.
    """

    date: Any
    value: Any = None

    def to_dict(self) -> dict:
        return {"date": self.date, "value": self.value}


@dataclass(frozen=True)
class ProjectionPoint:
    """One vertex of the deficit curve. Negative deficit means surplus."""

    at: datetime
    deficit: float

    def to_dict(self) -> dict:
        return {"at": self.at.isoformat(), "deficit": self.deficit}


@dataclass(frozen=True)
class DosageStatistics:
    """
    Scalar snapshot derived from a projection.

    Every field is None when unavailable (no events, or for the threshold
    fields, a zero rate). None is never used for a legitimate 0.0.
    """

    total_given: Optional[float] = None
    total_ideally_needed_by_now: Optional[float] = None
    current_deficit: Optional[float] = None
    hours_until_half_unit_owed: Optional[float] = None
    hours_until_full_unit_owed: Optional[float] = None

    # Absolute instants for the two thresholds (now + hours)
    half_unit_owed_at: Optional[datetime] = None
    full_unit_owed_at: Optional[datetime] = None

    @property
    def is_available(self) -> bool:
        return self.current_deficit is not None

    @property
    def thresholds_available(self) -> bool:
        return self.hours_until_half_unit_owed is not None

    def to_dict(self) -> dict:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value is not None else None

        return {
            "total_given": self.total_given,
            "total_ideally_needed_by_now": self.total_ideally_needed_by_now,
            "current_deficit": self.current_deficit,
            "hours_until_half_unit_owed": self.hours_until_half_unit_owed,
            "hours_until_full_unit_owed": self.hours_until_full_unit_owed,
            "half_unit_owed_at": _iso(self.half_unit_owed_at),
            "full_unit_owed_at": _iso(self.full_unit_owed_at),
        }


@dataclass(frozen=True)
class Projection:
    """Result of projecting a rate over a timeline at a given `now`."""

    curve: Tuple[ProjectionPoint, ...]
    stats: DosageStatistics
    rate: float
    # Evaluation instant; the last curve vertex sits at max(now, last dose)
    now: datetime
    anchor: AnchorMode = AnchorMode.FIRST_EVENT
    events: Tuple[DosageEvent, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "rate": self.rate,
            "now": self.now.isoformat(),
            "anchor": self.anchor.value,
            "curve": [p.to_dict() for p in self.curve],
            "stats": self.stats.to_dict(),
        }


@dataclass
class RateSettings:
    """
    The two persisted inputs whose ratio defines the intake rate:
    `pills_per_interval` units every `hours_per_interval` hours.

    Values are kept as given (they may come from free-form input);
    `rate` applies the zero-rate rules.
    """

    pills_per_interval: Any = DEFAULT_PILLS_PER_INTERVAL
    hours_per_interval: Any = DEFAULT_HOURS_PER_INTERVAL

    @property
    def rate(self) -> float:
        # dosage_model imports this module
        from .dosage_model import compute_rate

        return compute_rate(self.pills_per_interval, self.hours_per_interval)

    def to_dict(self) -> dict:
        return {
            "pills_per_interval": self.pills_per_interval,
            "hours_per_interval": self.hours_per_interval,
        }
