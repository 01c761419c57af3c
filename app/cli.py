"""
CLI for the dose tracker.

Usage examples:

    # Record a dose of 1 unit right now
    python -m app.cli quick 1

    # Record a dose at a given time (naive times are in DT_TIME_ZONE)
    python -m app.cli add 0.5 --at 2025-03-14T08:30

    # What is owed now, and when half / one unit will be owed
    python -m app.cli status

    # Export the deficit curve
    python -m app.cli curve --output curve.csv

    # One pill every 12 hours
    python -m app.cli set-rate 1 12
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path

# --- Make src/ importable ----------------------------------------------------

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from dose_tracker.config import Config, get_config
from dose_tracker.data_io import (
    get_event_store,
    load_rate_settings,
    save_curve_to_csv,
    save_rate_settings,
)
from dose_tracker.dosage_model import normalize_events, project, sample_deficit
from dose_tracker.logging_config import setup_logging
from dose_tracker.schema import AnchorMode, ProjectionPoint, RateSettings
from dose_tracker.timing import (
    format_date_time,
    format_time_offset,
    parse_instant,
    resolve_time_zone,
)

logger = logging.getLogger(__name__)


def _fmt(value, suffix: str = "") -> str:
    return "N/A" if value is None else f"{value:.1f}{suffix}"


def _instant_arg(command: str, value: str | None, cfg: Config) -> datetime:
    """Parse an --at / --now style argument; naive values are in cfg.time_zone."""
    tz = resolve_time_zone(cfg.time_zone)
    if value is None:
        return datetime.now(tz)
    when = parse_instant(value, default_tz=tz)
    if when is None:
        raise SystemExit(f"[{command}] Invalid date/time: {value!r}. Use YYYY-MM-DDTHH:MM.")
    return when


def _fetch_events(command: str, cfg: Config) -> list:
    """Stored rows, or an empty timeline (with a warning) if they cannot be read."""
    try:
        return get_event_store(cfg).fetch_events()
    except Exception as e:
        logger.error("Could not load events: %s", e)
        print(f"[{command}] Could not load events: {e}")
        return []


# --- Commands ----------------------------------------------------------------


def cmd_list(args: argparse.Namespace) -> None:
    """
    Print the stored doses in chronological order.
    """
    cfg = get_config()
    tz = resolve_time_zone(cfg.time_zone)
    events = normalize_events(_fetch_events("list", cfg))

    if not events:
        print("[list] No doses recorded.")
        return

    for event in events:
        print(
            f"[list] {event.amount:6.1f}  {format_date_time(event.timestamp, tz)}"
            f"  ({event.timestamp.isoformat()})"
        )
    print(f"[list] {len(events)} doses.")


def _add(command: str, amount: str, when: datetime, cfg: Config) -> None:
    try:
        result = get_event_store(cfg).append_event(amount, when)
    except ValueError as e:
        raise SystemExit(f"[{command}] {e}")
    if not result:
        raise SystemExit(f"[{command}] Failed to add event.")

    tz = resolve_time_zone(cfg.time_zone)
    print(f"[{command}] Added {float(amount):.1f} at {format_date_time(when, tz)}")


def cmd_add(args: argparse.Namespace) -> None:
    """
    Record a dose at --at (default: now).
    """
    cfg = get_config()
    _add("add", args.amount, _instant_arg("add", args.at, cfg), cfg)


def cmd_quick(args: argparse.Namespace) -> None:
    """
    Record a preset amount at the current instant.
    """
    cfg = get_config()
    _add("quick", args.amount, _instant_arg("quick", None, cfg), cfg)


def cmd_remove(args: argparse.Namespace) -> None:
    """
    Remove the most recently added dose recorded at exactly this instant.
    """
    cfg = get_config()
    when = _instant_arg("remove", args.timestamp, cfg)
    try:
        removed = get_event_store(cfg).remove_event(when)
    except ValueError as e:
        raise SystemExit(f"[remove] {e}")

    if not removed:
        raise SystemExit(f"[remove] No dose found at {when.isoformat()}")
    print(f"[remove] Removed dose at {when.isoformat()}")


def cmd_status(args: argparse.Namespace) -> None:
    """
    Print what is owed now and when half / one unit will be owed.
    """
    cfg = get_config()
    tz = resolve_time_zone(cfg.time_zone)
    now = _instant_arg("status", args.now, cfg)

    settings = load_rate_settings(cfg.rate_settings_path)
    projection = project(
        settings.rate,
        _fetch_events("status", cfg),
        now,
        anchor=AnchorMode(cfg.anchor_mode),
    )
    stats = projection.stats

    print(f"[status] Now: {format_date_time(now, tz)} ({cfg.time_zone})")
    print(f"[status] Rate: {_fmt(projection.rate if projection.rate > 0 else None)} units/hour")
    print(f"[status] Needed now: {_fmt(stats.current_deficit)}")
    print(f"[status] Total given: {_fmt(stats.total_given)}")
    print(f"[status] Total ideally needed: {_fmt(stats.total_ideally_needed_by_now)}")

    for label, hours in (
        ("Half unit", stats.hours_until_half_unit_owed),
        ("One unit", stats.hours_until_full_unit_owed),
    ):
        if hours is None:
            print(f"[status] {label}: N/A")
        else:
            print(f"[status] {label}: {_fmt(hours, ' hrs')} ({format_time_offset(hours, now, tz)})")


def cmd_curve(args: argparse.Namespace) -> None:
    """
    Print or export the deficit curve.

    With --step the deficit is sampled every STEP hours from the first dose
    to now instead of emitting the curve's vertices.
    """
    cfg = get_config()
    now = _instant_arg("curve", args.now, cfg)
    settings = load_rate_settings(cfg.rate_settings_path)
    anchor = AnchorMode(cfg.anchor_mode)
    events = _fetch_events("curve", cfg)

    projection = project(settings.rate, events, now, anchor=anchor)
    if not projection.curve:
        print("[curve] No data to display. Record a dose first.")
        return

    if args.step is not None:
        start = projection.curve[0].at
        end = projection.curve[-1].at
        try:
            hours, deficit = sample_deficit(
                settings.rate, projection.events, start, end, args.step, anchor=anchor
            )
        except ValueError as e:
            raise SystemExit(f"[curve] {e}")
        points = [
            ProjectionPoint(at=start + timedelta(hours=h), deficit=d)
            for h, d in zip(hours.tolist(), deficit.tolist())
        ]
    else:
        points = list(projection.curve)

    if args.output:
        output = Path(args.output).resolve()
        save_curve_to_csv(points, output)
        print(f"[curve] Saved {len(points)} points to {output}")
        return

    for point in points:
        print(f"[curve] {point.at.isoformat()}  {point.deficit:+.3f}")


def cmd_rate(args: argparse.Namespace) -> None:
    """
    Show the persisted rate settings.
    """
    cfg = get_config()
    settings = load_rate_settings(cfg.rate_settings_path)
    print(
        f"[rate] {settings.pills_per_interval} unit(s) every "
        f"{settings.hours_per_interval} hour(s) = {_fmt(settings.rate or None)} units/hour"
    )


def cmd_set_rate(args: argparse.Namespace) -> None:
    """
    Persist pills-per-interval / hours-per-interval.
    """
    cfg = get_config()
    settings = RateSettings(pills_per_interval=args.pills, hours_per_interval=args.hours)
    save_rate_settings(settings, cfg.rate_settings_path)
    print(f"[set-rate] Saved rate {_fmt(settings.rate or None)} units/hour to {cfg.rate_settings_path}")


def cmd_ensure_headers(args: argparse.Namespace) -> None:
    """
    Make sure the event sheet starts with the Date, Amount header row.
    """
    _, message = get_event_store(get_config()).ensure_headers()
    print(f"[ensure-headers] {message}")


# --- Main --------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Dose Tracker CLI: record doses and see what is owed."
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug output to stderr.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # list
    list_p = subparsers.add_parser("list", help="List recorded doses.")
    list_p.set_defaults(func=cmd_list)

    # add
    add_p = subparsers.add_parser("add", help="Record a dose.")
    add_p.add_argument("amount", help="Dose amount in units (e.g., 0.5).")
    add_p.add_argument(
        "--at",
        default=None,
        help="When the dose was taken, ISO-8601 (default: now).",
    )
    add_p.set_defaults(func=cmd_add)

    # quick
    quick_p = subparsers.add_parser("quick", help="Record a preset amount now.")
    quick_p.add_argument("amount", help="Dose amount in units.")
    quick_p.set_defaults(func=cmd_quick)

    # remove
    remove_p = subparsers.add_parser("remove", help="Remove a dose by its timestamp.")
    remove_p.add_argument("timestamp", help="Timestamp of the dose, ISO-8601.")
    remove_p.set_defaults(func=cmd_remove)

    # status
    status_p = subparsers.add_parser("status", help="Show owed amount and thresholds.")
    status_p.add_argument("--now", default=None, help="Evaluate at this instant instead of now.")
    status_p.set_defaults(func=cmd_status)

    # curve
    curve_p = subparsers.add_parser("curve", help="Print or export the deficit curve.")
    curve_p.add_argument("--now", default=None, help="Evaluate at this instant instead of now.")
    curve_p.add_argument("--output", default=None, help="Write the curve to this CSV file.")
    curve_p.add_argument(
        "--step",
        type=float,
        default=None,
        help="Sample the deficit every STEP hours instead of listing vertices.",
    )
    curve_p.set_defaults(func=cmd_curve)

    # rate
    rate_p = subparsers.add_parser("rate", help="Show the configured rate.")
    rate_p.set_defaults(func=cmd_rate)

    # set-rate
    set_rate_p = subparsers.add_parser("set-rate", help="Set PILLS every HOURS hours.")
    set_rate_p.add_argument("pills", type=float, help="Units per interval.")
    set_rate_p.add_argument("hours", type=float, help="Interval length in hours.")
    set_rate_p.set_defaults(func=cmd_set_rate)

    # ensure-headers
    headers_p = subparsers.add_parser(
        "ensure-headers", help="Write the Date, Amount header row if missing."
    )
    headers_p.set_defaults(func=cmd_ensure_headers)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
