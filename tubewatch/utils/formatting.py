"""
Helper functions for parsing API values and formatting data into
human-readable strings.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

SHORT_MAX_SECONDS = 60


def parse_iso_duration(iso_duration: str) -> int:
    """
    Converts an ISO-8601 duration (e.g. 'PT1H2M3S') into whole seconds.

    Only the hour, minute and second components of the time part are summed.
    Date-part components (years, months, weeks, days) and unknown unit letters
    are skipped instead of rejected.
    """
    total = 0
    number = ""
    in_time_part = False
    for char in iso_duration or "":
        if char.isdigit():
            number += char
            continue
        value = int(number) if number else 0
        number = ""
        if char == "T":
            in_time_part = True
        elif in_time_part and char == "H":
            total += value * 3600
        elif in_time_part and char == "M":
            total += value * 60
        elif in_time_part and char == "S":
            total += value
    return total


def is_short_duration(seconds: int) -> bool:
    """Items up to one minute long are classified as shorts."""
    return seconds <= SHORT_MAX_SECONDS


def parse_date_range(
    date_range: Optional[str], now: Optional[datetime] = None
) -> Optional[datetime]:
    """
    Turns a date range expression into a publish-date threshold.

    Accepted forms: 'all' (no threshold), 'now-<n>days', 'now-<n>months'
    (30 days each), 'now-<n>year' (365 days each) and the short forms
    '3d', '7d', '30d'. Anything else falls back to seven days.
    """
    now = now or datetime.now(timezone.utc)
    if date_range == "all":
        return None
    if date_range and date_range.startswith("now-"):
        part = date_range[4:]
        for suffix, days_per_unit, default in (
            ("days", 1, 7),
            ("months", 30, 1),
            ("year", 365, 1),
        ):
            if part.endswith(suffix):
                count = part[: -len(suffix)]
                units = int(count) if count.isdigit() else default
                return now - timedelta(days=units * days_per_unit)
        return now - timedelta(days=7)
    if date_range and date_range.endswith("d") and date_range[:-1].isdigit():
        return now - timedelta(days=int(date_range[:-1]))
    return now - timedelta(days=7)


def parse_count(value: Optional[str]) -> Optional[int]:
    """Parses the string counters the API returns; None when absent or invalid."""
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_count(value: float) -> str:
    """Formats a large counter compactly (e.g., 1520000 -> '1.5M')."""
    for threshold, suffix in ((1_000_000_000, "B"), (1_000_000, "M"), (1_000, "K")):
        if abs(value) >= threshold:
            return f"{value / threshold:.1f}{suffix}"
    return f"{value:.0f}"


def to_iso(moment: datetime) -> str:
    """Serializes a datetime as an ISO-8601 UTC string for storage."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parses a stored ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment
