"""Human-readable labels attached to alert payloads."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta


def _format_minutes(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes}m"
    hours, remainder = divmod(minutes, 60)
    if remainder == 0:
        return f"{hours}h"
    return f"{hours}h {remainder}m"


def alarm_label(has_alarms: bool, alarm_offsets: Sequence[timedelta]) -> str | None:
    """Describe the first alarm of an event.

    Examples:
        - 0 seconds -> "at start"
        - -300 seconds -> "5m before"
        - -5400 seconds -> "1h 30m before"
    """
    if not has_alarms or not alarm_offsets:
        return None
    minutes = int(-alarm_offsets[0].total_seconds() // 60)
    if minutes <= 0:
        return "at start"
    return f"{_format_minutes(minutes)} before"


def relative_time(start: datetime, now: datetime) -> str:
    """Short "in 5m" style label; empty once the event has started."""
    interval = (start - now).total_seconds()
    if interval < 0:
        return ""
    minutes = int(interval // 60)
    if minutes < 1:
        return "now"
    return f"in {_format_minutes(minutes)}"
