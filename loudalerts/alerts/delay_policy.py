"""Snooze delay resolution and the snooze options offered for an alert.

Everything here is pure: callers pass ``now`` explicitly (or accept the wall
clock default) and get back absolute timestamps or option lists.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

SnoozeAnchor = Literal["now", "start"]

# (label, minutes before start) for the start-relative options, latest last
_RELATIVE_OPTIONS: tuple[tuple[str, int], ...] = (
    ("5m before", 5),
    ("2m before", 2),
    ("Start", 0),
)
_STANDARD_MINUTES: tuple[int, ...] = (1, 5)


def _now() -> datetime:
    return datetime.now().astimezone()


@dataclass(slots=True, frozen=True)
class SnoozeDelay:
    """A snooze duration anchored either to the current moment or to the event start."""

    seconds: float
    anchor: SnoozeAnchor = "now"

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ValueError(f"Snooze delay must not be negative, got {self.seconds}")
        if self.anchor not in ("now", "start"):
            raise ValueError(f"Unknown snooze anchor {self.anchor!r}")

    @classmethod
    def from_now(cls, seconds: float) -> SnoozeDelay:
        return cls(seconds=float(seconds), anchor="now")

    @classmethod
    def before_start(cls, seconds: float) -> SnoozeDelay:
        return cls(seconds=float(seconds), anchor="start")

    def fire_time(self, event_start: datetime, now: datetime | None = None) -> datetime:
        """Resolve the absolute time the snoozed alert should fire.

        Start-anchored delays ignore ``now`` entirely, so evaluating them twice
        for the same event always gives the same timestamp.
        """
        if self.anchor == "start":
            return event_start - timedelta(seconds=self.seconds)
        reference = now or _now()
        return reference + timedelta(seconds=self.seconds)

    def to_dict(self) -> dict[str, object]:
        return {"seconds": self.seconds, "anchor": self.anchor}


@dataclass(slots=True, frozen=True)
class SnoozeOption:
    label: str
    delay: SnoozeDelay

    def to_dict(self) -> dict[str, object]:
        return {"label": self.label, **self.delay.to_dict()}


@dataclass(slots=True, frozen=True)
class SnoozeOptionGroups:
    standard: tuple[SnoozeOption, ...]
    relative_to_start: tuple[SnoozeOption, ...]

    def all(self) -> tuple[SnoozeOption, ...]:
        return self.standard + self.relative_to_start

    def find(self, label: str) -> SnoozeOption | None:
        wanted = label.strip().lower()
        for option in self.all():
            if option.label.lower() == wanted:
                return option
        return None


def minutes_until_start(event_start: datetime, now: datetime | None = None) -> int:
    """Whole minutes until start, rounded up and never negative."""
    reference = now or _now()
    seconds = (event_start - reference).total_seconds()
    return max(0, math.ceil(seconds / 60))


def snooze_option_groups(minutes_until_start: int) -> SnoozeOptionGroups:
    """Options to offer for an alert whose event starts in ``minutes_until_start``.

    The now-relative options are always present. A start-relative option is
    only offered while it still lands strictly in the future; otherwise it is
    dropped instead of firing straight away. As the event approaches the
    relative list only ever shrinks.
    """
    standard = tuple(
        SnoozeOption(label=f"{minutes}m", delay=SnoozeDelay.from_now(minutes * 60)) for minutes in _STANDARD_MINUTES
    )
    relative = tuple(
        SnoozeOption(label=label, delay=SnoozeDelay.before_start(before * 60))
        for label, before in _RELATIVE_OPTIONS
        if minutes_until_start - before > 0
    )
    return SnoozeOptionGroups(standard=standard, relative_to_start=relative)
