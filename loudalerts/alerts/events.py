"""Immutable calendar event snapshots consumed by the alert scheduler."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


def _now() -> datetime:
    return datetime.now().astimezone()


@dataclass(slots=True, frozen=True, eq=False)
class EventSnapshot:
    """One calendar occurrence and its alarm configuration.

    Snapshots are rebuilt on every poll. Two snapshots with the same ``id`` are
    the same tracked event, so equality and hashing only look at ``id``; a new
    title or start time on a known id is an update, not a new event.
    """

    id: str
    title: str
    start: datetime
    end: datetime
    is_all_day: bool = False
    has_alarms: bool = False
    alarm_offsets: tuple[timedelta, ...] = ()
    location: str | None = None
    notes: str | None = None
    url: str | None = None
    calendar_id: str = ""
    calendar_name: str | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EventSnapshot):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def is_upcoming(self) -> bool:
        return self.start > _now()

    @property
    def is_happening_now(self) -> bool:
        now = _now()
        return self.start <= now < self.end

    @property
    def time_until_start(self) -> float:
        """Seconds until the event starts; negative once it has begun."""
        return (self.start - _now()).total_seconds()

    def effective_offsets(self, default_minutes: int | None) -> tuple[timedelta, ...]:
        """Alarm offsets to schedule, falling back to the default reminder.

        An empty tuple means the event never alerts.
        """
        if self.has_alarms and self.alarm_offsets:
            return self.alarm_offsets
        if default_minutes is None or default_minutes < 0:
            return ()
        return (timedelta(minutes=-default_minutes),)

    def to_public_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "all_day": self.is_all_day,
            "has_alarms": self.has_alarms,
            "alarm_offsets": [offset.total_seconds() for offset in self.alarm_offsets],
            "location": self.location,
            "notes": self.notes,
            "url": self.url,
            "calendar_id": self.calendar_id,
            "calendar_name": self.calendar_name,
        }
