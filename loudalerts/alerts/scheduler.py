"""
Alert scheduling engine

Keeps one armed deadline per calendar event and decides, from absolute
timestamps, whether each event's alert should fire now, later, or never.

Features:
- Reconciles a full event snapshot on every poll (idempotent for unchanged input)
- At-most-once delivery per event id until the engine is reset
- Stale timer repair: a deadline that passed without its callback running
  (usually because the machine slept) is re-derived on the next reconcile
- Grace period for late polls: alerts up to six minutes overdue still fire
- Wake recovery via invalidate_all_timers() followed by reconcile()
- Snoozed re-delivery that bypasses the at-most-once guard

All methods must be called from the event loop thread. Timers are plain
``loop.call_later`` handles that only carry the event id back into the engine.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from .delay_policy import SnoozeDelay
from .events import EventSnapshot

AlertCallback = Callable[[EventSnapshot], None]
DefaultReminderGetter = Callable[[], int | None]

# Poll interval plus one minute of slack.
GRACE_PERIOD = timedelta(seconds=360)
ALERTED_RETENTION = timedelta(hours=2)

LOGGER = logging.getLogger("loudalerts.scheduler")


def _now() -> datetime:
    return datetime.now().astimezone()


def _no_default_reminder() -> int | None:
    return None


@dataclass(slots=True)
class _ArmedDeadline:
    fire_at: datetime
    event: EventSnapshot
    handle: asyncio.TimerHandle | None = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None


class AlertScheduler:
    """Decide when each calendar event alerts and fire it exactly once."""

    def __init__(
        self,
        *,
        on_alert_fired: AlertCallback,
        default_reminder_minutes: DefaultReminderGetter | None = None,
        logger: logging.Logger | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._on_alert_fired = on_alert_fired
        self._default_reminder_minutes = default_reminder_minutes or _no_default_reminder
        self._logger = logger or LOGGER
        self._loop = loop
        self._armed: dict[str, _ArmedDeadline] = {}
        self._alerted: dict[str, datetime] = {}
        self._snoozed: dict[str, _ArmedDeadline] = {}

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def reconcile(self, events: Sequence[EventSnapshot]) -> None:
        """Bring armed timers in line with the latest full event snapshot."""
        now = _now()
        current_ids = {event.id for event in events}
        for event_id in [event_id for event_id in self._armed if event_id not in current_ids]:
            self._disarm(event_id)
            self._logger.debug("Cancelled alert timer for %s; event no longer present", event_id)
        self._prune_alerted(now)
        for event in events:
            self._schedule_if_needed(event, now)
        self._repair_snoozes(now)

    def invalidate_all_timers(self) -> None:
        """Drop every live timer handle after a wake from sleep.

        Alerted events and snooze deadlines are kept; the caller must follow up
        with ``reconcile`` so deadlines are re-derived from absolute timestamps.
        """
        dropped = len(self._armed)
        for record in self._armed.values():
            record.cancel()
        self._armed.clear()
        for record in self._snoozed.values():
            record.cancel()
        self._logger.info(
            "Invalidated %d alert timer(s) and %d snooze(s); awaiting reconcile",
            dropped,
            len(self._snoozed),
        )

    def cancel_all(self) -> None:
        """Full reset: previously alerted events become eligible again."""
        for record in self._armed.values():
            record.cancel()
        for record in self._snoozed.values():
            record.cancel()
        self._armed.clear()
        self._snoozed.clear()
        self._alerted.clear()

    def snooze(self, event: EventSnapshot, delay: SnoozeDelay) -> datetime:
        """Re-deliver ``event`` at the time ``delay`` resolves to.

        Replaces any earlier snooze for the same event. Returns the absolute
        fire time.
        """
        now = _now()
        fire_at = delay.fire_time(event.start, now)
        existing = self._snoozed.pop(event.id, None)
        if existing is not None:
            existing.cancel()
        record = _ArmedDeadline(fire_at=fire_at, event=event)
        self._snoozed[event.id] = record
        self._arm_snooze(record, now)
        self._logger.info("Snoozed alert for %s (%s) until %s", event.id, event.title, fire_at.isoformat())
        return fire_at

    def armed_deadlines(self) -> dict[str, datetime]:
        return {event_id: record.fire_at for event_id, record in self._armed.items()}

    def snoozed_deadlines(self) -> dict[str, datetime]:
        return {event_id: record.fire_at for event_id, record in self._snoozed.items()}

    def is_alerted(self, event_id: str) -> bool:
        return event_id in self._alerted

    # ------------------------------------------------------------------
    # Scheduling decision
    # ------------------------------------------------------------------

    def _schedule_if_needed(self, event: EventSnapshot, now: datetime) -> None:
        if event.id in self._alerted:
            return
        armed = self._armed.get(event.id)
        if armed is not None and armed.fire_at <= now:
            self._logger.warning(
                "Alert timer for %s (%s) was due at %s but never fired; rescheduling",
                event.id,
                event.title,
                armed.fire_at.isoformat(),
            )
            self._disarm(event.id)
            armed = None
        fire_at = self._next_fire_time(event, now)
        if armed is not None:
            if fire_at == armed.fire_at:
                armed.event = event
                return
            self._logger.info(
                "Alert time for %s (%s) changed from %s; rearming",
                event.id,
                event.title,
                armed.fire_at.isoformat(),
            )
            self._disarm(event.id)
        if fire_at is None:
            return
        if fire_at <= now:
            self._fire(event)
            return
        self._arm(event, fire_at, now)

    def _next_fire_time(self, event: EventSnapshot, now: datetime) -> datetime | None:
        earliest = now - GRACE_PERIOD
        if event.start < earliest:
            self._logger.info(
                "Missed alert for %s (%s): event started at %s",
                event.id,
                event.title,
                event.start.isoformat(),
            )
            return None
        offsets = event.effective_offsets(self._default_reminder_minutes())
        if not offsets:
            self._logger.debug("Event %s has no alarms and no default reminder; not scheduling", event.id)
            return None
        candidates = [event.start + offset for offset in offsets]
        viable = [candidate for candidate in candidates if candidate >= earliest]
        if not viable:
            self._logger.info(
                "Missed alert for %s (%s): every alarm was due before %s",
                event.id,
                event.title,
                earliest.isoformat(),
            )
            return None
        return min(viable)

    def _arm(self, event: EventSnapshot, fire_at: datetime, now: datetime) -> None:
        loop = self._loop or asyncio.get_running_loop()
        record = _ArmedDeadline(fire_at=fire_at, event=event)
        record.handle = loop.call_later((fire_at - now).total_seconds(), self._on_timer, event.id)
        self._armed[event.id] = record
        self._logger.debug("Armed alert for %s (%s) at %s", event.id, event.title, fire_at.isoformat())

    def _disarm(self, event_id: str) -> None:
        record = self._armed.pop(event_id, None)
        if record is not None:
            record.cancel()

    def _on_timer(self, event_id: str) -> None:
        record = self._armed.pop(event_id, None)
        if record is None:
            return
        record.handle = None
        # Re-check against the wall clock: a late callback past the grace
        # window is a miss, an early one re-arms.
        self._schedule_if_needed(record.event, _now())

    def _fire(self, event: EventSnapshot) -> None:
        self._alerted[event.id] = event.start
        self._disarm(event.id)
        self._logger.info("Alert fired for %s (%s) starting %s", event.id, event.title, event.start.isoformat())
        self._deliver(event)

    def _deliver(self, event: EventSnapshot) -> None:
        try:
            self._on_alert_fired(event)
        except Exception:  # pylint: disable=broad-except
            self._logger.exception("Alert callback failed for %s (%s)", event.id, event.title)

    def _prune_alerted(self, now: datetime) -> None:
        cutoff = now - ALERTED_RETENTION
        for event_id, event_start in list(self._alerted.items()):
            if event_start < cutoff:
                self._alerted.pop(event_id, None)

    # ------------------------------------------------------------------
    # Snooze
    # ------------------------------------------------------------------

    def _arm_snooze(self, record: _ArmedDeadline, now: datetime) -> None:
        loop = self._loop or asyncio.get_running_loop()
        delay = max(0.0, (record.fire_at - now).total_seconds())
        record.handle = loop.call_later(delay, self._on_snooze_timer, record.event.id)

    def _on_snooze_timer(self, event_id: str) -> None:
        record = self._snoozed.pop(event_id, None)
        if record is None:
            return
        record.handle = None
        self._fire_snoozed(record, _now())

    def _fire_snoozed(self, record: _ArmedDeadline, now: datetime) -> None:
        event = record.event
        if now - record.fire_at > GRACE_PERIOD:
            self._logger.info(
                "Missed snoozed alert for %s (%s): was due at %s",
                event.id,
                event.title,
                record.fire_at.isoformat(),
            )
            return
        self._alerted[event.id] = event.start
        self._disarm(event.id)
        self._logger.info("Re-delivering snoozed alert for %s (%s)", event.id, event.title)
        self._deliver(event)

    def _repair_snoozes(self, now: datetime) -> None:
        for event_id, record in list(self._snoozed.items()):
            if record.fire_at <= now:
                self._snoozed.pop(event_id, None)
                record.cancel()
                self._fire_snoozed(record, now)
            elif record.handle is None:
                self._arm_snooze(record, now)
