"""Wire the calendar poller, sleep monitor, scheduler and delivery sink together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from .calendar_source import CalendarPoller
from .config import AlertsConfig, AlertSettings
from .delay_policy import SnoozeDelay, minutes_until_start, snooze_option_groups
from .delivery import AlertSink
from .events import EventSnapshot
from .formatting import alarm_label, relative_time
from .scheduler import AlertScheduler
from .sleep_monitor import SleepMonitor

LOGGER = logging.getLogger("loudalerts.service")


def _now() -> datetime:
    return datetime.now().astimezone()


class AlertService:
    """Run the alert pipeline: poll → reconcile → fire → present → snooze/dismiss."""

    def __init__(
        self,
        *,
        config: AlertsConfig,
        sink: AlertSink | None = None,
        settings: AlertSettings | None = None,
        poller: CalendarPoller | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or LOGGER
        self.settings = settings or config.initial_settings()
        self.sink = sink or AlertSink()
        self.scheduler = AlertScheduler(
            on_alert_fired=self._handle_alert_fired,
            default_reminder_minutes=self._default_reminder_minutes,
        )
        self.poller = poller or CalendarPoller(
            config=config.calendar,
            snapshot_callback=self._handle_snapshot,
            settings=self.settings,
        )
        self.sleep_monitor = SleepMonitor(config=config.wake, on_wake=self._handle_wake)
        self._presented: dict[str, EventSnapshot] = {}
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        await self.sink.start(self.handle_command)
        await self.poller.start()
        await self.sleep_monitor.start()

    async def stop(self) -> None:
        await self.sleep_monitor.stop()
        await self.poller.stop()
        self.scheduler.cancel_all()
        for event_id in list(self._presented):
            await self.sink.dismiss(event_id, reason="shutdown")
        self._presented.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        await self.sink.stop()

    def presented_events(self) -> list[EventSnapshot]:
        return list(self._presented.values())

    async def refresh(self) -> None:
        """Re-poll the calendars now; the snapshot callback reconciles."""
        await self.poller.refresh()

    async def dismiss(self, event_id: str) -> bool:
        event = self._presented.pop(event_id, None)
        if event is None:
            return False
        await self._take_down(event_id, reason="dismissed")
        return True

    async def snooze(self, event_id: str, delay: SnoozeDelay | str) -> datetime | None:
        """Take down a presented alert and re-deliver it later.

        ``delay`` is either a resolved SnoozeDelay or the label of one of the
        options currently on offer for the event (for example ``"2m before"``).
        """
        event = self._presented.get(event_id)
        if event is None:
            self._logger.warning("Snooze requested for %s but it is not being presented", event_id)
            return None
        if isinstance(delay, str):
            option = snooze_option_groups(minutes_until_start(event.start, _now())).find(delay)
            if option is None:
                self._logger.warning("Snooze option %r is not available for %s", delay, event_id)
                return None
            delay = option.delay
        self._presented.pop(event_id, None)
        await self._take_down(event_id, reason="snoozed")
        return self.scheduler.snooze(event, delay)

    async def set_default_reminder(self, minutes: int | None) -> None:
        self.settings.set_default_reminder(minutes)
        await self.refresh()

    async def set_disabled_calendars(self, calendar_ids: Iterable[str]) -> None:
        self.settings.disabled_calendar_ids = {item for item in calendar_ids if item}
        await self.refresh()

    def trigger_test_alert(self) -> EventSnapshot:
        now = _now()
        event = EventSnapshot(
            id=f"test-{uuid4().hex}",
            title="Test Meeting - Loud Alerts Demo",
            start=now + timedelta(seconds=60),
            end=now + timedelta(seconds=3660),
            has_alarms=True,
            alarm_offsets=(timedelta(seconds=-300),),
            notes="This is a test alert from Loud Alerts.",
            calendar_id="test",
            calendar_name="Test Calendar",
        )
        self._handle_alert_fired(event)
        return event

    async def handle_command(self, payload: dict[str, Any]) -> None:
        action = str(payload.get("action") or "").strip().lower()
        if not action:
            return
        try:
            if action == "dismiss":
                await self.dismiss(self._require_event_id(payload))
            elif action == "snooze":
                event_id = self._require_event_id(payload)
                if payload.get("option"):
                    await self.snooze(event_id, str(payload["option"]))
                elif payload.get("minutes") is not None:
                    await self.snooze(event_id, SnoozeDelay.from_now(int(payload["minutes"]) * 60))
                else:
                    raise ValueError("snooze requires option or minutes")
            elif action == "set_default_reminder":
                minutes = payload.get("minutes")
                await self.set_default_reminder(None if minutes is None else int(minutes))
            elif action == "set_disabled_calendars":
                calendars = payload.get("calendars") or []
                if not isinstance(calendars, list):
                    raise ValueError("calendars must be a list")
                await self.set_disabled_calendars(str(item) for item in calendars)
            elif action == "set_alerts_enabled":
                self.settings.alerts_enabled = bool(payload.get("enabled", True))
            elif action == "refresh":
                await self.refresh()
            elif action == "test_alert":
                self.trigger_test_alert()
            else:
                self._logger.debug("Ignoring unknown alert command %s", action)
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.warning("Alert command %s failed: %s", action, exc)

    @staticmethod
    def _require_event_id(payload: dict[str, Any]) -> str:
        event_id = payload.get("event_id")
        if not event_id:
            raise ValueError("event_id is required")
        return str(event_id)

    def _default_reminder_minutes(self) -> int | None:
        return self.settings.default_reminder_minutes

    async def _handle_snapshot(self, events: list[EventSnapshot]) -> None:
        self.scheduler.reconcile(events)

    async def _handle_wake(self, gap_seconds: float) -> None:
        self._logger.info("Recovering alert timers after a %.0f second clock gap", gap_seconds)
        self.scheduler.invalidate_all_timers()
        # Re-arm from the last snapshot first; the network may still be coming back.
        self.scheduler.reconcile(self.poller.cached_events())
        await self.refresh()

    def _handle_alert_fired(self, event: EventSnapshot) -> None:
        if not self.settings.alerts_enabled:
            self._logger.info("Alerts disabled; suppressing alert for %s", event.id)
            return
        if self.settings.skip_all_day_events and event.is_all_day:
            self._logger.debug("Skipping all-day event %s", event.id)
            return
        self._presented.pop(event.id, None)
        self._presented[event.id] = event
        self._spawn(self.sink.present(self.build_alert_payload(event)))

    async def _take_down(self, event_id: str, *, reason: str) -> None:
        # The sink shows one alert at a time; fall back to the newest one still open.
        if not self._presented:
            await self.sink.dismiss(event_id, reason=reason)
            return
        latest = next(reversed(self._presented.values()))
        self._logger.info("Alert %s %s; showing %s again", event_id, reason, latest.id)
        await self.sink.present(self.build_alert_payload(latest))

    def build_alert_payload(self, event: EventSnapshot) -> dict[str, Any]:
        now = _now()
        groups = snooze_option_groups(minutes_until_start(event.start, now))
        return {
            "state": "ringing",
            "event": event.to_public_dict(),
            "alarm": alarm_label(event.has_alarms, event.alarm_offsets),
            "starts_in": relative_time(event.start, now),
            "fired_at": now.isoformat(),
            "snooze_options": [option.to_dict() for option in groups.all()],
        }

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(self._guard(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(self, coro: Awaitable[None]) -> None:
        try:
            await coro
        except Exception:  # pylint: disable=broad-except
            self._logger.exception("Alert sink failed")
