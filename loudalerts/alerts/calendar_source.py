"""ICS/WebCal polling service that turns calendar feeds into event snapshots."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta

import httpx
from icalendar import Calendar

from .config import AlertSettings, CalendarConfig
from .events import EventSnapshot

LOGGER = logging.getLogger("loudalerts.calendar_source")

SnapshotCallback = Callable[[list[EventSnapshot]], Awaitable[None]]


def _now() -> datetime:
    return datetime.now().astimezone()


@dataclass(slots=True)
class _FeedState:
    url: str
    etag: str | None = None
    last_modified: str | None = None
    calendar_name: str | None = None
    events: list[EventSnapshot] = field(default_factory=list)


class CalendarPoller:
    """Poll ICS feeds and hand a full snapshot of upcoming events to a callback.

    A feed that fails to download or parse keeps contributing its last good
    events, so a transient outage never looks like every event was deleted.
    """

    def __init__(
        self,
        *,
        config: CalendarConfig,
        snapshot_callback: SnapshotCallback,
        settings: AlertSettings | None = None,
        logger: logging.Logger | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._snapshot_callback = snapshot_callback
        self._settings = settings or AlertSettings()
        self._logger = logger or LOGGER
        self._client = client
        self._owns_client = client is None
        self._runner: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._refresh_lock = asyncio.Lock()
        self._feed_states = {url: _FeedState(url=url) for url in config.feeds}
        self._latest_events: list[EventSnapshot] = []

    async def start(self) -> None:
        if not self._config.feeds:
            self._logger.warning("Calendar poller start() called but no feeds configured")
            return
        if self._runner:
            return
        self._stop_event.clear()
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True, timeout=20.0)
        self._runner = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._stop_event.set()
        runner = self._runner
        self._runner = None
        if runner:
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def cached_events(self) -> list[EventSnapshot]:
        return list(self._latest_events)

    async def refresh(self) -> list[EventSnapshot]:
        """Fetch every feed now and emit the resulting snapshot."""
        async with self._refresh_lock:
            now = _now()
            for state in self._feed_states.values():
                try:
                    await asyncio.wait_for(self._sync_feed(state, now), timeout=12.0)
                except TimeoutError:
                    self._logger.warning("Calendar fetch timed out for feed %s", state.url)
                except Exception:  # pylint: disable=broad-except
                    self._logger.exception("Calendar sync failed for feed %s", state.url)
            events = self._build_snapshot(now)
            self._latest_events = events
        try:
            await self._snapshot_callback(list(events))
        except Exception:  # pylint: disable=broad-except
            self._logger.exception("Calendar snapshot callback failed")
        return list(events)

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self.refresh(), timeout=30.0)
            except Exception:  # pylint: disable=broad-except
                self._logger.exception("Calendar poll loop failed; continuing")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._config.poll_seconds)
            except TimeoutError:
                continue

    async def _sync_feed(self, state: _FeedState, now: datetime) -> None:
        if not self._client:
            return
        headers: dict[str, str] = {}
        if state.etag:
            headers["If-None-Match"] = state.etag
        if state.last_modified:
            headers["If-Modified-Since"] = state.last_modified
        try:
            response = await self._client.get(state.url, headers=headers)
        except httpx.HTTPError as exc:
            self._logger.warning("Calendar fetch failed for %s: %s", state.url, exc)
            return
        if response.status_code == 304:
            return
        if response.status_code >= 400:
            self._logger.warning("Calendar fetch returned %s for %s", response.status_code, state.url)
            return
        try:
            calendar = Calendar.from_ical(response.content)
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.warning("Calendar parse failed for %s: %s", state.url, exc)
            return
        state.etag = response.headers.get("etag") or state.etag
        state.last_modified = response.headers.get("last-modified") or state.last_modified
        calendar_name = calendar.get("X-WR-CALNAME")
        if calendar_name:
            state.calendar_name = str(calendar_name)
        state.events = self.collect_events(calendar, state.url, state.calendar_name, now)

    def collect_events(
        self,
        calendar: Calendar,
        source_url: str,
        calendar_name: str | None,
        now: datetime,
    ) -> list[EventSnapshot]:
        events: list[EventSnapshot] = []
        for component in calendar.walk("VEVENT"):
            event = self._process_vevent(component, source_url, calendar_name, now)
            if event:
                events.append(event)
        return events

    def _build_snapshot(self, now: datetime) -> list[EventSnapshot]:
        window_start = now - timedelta(minutes=self._config.lookbehind_minutes)
        window_end = now + timedelta(hours=self._config.lookahead_hours)
        disabled = self._settings.disabled_calendar_ids
        snapshot: list[EventSnapshot] = []
        for state in self._feed_states.values():
            for event in state.events:
                if event.calendar_id in disabled or (event.calendar_name and event.calendar_name in disabled):
                    continue
                if event.start < window_start or event.start > window_end:
                    continue
                snapshot.append(event)
        snapshot.sort(key=lambda event: event.start)
        return snapshot

    def _process_vevent(
        self,
        component,
        source_url: str,
        calendar_name: str | None,
        now: datetime,
    ) -> EventSnapshot | None:
        uid = component.get("UID")
        if not uid:
            return None
        status = str(component.get("STATUS") or "").strip().upper()
        if status == "CANCELLED":
            return None
        try:
            start_value = component.decoded("DTSTART")
        except Exception:  # pylint: disable=broad-except
            return None
        start_dt, all_day = self._coerce_datetime(start_value, now.tzinfo)
        if not start_dt:
            return None
        end_dt = None
        try:
            end_value = component.decoded("DTEND")
        except Exception:  # pylint: disable=broad-except
            end_value = None
        if end_value:
            end_dt, _ = self._coerce_datetime(end_value, start_dt.tzinfo or now.tzinfo)
        if end_dt is None:
            end_dt = start_dt + (timedelta(days=1) if all_day else timedelta(hours=1))
        offsets = self._extract_alarm_offsets(component, start_dt)
        summary = str(component.get("SUMMARY") or "Untitled Event").strip() or "Untitled Event"
        location = str(component.get("LOCATION")).strip() if component.get("LOCATION") else None
        notes = str(component.get("DESCRIPTION")).strip() if component.get("DESCRIPTION") else None
        url = str(component.get("URL")).strip() if component.get("URL") else None
        return EventSnapshot(
            id=f"{uid}|{self._occurrence_key(start_dt, all_day)}",
            title=summary,
            start=start_dt,
            end=end_dt,
            is_all_day=all_day,
            has_alarms=bool(offsets),
            alarm_offsets=offsets,
            location=location,
            notes=notes,
            url=url,
            calendar_id=source_url,
            calendar_name=calendar_name,
        )

    def _extract_alarm_offsets(self, component, start_dt: datetime) -> tuple[timedelta, ...]:
        offsets: list[timedelta] = []
        for alarm in getattr(component, "subcomponents", []):
            if getattr(alarm, "name", "").upper() != "VALARM":
                continue
            if alarm.get("TRIGGER") is None:
                continue
            try:
                decoded = alarm.decoded("TRIGGER")
            except Exception:  # pylint: disable=broad-except
                continue
            if isinstance(decoded, timedelta):
                offsets.append(decoded)
            elif isinstance(decoded, datetime):
                trigger_dt = decoded if decoded.tzinfo else decoded.replace(tzinfo=start_dt.tzinfo)
                offsets.append(trigger_dt - start_dt)
        return tuple(offsets)

    @staticmethod
    def _occurrence_key(start_dt: datetime, all_day: bool) -> str:
        """Identify an occurrence independently of the local UTC offset."""
        if all_day:
            return start_dt.date().isoformat()
        return start_dt.astimezone(UTC).isoformat()

    def _coerce_datetime(
        self,
        value,
        tzinfo,
    ) -> tuple[datetime | None, bool]:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=tzinfo)
            return value.astimezone(tzinfo), False
        if isinstance(value, date):
            return datetime.combine(value, time.min, tzinfo=tzinfo), True
        return None, False
