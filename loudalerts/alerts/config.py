"""Configuration helpers for the Loud Alerts daemon."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from loudalerts.utils import normalize_calendar_url, parse_bool, parse_int, split_csv

DEFAULT_POLL_SECONDS = 300
DEFAULT_LOOKAHEAD_HOURS = 24
DEFAULT_LOOKBEHIND_MINUTES = 60
DEFAULT_TOPIC_BASE = "loudalerts"


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def normalize_default_reminder(minutes: int | None) -> int | None:
    """Map the persisted "no default" sentinel (any negative value) to ``None``."""
    if minutes is None or minutes < 0:
        return None
    return minutes


@dataclass(frozen=True)
class CalendarConfig:
    feeds: tuple[str, ...]
    poll_seconds: int
    lookahead_hours: int
    lookbehind_minutes: int


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class WakeConfig:
    check_seconds: float
    threshold_seconds: float


@dataclass
class AlertSettings:
    """User-adjustable settings, kept in memory and read at decision time."""

    alerts_enabled: bool = True
    skip_all_day_events: bool = True
    default_reminder_minutes: int | None = None
    disabled_calendar_ids: set[str] = field(default_factory=set)

    def set_default_reminder(self, minutes: int | None) -> None:
        self.default_reminder_minutes = normalize_default_reminder(minutes)


@dataclass(frozen=True)
class AlertsConfig:
    calendar: CalendarConfig
    mqtt: MqttConfig
    wake: WakeConfig
    alerts_enabled: bool
    skip_all_day_events: bool
    default_reminder_minutes: int | None
    disabled_calendar_ids: tuple[str, ...]

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> AlertsConfig:
        source = env if env is not None else os.environ

        feeds = tuple(
            normalized
            for normalized in (normalize_calendar_url(url) for url in split_csv(source.get("LOUDALERTS_ICS_URLS")))
            if normalized
        )
        calendar = CalendarConfig(
            feeds=feeds,
            poll_seconds=max(30, parse_int(source.get("LOUDALERTS_POLL_SECONDS"), DEFAULT_POLL_SECONDS)),
            lookahead_hours=max(1, parse_int(source.get("LOUDALERTS_LOOKAHEAD_HOURS"), DEFAULT_LOOKAHEAD_HOURS)),
            lookbehind_minutes=max(
                0, parse_int(source.get("LOUDALERTS_LOOKBEHIND_MINUTES"), DEFAULT_LOOKBEHIND_MINUTES)
            ),
        )

        topic_base = (source.get("LOUDALERTS_MQTT_TOPIC_BASE") or DEFAULT_TOPIC_BASE).strip() or DEFAULT_TOPIC_BASE
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("LOUDALERTS_MQTT_HOST")),
            port=parse_int(source.get("LOUDALERTS_MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("LOUDALERTS_MQTT_USER")),
            password=source.get("LOUDALERTS_MQTT_PASS"),
            tls_enabled=parse_bool(source.get("LOUDALERTS_MQTT_TLS"), False),
            cert=_strip_or_none(source.get("LOUDALERTS_MQTT_CERT")),
            key=_strip_or_none(source.get("LOUDALERTS_MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("LOUDALERTS_MQTT_CA_CERT")),
            topic_base=topic_base.rstrip("/"),
        )

        wake = WakeConfig(
            check_seconds=float(max(1, parse_int(source.get("LOUDALERTS_WAKE_CHECK_SECONDS"), 15))),
            threshold_seconds=float(max(5, parse_int(source.get("LOUDALERTS_WAKE_THRESHOLD_SECONDS"), 30))),
        )

        return AlertsConfig(
            calendar=calendar,
            mqtt=mqtt,
            wake=wake,
            alerts_enabled=parse_bool(source.get("LOUDALERTS_ENABLED"), True),
            skip_all_day_events=parse_bool(source.get("LOUDALERTS_SKIP_ALL_DAY"), True),
            default_reminder_minutes=normalize_default_reminder(
                parse_int(source.get("LOUDALERTS_DEFAULT_REMINDER_MINUTES"), -1)
            ),
            disabled_calendar_ids=tuple(split_csv(source.get("LOUDALERTS_DISABLED_CALENDARS"))),
        )

    def initial_settings(self) -> AlertSettings:
        return AlertSettings(
            alerts_enabled=self.alerts_enabled,
            skip_all_day_events=self.skip_all_day_events,
            default_reminder_minutes=self.default_reminder_minutes,
            disabled_calendar_ids=set(self.disabled_calendar_ids),
        )
