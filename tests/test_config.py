"""Tests for loudalerts.alerts.config and loudalerts.utils."""

from __future__ import annotations

import pytest
from loudalerts.alerts.config import (
    AlertsConfig,
    AlertSettings,
    _strip_or_none,
    normalize_default_reminder,
)
from loudalerts.utils import normalize_calendar_url, parse_bool, parse_int, split_csv

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestParseHelpers:
    @pytest.mark.parametrize("value", ["1", "true", "YES", " on "])
    def test_truthy(self, value: str) -> None:
        assert parse_bool(value) is True

    def test_falsy_and_default(self) -> None:
        assert parse_bool("off", True) is False
        assert parse_bool(None, True) is True

    def test_parse_int_fallback(self) -> None:
        assert parse_int("42", 0) == 42
        assert parse_int("forty", 7) == 7
        assert parse_int(None, 7) == 7

    def test_split_csv(self) -> None:
        assert split_csv(" a, ,b ,c") == ["a", "b", "c"]
        assert split_csv(None) == []

    def test_strip_or_none(self) -> None:
        assert _strip_or_none("  ") is None
        assert _strip_or_none(" host ") == "host"


class TestNormalizeCalendarUrl:
    def test_webcal_becomes_https(self) -> None:
        assert normalize_calendar_url("webcal://example.com/cal.ics") == "https://example.com/cal.ics"

    def test_uppercase_scheme(self) -> None:
        assert normalize_calendar_url(" WEBCAL://example.com/a.ics ") == "https://example.com/a.ics"

    def test_https_untouched(self) -> None:
        assert normalize_calendar_url("https://example.com/a.ics") == "https://example.com/a.ics"

    def test_blank(self) -> None:
        assert normalize_calendar_url("   ") is None


class TestDefaultReminder:
    @pytest.mark.parametrize(("value", "expected"), [(None, None), (-1, None), (-30, None), (0, 0), (10, 10)])
    def test_normalize(self, value, expected) -> None:
        assert normalize_default_reminder(value) == expected

    def test_settings_setter_normalizes(self) -> None:
        settings = AlertSettings()
        settings.set_default_reminder(5)
        assert settings.default_reminder_minutes == 5
        settings.set_default_reminder(-1)
        assert settings.default_reminder_minutes is None


# ---------------------------------------------------------------------------
# AlertsConfig.from_env
# ---------------------------------------------------------------------------


class TestFromEnv:
    def test_defaults(self) -> None:
        config = AlertsConfig.from_env({})
        assert config.calendar.feeds == ()
        assert config.calendar.poll_seconds == 300
        assert config.calendar.lookahead_hours == 24
        assert config.calendar.lookbehind_minutes == 60
        assert config.mqtt.host is None
        assert config.mqtt.port == 1883
        assert config.mqtt.topic_base == "loudalerts"
        assert config.wake.check_seconds == 15.0
        assert config.wake.threshold_seconds == 30.0
        assert config.alerts_enabled is True
        assert config.skip_all_day_events is True
        assert config.default_reminder_minutes is None
        assert config.disabled_calendar_ids == ()

    def test_feeds_are_normalized(self) -> None:
        config = AlertsConfig.from_env(
            {"LOUDALERTS_ICS_URLS": "webcal://a.example/cal.ics, https://b.example/cal.ics,"}
        )
        assert config.calendar.feeds == ("https://a.example/cal.ics", "https://b.example/cal.ics")

    def test_poll_interval_has_floor(self) -> None:
        config = AlertsConfig.from_env({"LOUDALERTS_POLL_SECONDS": "5"})
        assert config.calendar.poll_seconds == 30

    def test_default_reminder(self) -> None:
        assert AlertsConfig.from_env({"LOUDALERTS_DEFAULT_REMINDER_MINUTES": "5"}).default_reminder_minutes == 5
        assert AlertsConfig.from_env({"LOUDALERTS_DEFAULT_REMINDER_MINUTES": "-1"}).default_reminder_minutes is None

    def test_mqtt_settings(self) -> None:
        config = AlertsConfig.from_env(
            {
                "LOUDALERTS_MQTT_HOST": " broker.local ",
                "LOUDALERTS_MQTT_PORT": "8883",
                "LOUDALERTS_MQTT_USER": "alerts",
                "LOUDALERTS_MQTT_PASS": "secret",
                "LOUDALERTS_MQTT_TLS": "true",
                "LOUDALERTS_MQTT_TOPIC_BASE": "office/desk/",
            }
        )
        assert config.mqtt.host == "broker.local"
        assert config.mqtt.port == 8883
        assert config.mqtt.username == "alerts"
        assert config.mqtt.password == "secret"
        assert config.mqtt.tls_enabled is True
        assert config.mqtt.topic_base == "office/desk"

    def test_initial_settings_are_independent_copies(self) -> None:
        config = AlertsConfig.from_env(
            {
                "LOUDALERTS_ENABLED": "false",
                "LOUDALERTS_SKIP_ALL_DAY": "no",
                "LOUDALERTS_DISABLED_CALENDARS": "Holidays, Birthdays",
            }
        )
        settings = config.initial_settings()
        assert settings.alerts_enabled is False
        assert settings.skip_all_day_events is False
        assert settings.disabled_calendar_ids == {"Holidays", "Birthdays"}
        settings.disabled_calendar_ids.add("Work")
        assert config.initial_settings().disabled_calendar_ids == {"Holidays", "Birthdays"}
