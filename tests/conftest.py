"""Shared test fixtures and configuration for the Loud Alerts test suite.

This module provides reusable fixtures for common test scenarios including:
- A controllable wall clock patched into every module that reads the time
- Event snapshot factories
- Async test utilities
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from unittest.mock import Mock

import pytest
from loudalerts.alerts.events import EventSnapshot

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    return Mock(spec=logging.Logger)


# ============================================================================
# Clock Fixtures
# ============================================================================


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


_CLOCK_MODULES = (
    "loudalerts.alerts.scheduler",
    "loudalerts.alerts.events",
    "loudalerts.alerts.delay_policy",
    "loudalerts.alerts.service",
    "loudalerts.alerts.calendar_source",
)


@pytest.fixture
def clock(monkeypatch):
    """Freeze "now" at Monday 2025-01-06 09:00 UTC for every alert module."""
    fake = FakeClock(datetime(2025, 1, 6, 9, 0, tzinfo=UTC))
    for module in _CLOCK_MODULES:
        monkeypatch.setattr(f"{module}._now", fake)
    return fake


# ============================================================================
# Event Fixtures
# ============================================================================


def make_event(
    now: datetime,
    *,
    event_id: str = "evt",
    title: str = "Test Meeting",
    start_in: float = 300.0,
    offsets: tuple[float, ...] = (-300.0,),
    has_alarms: bool = True,
    all_day: bool = False,
) -> EventSnapshot:
    """Build an event starting ``start_in`` seconds after ``now``."""
    start = now + timedelta(seconds=start_in)
    return EventSnapshot(
        id=event_id,
        title=title,
        start=start,
        end=start + timedelta(hours=1),
        is_all_day=all_day,
        has_alarms=has_alarms,
        alarm_offsets=tuple(timedelta(seconds=offset) for offset in offsets) if has_alarms else (),
        calendar_id="test-cal",
        calendar_name="Test",
    )


@pytest.fixture
def event_factory():
    return make_event
