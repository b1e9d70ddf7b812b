"""
Calendar alert pipeline

This package turns calendar feeds into unmissable alerts:

- events: Immutable EventSnapshot model (identity by event id)
- delay_policy: Snooze fire-time resolution and the offered snooze options
- scheduler: AlertScheduler, the reconcile/fire/snooze engine
- calendar_source: ICS/WebCal poller producing full event snapshots
- sleep_monitor: Suspend and clock-jump detection that triggers timer recovery
- delivery: Log-only and MQTT delivery sinks
- formatting: Alarm and countdown labels for alert payloads
- service: AlertService wiring everything together
- config: Configuration from environment variables
"""

from __future__ import annotations

__all__ = [
    "calendar_source",
    "config",
    "delay_policy",
    "delivery",
    "events",
    "formatting",
    "scheduler",
    "service",
    "sleep_monitor",
]
