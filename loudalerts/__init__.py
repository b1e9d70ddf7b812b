"""
Loud Alerts - unmissable calendar alerts

This is the root package for Loud Alerts, a small daemon that watches calendar
feeds and raises an alert at the moment each event's reminder is due.

Core modules:
- utils: Environment parsing helpers shared by the configuration layer
- alerts: Event model, snooze policy, scheduling engine and collaborators
"""

__version__ = "0.4.2"
