"""
Shared utility functions for parsing configuration values

Provides common helpers for:
- String parsing: Environment variable conversion (parse_bool, parse_int, split_csv)
- URL normalization for calendar feeds

These utilities are used by the configuration layer and the MQTT command handler.
"""

from __future__ import annotations


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    """Best-effort int parser with fallback."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def split_csv(value: str | None) -> list[str]:
    """Split comma-separated strings into trimmed tokens."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def normalize_calendar_url(value: str | None) -> str | None:
    """Trim a feed URL and rewrite ``webcal://`` to ``https://``."""
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    if trimmed.lower().startswith("webcal://"):
        trimmed = "https://" + trimmed[9:]
    return trimmed
