"""Timestamp helpers for source files."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

PACIFIC = ZoneInfo("America/Los_Angeles")


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (a trailing "Z" is accepted)."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_to_pacific_time(value: str) -> str:
    """
    Render an ISO timestamp as e.g. "Oct 17, 2026, 9:05 AM PDT".

    Unparseable input is returned unchanged.
    """
    parsed = parse_timestamp(value)
    if parsed is None:
        logger.debug(f"Unparseable timestamp: {value!r}")
        return value
    local = parsed.astimezone(PACIFIC)
    hour = local.strftime("%I").lstrip("0") or "12"
    return f"{local.strftime('%b')} {local.day}, {local.year}, {hour}:{local.strftime('%M %p')} {local.tzname()}"
