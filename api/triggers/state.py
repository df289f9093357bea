"""Poll throttle and cron arithmetic for the trigger dispatcher."""
from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from api.triggers.errors import TriggerConfigurationError
from workflow_core.schema import PollState

DEFAULT_POLL_INTERVAL_MINUTES = 5
MIN_POLL_INTERVAL_MINUTES = 1
MAX_POLL_INTERVAL_MINUTES = 60 * 24
DEFAULT_TIMEZONE = "UTC"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def poll_interval_minutes(raw: Any) -> float:
    """
    Configured poll interval in minutes.

    Strings contribute their leading integer ("10 min" -> 10). Missing,
    unparseable or non-positive values fall back to 5; everything else is
    clamped to [1, 1440].
    """
    value: Optional[float] = None
    if isinstance(raw, bool):
        value = None
    elif isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        match = _LEADING_INT.match(raw)
        value = float(match.group(1)) if match else None

    if value is None or not math.isfinite(value) or value <= 0:
        return float(DEFAULT_POLL_INTERVAL_MINUTES)
    return float(max(MIN_POLL_INTERVAL_MINUTES, min(MAX_POLL_INTERVAL_MINUTES, value)))


def poll_is_due(state: PollState, interval_minutes: float, now: datetime) -> bool:
    """True when no poll was attempted yet or at least one interval has elapsed."""
    if state.last_run_at is None:
        return True
    return now - state.last_run_at >= timedelta(minutes=interval_minutes)


def load_timezone(name: Optional[str]) -> ZoneInfo:
    key = (name or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise TriggerConfigurationError(f"Unknown timezone: {key}", reason="invalid_timezone") from exc


def next_fire_after(cron_expression: Optional[str], timezone_name: Optional[str], base: datetime) -> datetime:
    """
    First instant strictly after ``base`` matching ``cron_expression``.

    The expression is evaluated in ``timezone_name`` (default UTC) so DST
    shifts follow local wall-clock time; the result is returned in UTC.

    Raises:
        TriggerConfigurationError: Missing or malformed cron expression, unknown timezone
    """
    expression = (cron_expression or "").strip()
    if not expression:
        raise TriggerConfigurationError("Schedule trigger has no cron expression", reason="missing_cron")
    if not croniter.is_valid(expression):
        raise TriggerConfigurationError(f"Invalid cron expression: {expression}", reason="invalid_cron")

    zone = load_timezone(timezone_name)
    if base.tzinfo is None:
        base = base.replace(tzinfo=timezone.utc)
    upcoming = croniter(expression, base.astimezone(zone)).get_next(datetime)
    return upcoming.astimezone(timezone.utc)


__all__ = [
    "DEFAULT_POLL_INTERVAL_MINUTES",
    "MAX_POLL_INTERVAL_MINUTES",
    "MIN_POLL_INTERVAL_MINUTES",
    "load_timezone",
    "next_fire_after",
    "poll_interval_minutes",
    "poll_is_due",
]
