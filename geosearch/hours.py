"""Open-now evaluation for structured weekly business hours."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import DayHours

logger = logging.getLogger(__name__)

DAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
MINUTES_PER_DAY = 24 * 60


def parse_time(value: str | None) -> int | None:
    """Parse ``HH:MM`` into minutes after midnight. ``24:00`` means end of day."""
    if not value:
        return None
    try:
        hours_part, _, minutes_part = value.strip().partition(":")
        hours = int(hours_part)
        minutes = int(minutes_part or 0)
    except ValueError:
        logger.debug("Unparseable time value %r", value)
        return None
    if not (0 <= hours <= 24 and 0 <= minutes < 60) or (hours == 24 and minutes):
        logger.debug("Out of range time value %r", value)
        return None
    return hours * 60 + minutes


def _span(day: DayHours | None) -> tuple[int, int] | None:
    if day is None or day.closed:
        return None
    opens = parse_time(day.open)
    closes = parse_time(day.close)
    if opens is None or closes is None:
        return None
    if closes == opens:
        # 00:00-00:00 style entries mean open around the clock
        return 0, MINUTES_PER_DAY
    if closes < opens:
        # Overnight span, e.g. 22:00-02:00 runs into the next day
        closes += MINUTES_PER_DAY
    return opens, closes


def resolve_timezone(name: str | None, default: str = "UTC") -> ZoneInfo:
    for candidate in (name, default, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, falling back", candidate)
    raise ZoneInfoNotFoundError("UTC")


def is_open_at(hours: Mapping[str, DayHours] | None, local_time: datetime) -> bool:
    """Check weekly hours against a wall-clock time in the business's timezone.

    Both today's span and yesterday's overnight spill-over are considered, so
    a 22:00-02:00 schedule reports open at 23:30 and at 01:00.
    """
    if not hours:
        return False
    minute_of_day = local_time.hour * 60 + local_time.minute
    today = DAY_KEYS[local_time.weekday()]
    yesterday = DAY_KEYS[(local_time - timedelta(days=1)).weekday()]

    today_span = _span(hours.get(today))
    if today_span and today_span[0] <= minute_of_day < today_span[1]:
        return True

    yesterday_span = _span(hours.get(yesterday))
    if yesterday_span and yesterday_span[1] > MINUTES_PER_DAY:
        return minute_of_day < yesterday_span[1] - MINUTES_PER_DAY
    return False


def is_open_now(
    hours: Mapping[str, DayHours] | None,
    timezone: str | None,
    now: datetime,
    default_timezone: str = "UTC",
) -> bool:
    """Evaluate ``hours`` at the instant ``now`` (timezone-aware) in the business's zone."""
    zone = resolve_timezone(timezone, default_timezone)
    return is_open_at(hours, now.astimezone(zone))
