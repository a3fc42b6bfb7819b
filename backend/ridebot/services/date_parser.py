"""
Natural-language ride dates.

``dateparser`` does the heavy lifting. "today/tomorrow/tonight <time>" is
split up first because dateparser resolves the relative day and the time
of day separately.
"""
import logging
import re
from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import dateparser

from ridebot.core.config import settings
from ridebot.services.validators import ValidationResult

logger = logging.getLogger(__name__)

DATE_FORMAT_ERROR = (
    "❌ I couldn't understand that date/time format. Please try something like:\n"
    "• tomorrow at 6pm\n"
    "• in 2 hours\n"
    "• next saturday 10am\n"
    "• 21 Jul 14:30"
)
PAST_DATE_ERROR = "❌ The ride can't be scheduled in the past! Please provide a future date and time."

_RELATIVE_DAY = re.compile(r"^\s*(today|tonight|tomorrow)\b(?:\s+at)?\s*(.*?)\s*$", re.IGNORECASE)
_TIME_OF_DAY = re.compile(r"^(\d{1,2})(?:[:.](\d{2}))?\s*(am|pm)?$", re.IGNORECASE)


def _zone(tz_name: Optional[str]) -> ZoneInfo:
    return ZoneInfo(tz_name or settings.DEFAULT_TIMEZONE)


def _parse_time_of_day(text: str) -> Optional[time]:
    match = _TIME_OF_DAY.match(text.strip())
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = (match.group(3) or "").lower()
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def _parse_relative_day(text: str, local_now: datetime) -> Optional[datetime]:
    match = _RELATIVE_DAY.match(text)
    if not match:
        return None
    word, rest = match.group(1).lower(), match.group(2)
    day = local_now.date() + timedelta(days=1 if word == "tomorrow" else 0)
    if not rest:
        at = time(20, 0) if word == "tonight" else local_now.time().replace(second=0, microsecond=0)
    else:
        at = _parse_time_of_day(rest)
        if at is None:
            return None
        if word == "tonight" and at.hour < 12:
            at = at.replace(hour=at.hour + 12)
    return datetime.combine(day, at, tzinfo=local_now.tzinfo)


def parse_datetime(text: str, now: Optional[datetime] = None, tz_name: Optional[str] = None) -> Optional[datetime]:
    """Parse ``text`` into an aware datetime in UTC, or ``None`` if it is not a date."""
    if not text or not text.strip():
        return None

    zone = _zone(tz_name)
    now = now or datetime.now(timezone.utc)
    local_now = now.astimezone(zone)

    parsed = _parse_relative_day(text, local_now)
    if parsed is None:
        parsed = dateparser.parse(
            text,
            settings={
                "TIMEZONE": zone.key,
                "TO_TIMEZONE": "UTC",
                "PREFER_DATES_FROM": "future",
                "RETURN_AS_TIMEZONE_AWARE": True,
                "RELATIVE_BASE": local_now.replace(tzinfo=None),
            },
        )
    if parsed is None:
        logger.info(f"[DateParser] Could not parse {text!r}")
        return None
    return parsed.astimezone(timezone.utc)


def validate_date(text: str, now: Optional[datetime] = None, tz_name: Optional[str] = None) -> ValidationResult:
    now = now or datetime.now(timezone.utc)
    parsed = parse_datetime(text, now=now, tz_name=tz_name)
    if parsed is None:
        return ValidationResult.fail(DATE_FORMAT_ERROR)
    if parsed <= now:
        return ValidationResult.fail(PAST_DATE_ERROR)
    return ValidationResult.ok(parsed)


def format_datetime(value: datetime, tz_name: Optional[str] = None) -> str:
    """``Sat, 21 Jul 2025 at 14:30`` in the configured timezone."""
    local = value.astimezone(_zone(tz_name))
    return f"{local.strftime('%a, %d %b %Y')} at {local.strftime('%H:%M')}"
