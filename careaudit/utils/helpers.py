"""Shared utility functions for time handling and input parsing.

utcnow:          single clock for every service (tests pass ``now=`` instead)
ensure_utc:      SQLite returns naive datetimes even for timezone=True columns
parse_datetime:  tolerant parser for API payloads (returns None on bad input)
parse_iso_day:   strict YYYY-MM-DD validation for string-compared day fields
"""
import logging
import re
from datetime import date, datetime, time, timezone

logger = logging.getLogger(__name__)

_ISO_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow():
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value):
    """Attach UTC to a naive datetime; aware values are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value):
    """ISO-8601 string for a datetime column value, or None."""
    value = ensure_utc(value)
    return value.isoformat() if value else None


def parse_datetime(value):
    """Parse an API value into an aware UTC datetime.

    Accepts datetime/date objects, ISO strings (date or datetime) and epoch
    milliseconds. Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        text = str(value).replace("Z", "+00:00")
        return ensure_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError, OverflowError, OSError):
        # out-of-range epoch values raise OverflowError or OSError depending on platform
        return None


def parse_iso_day(value):
    """Validate a ``YYYY-MM-DD`` string and return it unchanged.

    Day fields compared as strings must keep this exact shape, otherwise the
    lexicographic comparison silently gives wrong answers.

    Raises:
        ValueError: the value is not a real calendar day in ISO form.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value)
    if not _ISO_DAY_RE.match(text):
        raise ValueError(f"Invalid day {text!r}. Use YYYY-MM-DD.")
    date.fromisoformat(text)
    return text
