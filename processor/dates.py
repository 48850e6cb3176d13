"""Calendar date normalization anchored to the source data's home timezone.

Library records are published from Toronto, so every "which day is this"
question is answered in U.S./Canadian Eastern time. Converting to a plain
``datetime.date`` up front keeps the calendar day stable no matter which
timezone later reads the serialized value.
"""
import logging
from datetime import date, datetime, time, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from dateutil import parser as dtparser

from processor.exceptions import InvalidDate

logger = logging.getLogger(__name__)

REFERENCE_ZONE = ZoneInfo('America/New_York')

DATE_ONLY_FORMATS = [
    '%Y-%m-%d',      # ISO 8601
    '%m/%d/%Y',      # US format
    '%d/%m/%Y',      # European format
    '%B %d, %Y',     # Full month name
    '%b %d, %Y',     # Abbreviated month name
]

DATETIME_FORMATS = [
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%d %H:%M:%S',
    '%m/%d/%Y %H:%M:%S',
]

DateInput = Union[date, datetime, str]

# Differ in year, month, day and weekday
FILL_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def to_civil_date(value: DateInput, reference_zone: ZoneInfo = REFERENCE_ZONE) -> date:
    """
    Convert a date or instant into the calendar date it reads as in reference_zone.

    Args:
        value: date, datetime or string in one of the accepted formats
        reference_zone: Zone the civil date is read in (default: Eastern)

    Returns:
        datetime.date with no time or timezone component

    Raises:
        InvalidDate: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        return _datetime_to_civil(value, reference_zone)
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidDate(value)

    text = value.strip()
    if not text:
        raise InvalidDate(value)

    for fmt in DATE_ONLY_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    try:
        return _datetime_to_civil(datetime.fromisoformat(text), reference_zone)
    except ValueError:
        pass

    parsed = _parse_complete(value, text)
    logger.debug(f"Parsed {text!r} with generic date parser")
    return _datetime_to_civil(parsed, reference_zone)


def parse_instant(value: DateInput) -> datetime:
    """
    Parse a timestamp into an aware UTC datetime.

    Naive values are read as UTC; date-only values become UTC midnight.

    Raises:
        InvalidDate: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        except ValueError:
            parsed = _parse_complete(value, text)
    else:
        raise InvalidDate(value)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def today_in_reference_zone(
    now: Optional[datetime] = None,
    reference_zone: ZoneInfo = REFERENCE_ZONE
) -> date:
    """Return today's civil date as seen in reference_zone."""
    if now is None:
        now = datetime.now(timezone.utc)
    return _datetime_to_civil(now, reference_zone)


def _parse_complete(value: DateInput, text: str) -> datetime:
    """
    Parse text with the generic parser, rejecting partial or relative dates.

    dateutil fills any missing year, month or day from its default, so a
    string that parses differently under each of FILL_DEFAULTS does not
    name a full date.

    Raises:
        InvalidDate: If the text is unparseable or incomplete
    """
    try:
        first, second = [dtparser.parse(text, default=d) for d in FILL_DEFAULTS]
    except (ValueError, OverflowError) as e:
        raise InvalidDate(value) from e

    if first.date() != second.date():
        raise InvalidDate(value)
    return first


def _datetime_to_civil(value: datetime, reference_zone: ZoneInfo) -> date:
    # Naive datetimes are wall-clock time in the reference zone already
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(reference_zone).date()
