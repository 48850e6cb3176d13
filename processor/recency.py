"""Selection of programs created or updated within a rolling day window."""
import logging
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Sequence

from processor.dates import parse_instant
from processor.exceptions import InvalidDate
from processor.models import Event

logger = logging.getLogger(__name__)

RECENCY_WINDOWS = (1, 4, 7, 14, 21, 28)

# Raw field spellings, source-native first
RAW_MODIFIED_FIELDS = ('lastupdated', 'lastUpdated', 'last_updated')


def select_recent(
    events: Sequence[Event],
    days: int,
    now: Optional[datetime] = None
) -> List[Event]:
    """
    Return events modified within the last `days` days, most recent first.

    The window starts at UTC midnight `days` days before now's UTC date.
    When no event in the collection carries a last-modified value at all,
    events starting inside the window or later are returned instead.

    Args:
        events: Canonical events
        days: Window length, one of RECENCY_WINDOWS
        now: Reference instant (default: current time)

    Returns:
        New list of selected events
    """
    if days not in RECENCY_WINDOWS:
        raise ValueError(
            f"days must be one of {RECENCY_WINDOWS}, got {days!r}"
        )

    now = parse_instant(now) if now is not None else datetime.now(timezone.utc)
    threshold = _utc_midnight(now) - timedelta(days=days)

    modified = [(event, last_modified(event)) for event in events]

    if events and all(value is None for _, value in modified):
        logger.warning(
            "No last-modified metadata on any event, selecting by start date"
        )
        threshold_date = threshold.date()
        return [
            event for event in events
            if event.start_date is not None and event.start_date >= threshold_date
        ]

    selected = [
        (event, value) for event, value in modified
        if value is not None and _utc_midnight(value) >= threshold
    ]
    selected.sort(key=lambda pair: pair[1], reverse=True)

    logger.info(
        f"Selected {len(selected)} of {len(events)} events modified in the "
        f"last {days} days"
    )
    return [event for event, _ in selected]


def last_modified(event: Event) -> Optional[datetime]:
    """
    Last-modified instant of an event, preferring raw source fields.

    Returns:
        Aware UTC datetime or None when no parseable value exists
    """
    for key in RAW_MODIFIED_FIELDS:
        value = event.raw_data.get(key)
        if value in (None, ''):
            continue
        try:
            return parse_instant(value)
        except InvalidDate:
            logger.debug(f"Unparseable {key} on event {event.event_id}: {value!r}")

    if event.source_modified is None:
        return None
    return parse_instant(event.source_modified)


def _utc_midnight(value: datetime) -> datetime:
    return datetime.combine(value.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
