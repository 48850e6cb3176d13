"""Month calendar grid aggregation."""
import calendar
import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from processor.dates import today_in_reference_zone
from processor.models import CalendarCell, CalendarGrid, Event

logger = logging.getLogger(__name__)

WIDE_MAX_VISIBLE = 3
NARROW_MAX_VISIBLE = 2
NARROW_BREAKPOINT_PX = 768


def max_visible_for_width(width_px: int) -> int:
    """Number of events shown per cell for a viewport width."""
    return WIDE_MAX_VISIBLE if width_px > NARROW_BREAKPOINT_PX else NARROW_MAX_VISIBLE


def build_grid(
    events: Iterable[Event],
    year: int,
    month: int,
    today: Optional[date] = None,
    max_visible: int = WIDE_MAX_VISIBLE
) -> CalendarGrid:
    """
    Bucket events into full Sunday-to-Saturday weeks covering a month.

    Args:
        events: Canonical events, in display order
        year: Target year
        month: Target month (1-12)
        today: Civil date marked as today (default: today in Eastern time)
        max_visible: Events shown per cell before the rest count as overflow

    Returns:
        CalendarGrid with one cell per day in the span
    """
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    if max_visible < 0:
        raise ValueError(f"max_visible must not be negative, got {max_visible}")
    if today is None:
        today = today_in_reference_zone()

    try:
        first_day = date(year, month, 1)
        last_day = date(year, month, calendar.monthrange(year, month)[1])

        # date.weekday() is Monday=0; shift so Sunday starts the week
        start = first_day - timedelta(days=(first_day.weekday() + 1) % 7)
        end = last_day + timedelta(days=(5 - last_day.weekday()) % 7)
    except (OverflowError, ValueError) as e:
        raise ValueError(f"No full-week grid for {year}-{month:02d}: {e}") from e

    by_date: Dict[date, List[Event]] = defaultdict(list)
    for event in events:
        if event.start_date is None:
            continue
        if start <= event.start_date <= end:
            by_date[event.start_date].append(event)

    cells = []
    day = start
    while day <= end:
        day_events = tuple(by_date.get(day, ()))
        cells.append(CalendarCell(
            date=day,
            in_target_month=(day.year == year and day.month == month),
            is_today=(day == today),
            events=day_events,
            overflow_count=max(0, len(day_events) - max_visible),
        ))
        day += timedelta(days=1)

    logger.debug(
        f"Built calendar grid for {year}-{month:02d}: {len(cells)} cells, "
        f"{sum(len(events) for events in by_date.values())} events placed"
    )
    return CalendarGrid(year=year, month=month, cells=cells)
