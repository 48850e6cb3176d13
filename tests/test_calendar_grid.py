"""Unit tests for the calendar grid aggregator."""
from datetime import date, datetime, timezone

import pytest

from processor.calendar_grid import (
    NARROW_MAX_VISIBLE,
    WIDE_MAX_VISIBLE,
    build_grid,
    max_visible_for_width,
)
from processor.models import Event


def make_event(event_id, start_date):
    return Event(
        event_id=event_id,
        title=f'Program {event_id}',
        description=None,
        start_date=start_date,
        end_date=start_date,
        start_time='10:00',
        end_time=None,
        library='Beaches',
        library_address=None,
        category='Storytime',
        age_group=None,
        program='Storytime',
        website=None,
        source_modified=None,
        last_updated=datetime(2024, 1, 1, tzinfo=timezone.utc)
    )


class TestBuildGrid:
    """Test cases for build_grid."""

    def test_leap_february(self):
        """Test February 2024 spans whole weeks with 29 in-month days."""
        grid = build_grid([], 2024, 2, today=date(2024, 2, 14))

        assert len(grid.cells) % 7 == 0
        assert sum(cell.in_target_month for cell in grid.cells) == 29
        assert grid.cells[0].date == date(2024, 1, 28)
        assert grid.cells[-1].date == date(2024, 3, 2)

    def test_weeks_start_sunday_end_saturday(self):
        """Test every row runs Sunday to Saturday."""
        grid = build_grid([], 2024, 9, today=date(2024, 9, 1))

        for week in grid.weeks:
            assert len(week) == 7
            assert week[0].date.weekday() == 6
            assert week[-1].date.weekday() == 5

    def test_month_starting_on_sunday(self):
        """Test no leading days are added when the 1st is a Sunday."""
        grid = build_grid([], 2024, 9, today=date(2024, 9, 1))

        assert grid.cells[0].date == date(2024, 9, 1)
        assert grid.cells[0].in_target_month

    def test_month_ending_on_saturday(self):
        """Test no trailing days are added when the last day is a Saturday."""
        grid = build_grid([], 2024, 8, today=date(2024, 8, 1))

        assert grid.cells[-1].date == date(2024, 8, 31)

    def test_four_week_february(self):
        """Test February 2015 fits exactly four weeks."""
        grid = build_grid([], 2015, 2, today=date(2015, 2, 1))

        assert len(grid.cells) == 28
        assert all(cell.in_target_month for cell in grid.cells)

    def test_exactly_one_today(self):
        """Test only the matching cell is marked today."""
        grid = build_grid([], 2024, 3, today=date(2024, 3, 12))

        today_cells = [cell for cell in grid.cells if cell.is_today]
        assert len(today_cells) == 1
        assert today_cells[0].date == date(2024, 3, 12)

    def test_today_outside_grid(self):
        """Test no cell is marked today when today is outside the span."""
        grid = build_grid([], 2024, 3, today=date(2025, 1, 1))

        assert not any(cell.is_today for cell in grid.cells)

    def test_today_in_adjacent_month_padding(self):
        """Test a padding day can still be today."""
        grid = build_grid([], 2024, 2, today=date(2024, 1, 30))

        assert grid.cell_for(date(2024, 1, 30)).is_today
        assert not grid.cell_for(date(2024, 1, 30)).in_target_month

    def test_events_bucketed_by_start_date(self):
        """Test events land in the cell of their start date, in source order."""
        events = [
            make_event('a', date(2024, 2, 5)),
            make_event('b', date(2024, 2, 6)),
            make_event('c', date(2024, 2, 5)),
            make_event('d', None),
            make_event('e', date(2024, 6, 1)),
        ]

        grid = build_grid(events, 2024, 2, today=date(2024, 2, 1))

        assert [e.event_id for e in grid.cell_for(date(2024, 2, 5)).events] == ['a', 'c']
        assert [e.event_id for e in grid.cell_for(date(2024, 2, 6)).events] == ['b']
        placed = sum(len(cell.events) for cell in grid.cells)
        assert placed == 3

    def test_padding_days_receive_their_events(self):
        """Test events on visible days of adjacent months are bucketed too."""
        events = [make_event('jan', date(2024, 1, 29))]

        grid = build_grid(events, 2024, 2, today=date(2024, 2, 1))

        cell = grid.cell_for(date(2024, 1, 29))
        assert [e.event_id for e in cell.events] == ['jan']

    def test_overflow_count_wide(self):
        """Test events beyond the cap are counted but not dropped."""
        events = [make_event(str(i), date(2024, 2, 10)) for i in range(5)]

        grid = build_grid(events, 2024, 2, today=date(2024, 2, 1))
        cell = grid.cell_for(date(2024, 2, 10))

        assert len(cell.events) == 5
        assert cell.overflow_count == 2
        assert [e.event_id for e in cell.visible_events] == ['0', '1', '2']

    def test_overflow_count_narrow(self):
        """Test a narrow cap shows two events."""
        events = [make_event(str(i), date(2024, 2, 10)) for i in range(3)]

        grid = build_grid(
            events, 2024, 2, today=date(2024, 2, 1), max_visible=NARROW_MAX_VISIBLE
        )
        cell = grid.cell_for(date(2024, 2, 10))

        assert cell.overflow_count == 1
        assert len(cell.visible_events) == 2

    def test_no_overflow_under_cap(self):
        events = [make_event('only', date(2024, 2, 10))]

        grid = build_grid(events, 2024, 2, today=date(2024, 2, 1))

        assert grid.cell_for(date(2024, 2, 10)).overflow_count == 0

    def test_input_list_not_modified(self):
        """Test the caller's event list is left untouched."""
        events = [make_event(str(i), date(2024, 2, 10)) for i in range(5)]
        snapshot = list(events)

        build_grid(events, 2024, 2, today=date(2024, 2, 1))

        assert events == snapshot

    def test_default_today(self):
        """Test today defaults to the current Eastern date."""
        grid = build_grid([], 2024, 2)
        assert len(grid.cells) == 35

    def test_invalid_month(self):
        with pytest.raises(ValueError):
            build_grid([], 2024, 13, today=date(2024, 1, 1))

    @pytest.mark.parametrize('year, month', [(9999, 12), (1, 1), (0, 5)])
    def test_year_outside_date_range(self, year, month):
        """Test grids that would run past the supported dates raise ValueError."""
        with pytest.raises(ValueError):
            build_grid([], year, month, today=date(2024, 1, 1))

    def test_to_dict(self):
        """Test the serialized grid uses string dates and overflow counts."""
        events = [make_event(str(i), date(2024, 2, 10)) for i in range(4)]

        data = build_grid(events, 2024, 2, today=date(2024, 2, 10)).to_dict()

        assert data['year'] == 2024
        assert len(data['weeks']) == 5
        cell = next(
            c for week in data['weeks'] for c in week if c['date'] == '2024-02-10'
        )
        assert cell['is_today'] is True
        assert cell['event_count'] == 4
        assert cell['overflow_count'] == 1
        assert len(cell['events']) == 3
        assert cell['events'][0]['start_date'] == '2024-02-10'


class TestMaxVisibleForWidth:
    """Test cases for max_visible_for_width."""

    def test_wide(self):
        assert max_visible_for_width(1024) == WIDE_MAX_VISIBLE

    def test_breakpoint_is_narrow(self):
        assert max_visible_for_width(768) == NARROW_MAX_VISIBLE

    def test_narrow(self):
        assert max_visible_for_width(375) == NARROW_MAX_VISIBLE
