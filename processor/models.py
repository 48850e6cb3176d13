"""Data models for library event processing."""
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple


RawRecord = Dict[str, Any]


@dataclass(frozen=True)
class Event:
    """Canonical library program normalized from a raw catalogue record."""
    event_id: str
    title: str
    description: Optional[str]
    start_date: Optional[date]
    end_date: Optional[date]
    start_time: Optional[str]
    end_time: Optional[str]
    library: Optional[str]
    library_address: Optional[str]
    category: Optional[str]
    age_group: Optional[str]
    program: Optional[str]
    website: Optional[str]
    source_modified: Optional[datetime]
    last_updated: datetime
    raw_data: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    data_source: str = 'toronto-library-events'

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize for JSON responses.

        Dates are written as YYYY-MM-DD so every reader sees the same day.
        """
        return {
            'event_id': self.event_id,
            'title': self.title,
            'description': self.description,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'library': self.library,
            'library_address': self.library_address,
            'category': self.category,
            'age_group': self.age_group,
            'program': self.program,
            'website': self.website,
            'source_modified': (
                self.source_modified.isoformat() if self.source_modified else None
            ),
            'last_updated': self.last_updated.isoformat(),
            'data_source': self.data_source,
            'raw_data': dict(self.raw_data),
        }


@dataclass(frozen=True)
class LocationInfo:
    """Coordinates and contact details for a physical library branch."""
    lat: float
    lng: float
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    branch_code: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lat': self.lat,
            'lng': self.lng,
            'address': self.address,
            'phone': self.phone,
            'website': self.website,
            'branch_code': self.branch_code,
            'name': self.name,
        }


class LocationIndex(Mapping[str, LocationInfo]):
    """Read-only mapping from branch name variants to location details."""

    def __init__(self, entries: Optional[Mapping[str, LocationInfo]] = None):
        self._entries = dict(entries or {})

    def __getitem__(self, key: str) -> LocationInfo:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"LocationIndex({len(self._entries)} keys)"

    @property
    def branch_count(self) -> int:
        """Number of distinct branches behind the name variants."""
        return len({id(info) for info in self._entries.values()})

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {key: info.to_dict() for key, info in self._entries.items()}


@dataclass(frozen=True)
class CalendarCell:
    """One day of a month calendar grid."""
    date: date
    in_target_month: bool
    is_today: bool
    events: Tuple[Event, ...]
    overflow_count: int

    @property
    def visible_events(self) -> Tuple[Event, ...]:
        """Events shown directly in the cell, before the overflow marker."""
        return self.events[:len(self.events) - self.overflow_count]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'in_target_month': self.in_target_month,
            'is_today': self.is_today,
            'events': [event.to_dict() for event in self.visible_events],
            'event_count': len(self.events),
            'overflow_count': self.overflow_count,
        }


@dataclass
class CalendarGrid:
    """Full Sunday-to-Saturday weeks covering a target month."""
    year: int
    month: int
    cells: List[CalendarCell]

    @property
    def weeks(self) -> List[List[CalendarCell]]:
        return [self.cells[i:i + 7] for i in range(0, len(self.cells), 7)]

    def cell_for(self, day: date) -> Optional[CalendarCell]:
        for cell in self.cells:
            if cell.date == day:
                return cell
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'year': self.year,
            'month': self.month,
            'weeks': [[cell.to_dict() for cell in week] for week in self.weeks],
        }


@dataclass
class Page:
    """One page of records returned by a paged data source."""
    records: List[RawRecord]
    total: int = 0


@dataclass
class PageResult:
    """Records accumulated by the bounded paginator."""
    items: List[RawRecord]
    truncated: bool
    pages_fetched: int


@dataclass
class SyncResult:
    """Result of sync operation."""
    added: int
    updated: int
    deleted: int
    errors: list[str]
