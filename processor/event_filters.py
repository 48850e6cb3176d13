"""Filtering of canonical events by text, facets, date and distance."""
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from processor.cache import BoundedCache
from processor.event_processor import EventProcessor
from processor.location_resolver import LocationResolver
from processor.models import Event, LocationIndex

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
FILTER_CACHE_SIZE = 50
DISTANCE_CACHE_SIZE = 1000


@dataclass
class FilterCriteria:
    """User-selected filters; empty values do not filter."""
    search: str = ''
    libraries: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    age_groups: List[str] = field(default_factory=list)
    on_date: Optional[date] = None
    max_distance_km: Optional[float] = None
    origin: Optional[Tuple[float, float]] = None

    def state_key(self) -> str:
        """Composite key identifying this filter state."""
        origin = f"{self.origin[0]:.3f},{self.origin[1]:.3f}" if self.origin else ''
        return '|'.join([
            self.search.strip().lower(),
            ','.join(sorted(self.libraries)),
            ','.join(sorted(self.categories)),
            ','.join(sorted(self.age_groups)),
            self.on_date.isoformat() if self.on_date else '',
            '' if self.max_distance_km is None else str(self.max_distance_km),
            origin,
        ])


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
        * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class EventFilter:
    """Applies FilterCriteria to a list of events, caching results and distances."""

    def __init__(
        self,
        location_index: Optional[LocationIndex] = None,
        resolver: Optional[LocationResolver] = None,
        result_cache: Optional[BoundedCache] = None,
        distance_cache: Optional[BoundedCache] = None
    ):
        self.location_index = location_index if location_index is not None else LocationIndex()
        self.resolver = resolver or LocationResolver()
        self.result_cache = (
            result_cache if result_cache is not None else BoundedCache(FILTER_CACHE_SIZE)
        )
        self.distance_cache = (
            distance_cache if distance_cache is not None else BoundedCache(DISTANCE_CACHE_SIZE)
        )

    def apply(self, events: Sequence[Event], criteria: FilterCriteria) -> List[Event]:
        """
        Return the events matching every active criterion, in source order.

        Results are cached per filter state; callers must use a fresh
        EventFilter (or clear result_cache) when the event list changes.
        """
        key = criteria.state_key()
        cached = self.result_cache.get(key)
        if cached is not None:
            logger.debug(f"Using cached filter results for {key!r}")
            return list(cached)

        search = criteria.search.strip().lower()
        matched = [
            event for event in events
            if self._matches(event, criteria, search)
        ]

        self.result_cache.put(key, tuple(matched))
        logger.info(f"Filtered {len(matched)} of {len(events)} events")
        return matched

    def distance_to(self, event: Event, origin: Tuple[float, float]) -> Optional[float]:
        """Distance in km from origin to the event's library, if it can be located."""
        location = self.resolver.resolve(event.library, self.location_index)
        if location is None:
            return None
        return self.distance(origin[0], origin[1], location.lat, location.lng)

    def distance(self, lat1: float, lng1: float, lat2: float, lng2: float) -> float:
        key = f"{lat1:.3f},{lng1:.3f},{lat2:.3f},{lng2:.3f}"
        cached = self.distance_cache.get(key)
        if cached is not None:
            return cached

        result = haversine_km(lat1, lng1, lat2, lng2)
        self.distance_cache.put(key, result)
        return result

    def _matches(self, event: Event, criteria: FilterCriteria, search: str) -> bool:
        if search:
            searchable = ' '.join(
                value for value in (
                    event.title, event.description, event.library, event.category
                ) if value
            ).lower()
            if search not in searchable:
                return False

        if criteria.libraries and event.library not in criteria.libraries:
            return False
        if criteria.categories and event.category not in criteria.categories:
            return False
        if criteria.age_groups and event.age_group not in criteria.age_groups:
            return False

        if criteria.on_date is not None and event.start_date != criteria.on_date:
            return False

        if criteria.max_distance_km is not None:
            if criteria.origin is None or not event.library:
                return False
            distance = self.distance_to(event, criteria.origin)
            if distance is None or distance > criteria.max_distance_km:
                return False

        return True


def filter_options(events: Sequence[Event]) -> Dict[str, List[str]]:
    """
    Distinct, sorted libraries, categories and age groups found in events.

    Categories and age groups come from every numbered source slot, not only
    the primary one.
    """
    libraries = set()
    categories = set()
    age_groups = set()

    for event in events:
        if event.library:
            libraries.add(event.library)
        categories.update(_slot_values(event, EventProcessor.CATEGORY_FIELDS, event.category))
        age_groups.update(_slot_values(event, EventProcessor.AGE_GROUP_FIELDS, event.age_group))

    return {
        'libraries': sorted(libraries),
        'categories': sorted(categories),
        'age_groups': sorted(age_groups),
    }


def _slot_values(event: Event, keys: Sequence[str], primary: Optional[str]) -> List[str]:
    values = [EventProcessor.clean_text(event.raw_data.get(key)) for key in keys]
    values = [value for value in values if value]
    if not values and primary:
        values.append(primary)
    return values
