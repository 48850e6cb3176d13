"""Event processor for normalizing raw library program records."""
import hashlib
import logging
import re
from datetime import date, datetime, timezone
from types import MappingProxyType
from typing import Any, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup

from processor.dates import parse_instant, to_civil_date
from processor.exceptions import InvalidDate
from processor.models import Event, RawRecord

logger = logging.getLogger(__name__)


class EventProcessor:
    """Processor for converting raw catalogue records into canonical events."""

    ID_FIELDS = ('_id', 'id', 'event_id', 'eventid')
    TITLE_FIELDS = ('title', 'Title', 'name')
    DESCRIPTION_FIELDS = ('description', 'Description')
    START_DATE_FIELDS = ('startdate', 'startDate', 'start_date')
    END_DATE_FIELDS = ('enddate', 'endDate', 'end_date')
    START_TIME_FIELDS = ('starttime', 'startTime', 'start_time')
    END_TIME_FIELDS = ('endtime', 'endTime', 'end_time')
    LIBRARY_FIELDS = ('library', 'Library', 'branch')
    ADDRESS_FIELDS = ('location', 'Location', 'address')
    WEBSITE_FIELDS = ('pagelink', 'pageLink', 'website', 'url')
    CATEGORY_FIELDS = ('eventtype1', 'eventtype2', 'eventtype3')
    AGE_GROUP_FIELDS = ('agegroup1', 'agegroup2', 'agegroup3')
    # Source-native spelling first
    MODIFIED_FIELDS = ('lastupdated', 'lastUpdated', 'last_updated')

    UNTITLED = 'Untitled Event'
    MAX_SLUG_LENGTH = 40

    def __init__(self, ingested_at: Optional[datetime] = None):
        """
        Initialize the processor.

        Args:
            ingested_at: Timestamp stamped on every event of this run
                (default: now, UTC)
        """
        self.ingested_at = ingested_at or datetime.now(timezone.utc)

    def process_events(self, raw_events: Iterable[RawRecord]) -> List[Event]:
        """
        Normalize a batch of raw records.

        Args:
            raw_events: Raw records from the catalogue

        Returns:
            List of canonical Event objects
        """
        processed_events = []
        total = 0

        for raw in raw_events:
            total += 1
            try:
                processed_events.append(self.normalize(raw))
            except Exception as e:
                logger.warning(
                    f"Failed to normalize record {raw.get('_id', '?')!r}: {e}"
                )
                continue

        logger.info(
            f"Normalized {len(processed_events)} events out of "
            f"{total} raw records"
        )
        return processed_events

    def normalize(self, raw: RawRecord) -> Event:
        """
        Convert one raw record into a canonical Event.

        Args:
            raw: Raw record with any of the known field spellings

        Returns:
            Event object
        """
        title = self.clean_text(self._first(raw, self.TITLE_FIELDS)) or self.UNTITLED
        start_date = self._parse_date(raw, self.START_DATE_FIELDS)
        end_date = self._parse_date(raw, self.END_DATE_FIELDS)
        library = self.clean_text(self._first(raw, self.LIBRARY_FIELDS))

        categories = self._collect(raw, self.CATEGORY_FIELDS)
        age_groups = self._collect(raw, self.AGE_GROUP_FIELDS)

        event_id = self._source_id(raw)
        if event_id is None:
            event_id = self.generate_event_id(title, start_date, library)

        return Event(
            event_id=event_id,
            title=title,
            description=self.clean_html(self._first(raw, self.DESCRIPTION_FIELDS)),
            start_date=start_date,
            end_date=end_date,
            start_time=self._normalize_time(self._first(raw, self.START_TIME_FIELDS)),
            end_time=self._normalize_time(self._first(raw, self.END_TIME_FIELDS)),
            library=library,
            library_address=self.clean_text(self._first(raw, self.ADDRESS_FIELDS)),
            category=categories[0] if categories else None,
            age_group=age_groups[0] if age_groups else None,
            program=', '.join(categories) if categories else None,
            website=self.clean_text(self._first(raw, self.WEBSITE_FIELDS)),
            source_modified=self._parse_modified(raw),
            last_updated=self.ingested_at,
            raw_data=MappingProxyType(dict(raw)),
        )

    @staticmethod
    def clean_text(text: Any) -> Optional[str]:
        """Trim and collapse whitespace; empty or non-string values become None."""
        if not isinstance(text, str):
            return None
        return re.sub(r'\s+', ' ', text).strip() or None

    @classmethod
    def clean_html(cls, text: Any) -> Optional[str]:
        """Like clean_text, but flattens any HTML markup to plain text first."""
        if isinstance(text, str) and '<' in text and '>' in text:
            text = BeautifulSoup(text, 'html.parser').get_text(' ')
        return cls.clean_text(text)

    def generate_event_id(
        self,
        title: str,
        start_date: Optional[date],
        library: Optional[str]
    ) -> str:
        """
        Generate a reproducible identifier for a record without a source id.

        Args:
            title: Normalized event title
            start_date: Civil start date, if known
            library: Normalized library name, if known

        Returns:
            Identifier of the form event_<slug>_<hash prefix>
        """
        composite = '|'.join([
            title,
            start_date.isoformat() if start_date else '',
            library or ''
        ])
        digest = hashlib.sha256(composite.encode('utf-8')).hexdigest()

        slug = re.sub(r'[^a-z0-9]+', '_', title.lower()).strip('_')
        slug = slug[:self.MAX_SLUG_LENGTH].rstrip('_') or 'untitled'

        return f"event_{slug}_{digest[:16]}"

    def _source_id(self, raw: RawRecord) -> Optional[str]:
        for key in self.ID_FIELDS:
            value = raw.get(key)
            if value is None or value == '':
                continue
            return str(value)
        return None

    @staticmethod
    def _first(raw: RawRecord, keys: Sequence[str]) -> Any:
        for key in keys:
            value = raw.get(key)
            if value is not None and value != '':
                return value
        return None

    def _collect(self, raw: RawRecord, keys: Sequence[str]) -> List[str]:
        values = (self.clean_text(raw.get(key)) for key in keys)
        return [value for value in values if value]

    def _parse_date(self, raw: RawRecord, keys: Sequence[str]) -> Optional[date]:
        value = self._first(raw, keys)
        if value is None:
            return None

        try:
            return to_civil_date(value)
        except InvalidDate:
            logger.warning(
                f"Invalid date for event {raw.get('title')!r}: {value!r}"
            )
            return None

    def _parse_modified(self, raw: RawRecord) -> Optional[datetime]:
        value = self._first(raw, self.MODIFIED_FIELDS)
        if value is None:
            return None

        try:
            return parse_instant(value)
        except InvalidDate:
            logger.warning(
                f"Invalid last-modified value for event {raw.get('title')!r}: "
                f"{value!r}"
            )
            return None

    def _normalize_time(self, time_value: Any) -> Optional[str]:
        """
        Normalize time to 24-hour format (HH:MM).

        Args:
            time_value: Time string in various formats

        Returns:
            24-hour formatted time, the cleaned text if no format matches,
            or None when empty
        """
        time_str = self.clean_text(time_value)
        if not time_str:
            return None

        time_formats = [
            '%H:%M',         # 24-hour format
            '%I:%M %p',      # 12-hour format with AM/PM
            '%I:%M%p',       # 12-hour format without space
            '%H:%M:%S',      # 24-hour with seconds
            '%I:%M:%S %p',   # 12-hour with seconds and AM/PM
        ]

        for fmt in time_formats:
            try:
                time_obj = datetime.strptime(time_str, fmt)
                return time_obj.strftime('%H:%M')
            except ValueError:
                continue

        return time_str
