"""Resolve free-text library branch names to coordinates."""
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from processor.exceptions import NoMatch
from processor.models import LocationIndex, LocationInfo, RawRecord

logger = logging.getLogger(__name__)


# Well-known branches, served when the locations dataset cannot be fetched
FALLBACK_LOCATIONS = {
    'Toronto Reference Library': (43.6532, -79.3832),
    'North York Central Library': (43.7615, -79.4111),
    'Scarborough Civic Centre': (43.7735, -79.2584),
    'High Park': (43.6465, -79.4635),
    'Beaches': (43.6677, -79.2941),
    'Yorkville': (43.6708, -79.3925),
    'Cedarbrae': (43.7506, -79.2204),
}


class LocationResolver:
    """Builds branch name indexes and matches event library names against them."""

    NAME_FIELDS = ('BranchName', 'Branch Name', 'Name', 'name', 'branch_name')
    LAT_FIELDS = ('Lat', 'lat', 'latitude', 'Latitude', 'LATITUDE')
    LNG_FIELDS = ('Long', 'lng', 'longitude', 'Longitude', 'LONGITUDE')
    PHYSICAL_FIELDS = ('PhysicalBranch', 'physical_branch', 'physicalBranch')
    ADDRESS_FIELDS = ('Address', 'address')
    PHONE_FIELDS = ('Telephone', 'phone', 'Phone')
    WEBSITE_FIELDS = ('Website', 'website')
    BRANCH_CODE_FIELDS = ('BranchCode', 'branch_code')

    # Applied in order, "public library" before "library"
    STRIP_PATTERNS = [
        re.compile(r'public\s+library', re.IGNORECASE),
        re.compile(r'library', re.IGNORECASE),
        re.compile(r'branch', re.IGNORECASE),
        re.compile(r'\btpl\b', re.IGNORECASE),
        re.compile(r'\b(library|branch|public|tpl)\b', re.IGNORECASE),
    ]

    QUERY_PATTERNS = [
        re.compile(r'library', re.IGNORECASE),
        re.compile(r'branch', re.IGNORECASE),
        re.compile(r'public', re.IGNORECASE),
        re.compile(r'\s+library.*$', re.IGNORECASE),
        re.compile(r'\b(library|branch|public|tpl)\b', re.IGNORECASE),
    ]

    MAX_FUZZY_LENGTH_DIFFERENCE = 5

    def build_index(self, records: Iterable[RawRecord]) -> LocationIndex:
        """
        Build a name variant index from raw branch records.

        Only physical branches with non-zero coordinates are indexed.

        Args:
            records: Raw location records from the catalogue

        Returns:
            LocationIndex mapping every name variant to its branch details
        """
        entries: Dict[str, LocationInfo] = {}
        branches = 0
        skipped = 0

        for record in records:
            info = self._location_info(record)
            if info is None:
                skipped += 1
                continue

            branches += 1
            for variant in self.name_variants(info.name):
                entries[variant] = info

        logger.info(
            f"Built location index with {len(entries)} keys for "
            f"{branches} physical branches ({skipped} records skipped)"
        )
        return LocationIndex(entries)

    def name_variants(self, name: str) -> List[str]:
        """Return the distinct index keys generated for a branch name."""
        candidates = [name, name.lower()]
        for pattern in self.STRIP_PATTERNS:
            stripped = _collapse(pattern.sub('', name))
            candidates.extend([stripped, stripped.lower()])

        variants = []
        for candidate in candidates:
            if len(candidate) > 1 and candidate not in variants:
                variants.append(candidate)
        return variants

    def resolve(self, name: Optional[str], index: LocationIndex) -> Optional[LocationInfo]:
        """
        Find coordinates for a free-text library name.

        Tries an exact key, a lower-cased key, stripped query variants and
        finally a fuzzy containment scan.

        Args:
            name: Library name as written on the event
            index: Index built by build_index

        Returns:
            LocationInfo or None when the name cannot be matched
        """
        try:
            return self.match(name, index)
        except NoMatch:
            logger.debug(f"No coordinates found for library {name!r}")
            return None

    def match(self, name: Optional[str], index: LocationIndex) -> LocationInfo:
        """
        Same as resolve, but raises NoMatch instead of returning None.

        Raises:
            NoMatch: If no strategy finds a key
        """
        if not name or not index:
            raise NoMatch(name or '')

        if name in index:
            return index[name]

        lower_name = name.lower()
        if lower_name in index:
            return index[lower_name]

        terms = self._search_terms(lower_name)
        for term in terms:
            if term in index:
                return index[term]

        key = self._fuzzy_key(terms, index)
        if key is None:
            raise NoMatch(name)

        logger.debug(f"Fuzzy match: {name!r} -> {key!r}")
        return index[key]

    def _search_terms(self, lower_name: str) -> List[str]:
        terms = []
        for pattern in self.QUERY_PATTERNS:
            term = _collapse(pattern.sub('', lower_name))
            if term and term not in terms:
                terms.append(term)
        return terms

    def _fuzzy_key(self, terms: Sequence[str], index: LocationIndex) -> Optional[str]:
        # Smallest length difference wins, ties go to the lexicographically first key
        best = None
        for key in index:
            lower_key = key.lower()
            for term in terms:
                if term not in lower_key and lower_key not in term:
                    continue
                difference = abs(len(lower_key) - len(term))
                if difference > self.MAX_FUZZY_LENGTH_DIFFERENCE:
                    continue
                candidate = (difference, key)
                if best is None or candidate < best:
                    best = candidate
        return best[1] if best else None

    def _location_info(self, record: RawRecord) -> Optional[LocationInfo]:
        if not _is_physical_branch(_first(record, self.PHYSICAL_FIELDS)):
            return None

        name = _first(record, self.NAME_FIELDS)
        if not isinstance(name, str) or not name.strip():
            return None

        lat = _parse_coordinate(_first(record, self.LAT_FIELDS))
        lng = _parse_coordinate(_first(record, self.LNG_FIELDS))
        if not lat or not lng:
            return None

        return LocationInfo(
            lat=lat,
            lng=lng,
            address=_clean(_first(record, self.ADDRESS_FIELDS)),
            phone=_clean(_first(record, self.PHONE_FIELDS)),
            website=_clean(_first(record, self.WEBSITE_FIELDS)),
            branch_code=_clean(_first(record, self.BRANCH_CODE_FIELDS)),
            name=_collapse(name),
        )


def fallback_index() -> LocationIndex:
    """Build a LocationIndex from the static FALLBACK_LOCATIONS table."""
    resolver = LocationResolver()
    entries = {}
    for name, (lat, lng) in FALLBACK_LOCATIONS.items():
        info = LocationInfo(lat=lat, lng=lng, name=name)
        for variant in resolver.name_variants(name):
            entries[variant] = info
    return LocationIndex(entries)


def _first(record: RawRecord, keys: Sequence[str]) -> Any:
    for key in keys:
        if record.get(key) is not None:
            return record[key]
    return None


def _collapse(text: str) -> str:
    return re.sub(r'\s+', ' ', text).strip()


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    return _collapse(str(value)) or None


def _parse_coordinate(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _is_physical_branch(flag: Any) -> bool:
    if isinstance(flag, str):
        return flag.strip().lower() in ('1', 'true', 'yes', 'y')
    return flag is True or flag == 1
