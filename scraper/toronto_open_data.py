"""Client for the City of Toronto CKAN open data catalogue."""
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List

import requests

from processor.exceptions import NoDatastoreResource, SourceUnavailable
from processor.models import Page, RawRecord
from scraper.paginator import fetch_all

logger = logging.getLogger(__name__)

BASE_URL = "https://ckan0.cf.opendata.inter.prod-toronto.ca/api/3/action"
EVENTS_PACKAGE_ID = "fb343332-03cd-40b9-a1c8-c03a4a85ca1e"
LOCATIONS_PACKAGE_ID = "f5aa9b07-da35-45e6-b31f-d6790eb9bd9b"

PAGE_SIZE = 1000
EVENTS_HARD_CAP = 10000
LOCATIONS_HARD_CAP = 5000


@dataclass
class DatasetFetch:
    """All records of a package's datastore resource."""
    package: Dict[str, Any]
    resource: Dict[str, Any]
    records: List[RawRecord]
    truncated: bool

    @property
    def total(self) -> int:
        return len(self.records)


class TorontoOpenDataClient:
    """Fetches library events and branch locations from Toronto Open Data."""

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: int = 30,
        max_retries: int = 3,
        retry_delay: float = 1,
        page_size: int = PAGE_SIZE,
        session: requests.Session = None
    ):
        """
        Initialize the catalogue client.

        Args:
            base_url: CKAN action API root
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per request before giving up (default: 3)
            retry_delay: Base delay for exponential backoff in seconds
            page_size: Records requested per datastore page
            session: Optional requests session to reuse
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.page_size = page_size
        self.session = session or requests.Session()

    def get_package(self, package_id: str) -> Dict[str, Any]:
        """
        Fetch package metadata.

        Raises:
            SourceUnavailable: If the request fails after all retries
        """
        package = self._get_result('package_show', {'id': package_id})
        logger.info(f"Package fetched: {package.get('title') or package.get('name')}")
        return package

    def get_datastore_resource(self, package: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return the first queryable datastore resource of a package.

        Raises:
            NoDatastoreResource: If the package has none
        """
        resources = [
            resource for resource in package.get('resources', [])
            if resource.get('datastore_active')
        ]
        if not resources:
            raise NoDatastoreResource(package.get('id') or package.get('name', '?'))

        logger.info(f"Found {len(resources)} datastore resources")
        return resources[0]

    def fetch_page(self, resource_id: str, offset: int, limit: int) -> Page:
        """
        Fetch one page of datastore records.

        Raises:
            SourceUnavailable: If the request fails after all retries
        """
        result = self._get_result('datastore_search', {
            'resource_id': resource_id,
            'limit': limit,
            'offset': offset
        })
        return Page(
            records=result.get('records') or [],
            total=result.get('total') or 0
        )

    def fetch_dataset(self, package_id: str, hard_cap: int) -> DatasetFetch:
        """
        Fetch every record of a package's first datastore resource.

        Args:
            package_id: CKAN package id
            hard_cap: Largest offset requested before stopping

        Returns:
            DatasetFetch with the records and a truncation flag
        """
        package = self.get_package(package_id)
        resource = self.get_datastore_resource(package)

        result = fetch_all(
            lambda offset, limit: self.fetch_page(resource['id'], offset, limit),
            page_size=self.page_size,
            hard_cap=hard_cap
        )
        return DatasetFetch(
            package=package,
            resource=resource,
            records=result.items,
            truncated=result.truncated
        )

    def fetch_all_events(self, hard_cap: int = EVENTS_HARD_CAP) -> DatasetFetch:
        """Fetch all library event records."""
        logger.info("Fetching library events")
        return self.fetch_dataset(EVENTS_PACKAGE_ID, hard_cap)

    def fetch_all_locations(self, hard_cap: int = LOCATIONS_HARD_CAP) -> DatasetFetch:
        """Fetch all library branch location records."""
        logger.info("Fetching library locations")
        return self.fetch_dataset(LOCATIONS_PACKAGE_ID, hard_cap)

    def _get_result(self, action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Call a CKAN action with retry logic and unwrap its result.

        Raises:
            SourceUnavailable: If all retry attempts fail or the payload is invalid
        """
        url = f"{self.base_url}/{action}"

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"GET {action} (attempt {attempt + 1}/{self.max_retries})")
                response = self.session.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                break

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    # Calculate exponential backoff delay
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise SourceUnavailable(f"{action} failed: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise SourceUnavailable(f"{action} returned invalid JSON") from e

        if not isinstance(payload, dict) or not payload.get('success', False):
            error = payload.get('error') if isinstance(payload, dict) else None
            raise SourceUnavailable(f"{action} was not successful: {error}")

        result = payload.get('result')
        if not isinstance(result, dict):
            raise SourceUnavailable(f"{action} returned no result")
        return result
