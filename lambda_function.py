"""AWS Lambda handler for Toronto Library Events."""
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from processor.calendar_grid import WIDE_MAX_VISIBLE, build_grid, max_visible_for_width
from processor.dates import to_civil_date, today_in_reference_zone
from processor.event_filters import EventFilter, FilterCriteria, filter_options
from processor.event_processor import EventProcessor
from processor.exceptions import InvalidDate, LibraryEventsError
from processor.location_resolver import LocationResolver, fallback_index
from processor.models import Event, LocationIndex
from processor.recency import select_recent
from scraper import toronto_open_data
from scraper.toronto_open_data import DatasetFetch, TorontoOpenDataClient
from storage.dynamodb_manager import DynamoDBManager

DEFAULT_NEW_PROGRAM_DAYS = 28
DEFAULT_NEARBY_RADIUS_KM = 10.0

# Attributes present on every LogRecord; anything else came in through extra=
_RESERVED_LOG_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


@dataclass
class Settings:
    """Runtime configuration read from environment variables."""
    table_name: str
    log_level: str
    timeout_seconds: int
    max_retries: int
    ckan_base_url: str
    events_package_id: str
    locations_package_id: str
    page_size: int
    events_hard_cap: int
    locations_hard_cap: int


def load_settings() -> Settings:
    """Read configuration from environment variables."""
    return Settings(
        table_name=os.environ.get('TABLE_NAME', 'library-events'),
        log_level=os.environ.get('LOG_LEVEL', 'INFO'),
        timeout_seconds=int(os.environ.get('TIMEOUT_SECONDS', '30')),
        max_retries=int(os.environ.get('MAX_RETRIES', '3')),
        ckan_base_url=os.environ.get('CKAN_BASE_URL', toronto_open_data.BASE_URL),
        events_package_id=os.environ.get(
            'EVENTS_PACKAGE_ID', toronto_open_data.EVENTS_PACKAGE_ID
        ),
        locations_package_id=os.environ.get(
            'LOCATIONS_PACKAGE_ID', toronto_open_data.LOCATIONS_PACKAGE_ID
        ),
        page_size=int(os.environ.get('PAGE_SIZE', str(toronto_open_data.PAGE_SIZE))),
        events_hard_cap=int(
            os.environ.get('EVENTS_HARD_CAP', str(toronto_open_data.EVENTS_HARD_CAP))
        ),
        locations_hard_cap=int(
            os.environ.get('LOCATIONS_HARD_CAP', str(toronto_open_data.LOCATIONS_HARD_CAP))
        ),
    )


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any extra= fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


logger = logging.getLogger(__name__)


class BadRequest(ValueError):
    """Invalid request parameters."""


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    The `action` field selects what to do: `sync` (default, for the
    scheduled refresh), `events`, `filters`, `calendar`, `new`,
    `locations` or `nearby`. Parameters are read from the payload itself
    or from API Gateway's queryStringParameters.

    Args:
        event: EventBridge or API Gateway event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    settings = load_settings()
    setup_logging(settings.log_level)

    params = _request_params(event)
    action = params.get('action') or 'sync'
    start_time = time.time()

    handler = ACTIONS.get(action)
    if handler is None:
        return _response(400, {
            'message': f"Unknown action: {action}",
            'actions': sorted(ACTIONS)
        })

    logger.info(
        "Lambda execution started",
        extra={'action': action, 'table_name': settings.table_name}
    )

    try:
        client = TorontoOpenDataClient(
            base_url=settings.ckan_base_url,
            timeout=settings.timeout_seconds,
            max_retries=settings.max_retries,
            page_size=settings.page_size
        )
        status, body = handler(params, settings, client)

    except BadRequest as e:
        return _response(400, {'message': str(e)})

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'action': action,
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': 'Request failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    duration = time.time() - start_time
    body['duration_seconds'] = round(duration, 2)
    logger.info(
        "Lambda execution completed",
        extra={'action': action, 'status_code': status, 'duration_seconds': round(duration, 2)}
    )
    return _response(status, body)


def handle_sync(
    params: Dict[str, Any],
    settings: Settings,
    client: TorontoOpenDataClient
) -> Tuple[int, Dict[str, Any]]:
    """Fetch, normalize and store all library events."""
    dynamodb_manager = DynamoDBManager(table_name=settings.table_name)

    try:
        fetched = _fetch_events(client, settings)
    except LibraryEventsError as e:
        logger.error(
            f"Failed to fetch library events: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return 500, {
            'message': 'Failed to fetch library events',
            'error': str(e),
            'error_type': type(e).__name__
        }

    processed_events = EventProcessor().process_events(fetched.records)

    # sync_events reports failures through SyncResult.errors instead of raising
    sync_result = dynamodb_manager.sync_events(processed_events)
    if sync_result.errors:
        logger.error(
            "Error during DynamoDB sync operation",
            extra={'errors': sync_result.errors}
        )
        return 500, {
            'message': 'Failed to sync events with DynamoDB',
            'error': '; '.join(sync_result.errors),
            'error_type': 'SyncError',
            'note': 'Previous events remain in DynamoDB'
        }

    logger.info(
        "Sync finished",
        extra={
            'events_added': sync_result.added,
            'events_updated': sync_result.updated,
            'events_deleted': sync_result.deleted,
            'truncated': fetched.truncated,
            'errors': sync_result.errors
        }
    )

    return 200, {
        'message': 'Sync completed successfully',
        'statistics': {
            'raw_events_fetched': fetched.total,
            'valid_events_processed': len(processed_events),
            'events_added': sync_result.added,
            'events_updated': sync_result.updated,
            'events_deleted': sync_result.deleted,
            'truncated': fetched.truncated
        },
        'package': {
            'title': fetched.package.get('title'),
            'last_updated': fetched.package.get('metadata_modified')
        },
        'errors': sync_result.errors
    }


def handle_events(params, settings, client):
    """Filtered list of canonical events."""
    events, truncated = _load_events(client, settings)
    criteria = _criteria(params)
    index = _location_index_for(criteria, client, settings)

    filtered = EventFilter(location_index=index).apply(events, criteria)
    return 200, {
        'events': [event.to_dict() for event in filtered],
        'total': len(filtered),
        'all_events': len(events),
        'truncated': truncated
    }


def handle_filters(params, settings, client):
    """Distinct libraries, categories and age groups."""
    events, truncated = _load_events(client, settings)
    return 200, {'filters': filter_options(events), 'truncated': truncated}


def handle_calendar(params, settings, client):
    """Month grid of filtered events."""
    today = today_in_reference_zone()
    year = _int_param(params, 'year', today.year)
    month = _int_param(params, 'month', today.month)

    if params.get('width') not in (None, ''):
        max_visible = max_visible_for_width(_int_param(params, 'width', 0))
    else:
        max_visible = _int_param(params, 'max_visible', WIDE_MAX_VISIBLE)

    events, truncated = _load_events(client, settings)
    criteria = _criteria(params)
    index = _location_index_for(criteria, client, settings)
    filtered = EventFilter(location_index=index).apply(events, criteria)

    try:
        grid = build_grid(filtered, year, month, today=today, max_visible=max_visible)
    except ValueError as e:
        raise BadRequest(str(e)) from e

    return 200, {'calendar': grid.to_dict(), 'total': len(filtered), 'truncated': truncated}


def handle_new(params, settings, client):
    """Programs created or updated within the last `days` days."""
    days = _int_param(params, 'days', DEFAULT_NEW_PROGRAM_DAYS)
    events, truncated = _load_events(client, settings)

    try:
        recent = select_recent(events, days)
    except ValueError as e:
        raise BadRequest(str(e)) from e

    return 200, {
        'events': [event.to_dict() for event in recent],
        'total': len(recent),
        'days': days,
        'truncated': truncated
    }


def handle_locations(params, settings, client):
    """Branch name index with coordinates."""
    index, fallback = load_location_index(client, settings)
    body = {
        'locations': index.to_dict(),
        'total': index.branch_count,
        'fallback': fallback
    }
    return 200, body


def handle_nearby(params, settings, client):
    """Events at libraries within `radius` km of a point."""
    if params.get('lat') in (None, '') or params.get('lng') in (None, ''):
        raise BadRequest('Latitude and longitude are required')

    origin = (_float_param(params, 'lat'), _float_param(params, 'lng'))
    radius = _float_param(params, 'radius', DEFAULT_NEARBY_RADIUS_KM)

    events, truncated = _load_events(client, settings)
    index, fallback = load_location_index(client, settings)
    criteria = FilterCriteria(max_distance_km=radius, origin=origin)
    nearby = EventFilter(location_index=index).apply(events, criteria)

    logger.info(f"Found {len(nearby)} events within {radius}km of {origin}")
    return 200, {
        'events': [event.to_dict() for event in nearby],
        'total': len(nearby),
        'location': {'lat': origin[0], 'lng': origin[1]},
        'radius': radius,
        'fallback_locations': fallback,
        'truncated': truncated
    }


ACTIONS: Dict[str, Callable] = {
    'sync': handle_sync,
    'events': handle_events,
    'filters': handle_filters,
    'calendar': handle_calendar,
    'new': handle_new,
    'locations': handle_locations,
    'nearby': handle_nearby,
}


def load_location_index(
    client: TorontoOpenDataClient,
    settings: Settings
) -> Tuple[LocationIndex, bool]:
    """
    Build the location index, falling back to the static branch table.

    Returns:
        Tuple of (index, whether the fallback table was used)
    """
    try:
        fetched = client.fetch_dataset(
            settings.locations_package_id, settings.locations_hard_cap
        )
    except LibraryEventsError as e:
        logger.warning(
            f"Library locations unavailable, using fallback table: {e}",
            extra={'error_type': type(e).__name__}
        )
        return fallback_index(), True

    return LocationResolver().build_index(fetched.records), False


def _fetch_events(client: TorontoOpenDataClient, settings: Settings) -> DatasetFetch:
    fetched = client.fetch_dataset(settings.events_package_id, settings.events_hard_cap)
    logger.info(f"Fetched {fetched.total} raw events from catalogue")
    return fetched


def _load_events(client: TorontoOpenDataClient, settings: Settings) -> Tuple[List[Event], bool]:
    fetched = _fetch_events(client, settings)
    return EventProcessor().process_events(fetched.records), fetched.truncated


def _location_index_for(criteria, client, settings) -> Optional[LocationIndex]:
    if criteria.max_distance_km is None:
        return None
    index, _ = load_location_index(client, settings)
    return index


def _criteria(params: Dict[str, Any]) -> FilterCriteria:
    on_date: Optional[date] = None
    if params.get('date'):
        try:
            on_date = to_civil_date(params['date'])
        except InvalidDate as e:
            raise BadRequest(str(e)) from e

    max_distance = None
    origin = None
    if params.get('distance') not in (None, ''):
        max_distance = _float_param(params, 'distance')
        if params.get('lat') not in (None, '') and params.get('lng') not in (None, ''):
            origin = (_float_param(params, 'lat'), _float_param(params, 'lng'))

    return FilterCriteria(
        search=params.get('search') or '',
        libraries=_list_param(params, 'library'),
        categories=_list_param(params, 'category'),
        age_groups=_list_param(params, 'age_group'),
        on_date=on_date,
        max_distance_km=max_distance,
        origin=origin
    )


def _request_params(event: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    event = event or {}
    params = {
        key: value for key, value in event.items()
        if key != 'queryStringParameters'
    }
    params.update(event.get('queryStringParameters') or {})
    return params


def _list_param(params: Dict[str, Any], name: str) -> List[str]:
    value = params.get(name)
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return [item.strip() for item in value if item and item.strip()]


def _int_param(params: Dict[str, Any], name: str, default: int) -> int:
    value = params.get(name)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise BadRequest(f"{name} must be an integer, got {value!r}") from e


def _float_param(params: Dict[str, Any], name: str, default: Optional[float] = None) -> float:
    value = params.get(name)
    if value in (None, ''):
        if default is None:
            raise BadRequest(f"{name} is required")
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise BadRequest(f"{name} must be a number, got {value!r}") from e


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'body': json.dumps(body, default=str)
    }
