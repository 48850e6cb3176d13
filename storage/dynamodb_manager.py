"""DynamoDB manager for library event storage operations."""
import json
import logging
from datetime import date, datetime, timezone
from types import MappingProxyType
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import Event, SyncResult

logger = logging.getLogger(__name__)


class DynamoDBManager:
    """Manager for DynamoDB operations."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    OPTIONAL_TEXT_FIELDS = (
        'description', 'start_time', 'end_time', 'library', 'library_address',
        'category', 'age_group', 'program', 'website'
    )

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    def get_all_events(self) -> Dict[str, Event]:
        """
        Retrieve all events from DynamoDB using Scan operation.

        Returns:
            Dictionary mapping event_id to Event objects
        """
        logger.info("Scanning DynamoDB table for all events")
        events = {}

        try:
            response = self.table.scan()
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

            for item in items:
                event = self._item_to_event(item)
                if event:
                    events[event.event_id] = event

            logger.info(f"Retrieved {len(events)} events from DynamoDB")
            return events

        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

    def sync_events(self, new_events: List[Event]) -> SyncResult:
        """
        Synchronize events with DynamoDB.

        Compares freshly normalized events with the stored ones, then
        performs additions, updates, and deletions as needed.

        Args:
            new_events: List of current events from the catalogue

        Returns:
            SyncResult with counts of added, updated, deleted events
        """
        logger.info(f"Starting sync process with {len(new_events)} new events")
        errors = []

        try:
            existing_events = self.get_all_events()

            new_events_dict = {event.event_id: event for event in new_events}

            events_to_add = [
                event for event_id, event in new_events_dict.items()
                if event_id not in existing_events
            ]

            events_to_update = [
                event for event_id, event in new_events_dict.items()
                if event_id in existing_events and
                self._events_differ(event, existing_events[event_id])
            ]

            event_ids_to_delete = [
                event_id for event_id in existing_events.keys()
                if event_id not in new_events_dict
            ]

            logger.info(
                f"Sync plan: {len(events_to_add)} to add, "
                f"{len(events_to_update)} to update, "
                f"{len(event_ids_to_delete)} to delete"
            )

            added_count = 0
            updated_count = 0
            deleted_count = 0

            if events_to_add or events_to_update:
                write_count = self.batch_write_events(
                    events_to_add + events_to_update
                )
                added_count = min(write_count, len(events_to_add))
                updated_count = write_count - added_count

            if event_ids_to_delete:
                deleted_count = self.batch_delete_events(event_ids_to_delete)

            logger.info(
                f"Sync complete: {added_count} added, {updated_count} updated, "
                f"{deleted_count} deleted"
            )

            return SyncResult(
                added=added_count,
                updated=updated_count,
                deleted=deleted_count,
                errors=errors
            )

        except Exception as e:
            error_msg = f"Error during sync operation: {e}"
            logger.error(error_msg)
            errors.append(error_msg)
            return SyncResult(added=0, updated=0, deleted=0, errors=errors)

    def batch_write_events(self, events: List[Event]) -> int:
        """
        Write events to DynamoDB in batches of 25 items.

        Args:
            events: List of Event objects to write

        Returns:
            Count of successfully written events
        """
        if not events:
            return 0

        logger.info(f"Writing {len(events)} events to DynamoDB")
        success_count = 0

        for i in range(0, len(events), self.BATCH_SIZE):
            batch = events[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for event in batch:
                        writer.put_item(Item=self._event_to_item(event))
                # Items are only written once the batch flushes
                success_count += len(batch)

            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                continue

        logger.info(f"Successfully wrote {success_count} events")
        return success_count

    def batch_delete_events(self, event_ids: List[str]) -> int:
        """
        Delete events from DynamoDB in batches of 25 items.

        Args:
            event_ids: List of event IDs to delete

        Returns:
            Count of successfully deleted events
        """
        if not event_ids:
            return 0

        logger.info(f"Deleting {len(event_ids)} events from DynamoDB")
        success_count = 0

        for i in range(0, len(event_ids), self.BATCH_SIZE):
            batch = event_ids[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for event_id in batch:
                        writer.delete_item(Key={'event_id': event_id})
                success_count += len(batch)

            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                continue

        logger.info(f"Successfully deleted {success_count} events")
        return success_count

    def _item_to_event(self, item: dict) -> Optional[Event]:
        """
        Convert DynamoDB item to Event object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Event object or None if conversion fails
        """
        try:
            source_modified = item.get('source_modified')
            return Event(
                event_id=item['event_id'],
                title=item['title'],
                description=item.get('description'),
                start_date=_parse_iso_date(item.get('start_date')),
                end_date=_parse_iso_date(item.get('end_date')),
                start_time=item.get('start_time'),
                end_time=item.get('end_time'),
                library=item.get('library'),
                library_address=item.get('library_address'),
                category=item.get('category'),
                age_group=item.get('age_group'),
                program=item.get('program'),
                website=item.get('website'),
                source_modified=(
                    datetime.fromisoformat(source_modified) if source_modified else None
                ),
                last_updated=datetime.fromtimestamp(
                    int(item['last_updated']), tz=timezone.utc
                ),
                raw_data=MappingProxyType(json.loads(item.get('raw_data') or '{}')),
                data_source=item.get('data_source', 'toronto-library-events')
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to Event: {e}")
            return None

    def _event_to_item(self, event: Event) -> dict:
        """
        Convert Event object to DynamoDB item.

        Args:
            event: Event object

        Returns:
            DynamoDB item dictionary
        """
        item = {
            'event_id': event.event_id,
            'title': event.title,
            'last_updated': int(event.last_updated.timestamp()),
            'data_source': event.data_source,
            'raw_data': _dump_raw(event),
        }

        # Add optional fields if present
        for name in self.OPTIONAL_TEXT_FIELDS:
            value = getattr(event, name)
            if value:
                item[name] = value
        if event.start_date:
            item['start_date'] = event.start_date.isoformat()
        if event.end_date:
            item['end_date'] = event.end_date.isoformat()
        if event.source_modified:
            item['source_modified'] = event.source_modified.isoformat()

        return item

    def _events_differ(self, event1: Event, event2: Event) -> bool:
        """
        Compare two Event objects to determine if they differ.

        Compares all stored fields except the last_updated timestamp.

        Args:
            event1: First Event
            event2: Second Event

        Returns:
            True if events differ, False otherwise
        """
        fields = self.OPTIONAL_TEXT_FIELDS + (
            'title', 'start_date', 'end_date', 'source_modified'
        )
        if any(getattr(event1, name) != getattr(event2, name) for name in fields):
            return True
        return _dump_raw(event1) != _dump_raw(event2)


def _parse_iso_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _dump_raw(event: Event) -> str:
    # Raw records may hold floats, which DynamoDB only accepts as Decimal
    return json.dumps(dict(event.raw_data), sort_keys=True, default=str)
