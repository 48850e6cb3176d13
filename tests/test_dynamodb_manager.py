"""Unit tests for DynamoDB manager."""
from datetime import date, datetime, timezone
from types import MappingProxyType
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from processor.models import Event
from storage.dynamodb_manager import DynamoDBManager


INGESTED_AT = datetime(2024, 1, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def dynamodb_table(monkeypatch):
    """Create a mock DynamoDB table for testing."""
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')

    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        table = dynamodb.create_table(
            TableName='test-library-events',
            KeySchema=[
                {'AttributeName': 'event_id', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'event_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield table


@pytest.fixture
def dynamodb_manager(dynamodb_table):
    """Create DynamoDBManager instance with mock table."""
    return DynamoDBManager('test-library-events')


def make_event(event_id, title='Test Event', **overrides):
    fields = dict(
        event_id=event_id,
        title=title,
        description='Songs and stories',
        start_date=date(2024, 1, 15),
        end_date=date(2024, 1, 15),
        start_time='10:30',
        end_time='11:00',
        library='Beaches',
        library_address='2161 Queen St. E.',
        category='Storytime',
        age_group='Early Years',
        program='Storytime, Family',
        website='https://www.torontopubliclibrary.ca/',
        source_modified=datetime(2024, 1, 18, 9, 15, tzinfo=timezone.utc),
        last_updated=INGESTED_AT,
        raw_data=MappingProxyType({'_id': event_id, 'title': title, 'score': 1.5})
    )
    fields.update(overrides)
    return Event(**fields)


@pytest.fixture
def sample_event():
    """Create a sample Event for testing."""
    return make_event('1042')


def test_get_all_events_empty_table(dynamodb_manager):
    """Test get_all_events returns empty dict for empty table."""
    assert dynamodb_manager.get_all_events() == {}


def test_round_trip_preserves_fields(dynamodb_manager, sample_event):
    """Test a stored event reads back with identical fields."""
    dynamodb_manager.batch_write_events([sample_event])

    events = dynamodb_manager.get_all_events()

    assert events['1042'] == sample_event
    assert events['1042'].start_date == date(2024, 1, 15)
    assert events['1042'].raw_data['score'] == 1.5


def test_optional_fields_omitted(dynamodb_manager, dynamodb_table):
    """Test empty optional fields are not written as attributes."""
    event = make_event(
        'sparse', description=None, start_date=None, end_date=None,
        library=None, source_modified=None
    )

    dynamodb_manager.batch_write_events([event])

    item = dynamodb_table.get_item(Key={'event_id': 'sparse'})['Item']
    assert 'description' not in item
    assert 'start_date' not in item
    assert 'library' not in item
    assert dynamodb_manager.get_all_events()['sparse'].start_date is None


def test_invalid_item_skipped(dynamodb_manager, dynamodb_table, sample_event):
    """Test items that cannot be converted are skipped on read."""
    dynamodb_manager.batch_write_events([sample_event])
    dynamodb_table.put_item(Item={'event_id': 'broken', 'title': 'No timestamp'})

    events = dynamodb_manager.get_all_events()

    assert list(events) == ['1042']


def test_batch_write_events_large_batch(dynamodb_manager):
    """Test batch_write_events with more than 25 events (batch limit)."""
    events = [make_event(f'event-{i}', f'Event {i}') for i in range(30)]

    count = dynamodb_manager.batch_write_events(events)

    assert count == 30
    assert len(dynamodb_manager.get_all_events()) == 30


def test_batch_write_events_empty(dynamodb_manager):
    assert dynamodb_manager.batch_write_events([]) == 0


def test_batch_delete_events(dynamodb_manager):
    """Test batch_delete_events removes events from table."""
    events = [make_event(f'event-{i}') for i in range(10)]
    dynamodb_manager.batch_write_events(events)

    count = dynamodb_manager.batch_delete_events([event.event_id for event in events])

    assert count == 10
    assert dynamodb_manager.get_all_events() == {}


def test_sync_events_add_new(dynamodb_manager, sample_event):
    """Test sync_events adds new events."""
    result = dynamodb_manager.sync_events([sample_event])

    assert result.added == 1
    assert result.updated == 0
    assert result.deleted == 0
    assert result.errors == []


def test_sync_events_no_changes(dynamodb_manager, sample_event):
    """Test a later ingestion of unchanged content is not an update."""
    dynamodb_manager.batch_write_events([sample_event])

    reingested = make_event('1042', last_updated=datetime(2024, 2, 1, tzinfo=timezone.utc))
    result = dynamodb_manager.sync_events([reingested])

    assert result.added == 0
    assert result.updated == 0
    assert result.deleted == 0


def test_sync_events_raw_data_change_is_update(dynamodb_manager, sample_event):
    """Test a change only in the raw record still counts as an update."""
    dynamodb_manager.batch_write_events([sample_event])

    changed = make_event('1042', raw_data=MappingProxyType({'_id': '1042', 'room': 'B'}))
    result = dynamodb_manager.sync_events([changed])

    assert result.updated == 1


def test_sync_events_mixed_operations(dynamodb_manager):
    """Test sync_events with add, update, and delete operations."""
    dynamodb_manager.batch_write_events([
        make_event('event-1', 'Event 1'),
        make_event('event-2', 'Event 2'),
    ])

    result = dynamodb_manager.sync_events([
        make_event('event-1', 'Event 1 Updated'),
        make_event('event-3', 'Event 3'),
    ])

    assert result.added == 1
    assert result.updated == 1
    assert result.deleted == 1

    events = dynamodb_manager.get_all_events()
    assert sorted(events) == ['event-1', 'event-3']
    assert events['event-1'].title == 'Event 1 Updated'


def failing_batch_writer():
    """batch_writer stand-in whose flush fails."""
    writer = MagicMock()
    writer.__exit__.side_effect = ClientError(
        {'Error': {'Code': 'ProvisionedThroughputExceededException', 'Message': 'Slow down'}},
        'BatchWriteItem'
    )
    return writer


def test_batch_write_failed_flush_not_counted(dynamodb_manager, monkeypatch):
    """Test a batch whose flush fails is not counted as written."""
    monkeypatch.setattr(dynamodb_manager.table, 'batch_writer', failing_batch_writer)

    count = dynamodb_manager.batch_write_events([make_event(f'event-{i}') for i in range(3)])

    assert count == 0


def test_batch_delete_failed_flush_not_counted(dynamodb_manager, monkeypatch):
    """Test a delete batch whose flush fails is not counted as deleted."""
    monkeypatch.setattr(dynamodb_manager.table, 'batch_writer', failing_batch_writer)

    assert dynamodb_manager.batch_delete_events(['event-1', 'event-2']) == 0


def test_sync_events_missing_table(dynamodb_table):
    """Test a scan of a table that does not exist is reported in errors."""
    manager = DynamoDBManager('missing-table')

    result = manager.sync_events([make_event('1042')])

    assert result.added == 0
    assert len(result.errors) == 1
    assert 'ResourceNotFoundException' in result.errors[0]


def test_sync_events_reports_errors(dynamodb_manager, sample_event, monkeypatch):
    """Test a failure during sync is reported instead of raised."""
    def failing_scan():
        raise RuntimeError('table unavailable')

    monkeypatch.setattr(dynamodb_manager, 'get_all_events', failing_scan)

    result = dynamodb_manager.sync_events([sample_event])

    assert result.added == 0
    assert len(result.errors) == 1
    assert 'table unavailable' in result.errors[0]
