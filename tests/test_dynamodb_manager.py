"""Unit tests for DynamoDB manager."""
import pytest
from botocore.exceptions import ClientError

from processor.errors import MissingReferenceError, UniqueConstraintError
from processor.models import BookingRecord
from storage.dynamodb_manager import DynamoDBManager


def test_create_tables_is_idempotent(dynamodb_handle):
    """Test that create_tables creates prefixed tables once."""
    manager = DynamoDBManager(dynamodb_handle)

    created = manager.create_tables()
    assert sorted(created) == [
        'test-bookings', 'test-event-slugs', 'test-events'
    ]

    assert manager.create_tables() == []


def test_event_exists(dynamodb_manager, normalized_event):
    """Test event_exists before and after a save."""
    event = normalized_event()

    assert not dynamodb_manager.event_exists(event.event_id)
    dynamodb_manager.save_event(event)
    assert dynamodb_manager.event_exists(event.event_id)


def test_save_event_sets_timestamps(dynamodb_manager, normalized_event):
    """Test that the first save sets createdAt and updatedAt."""
    event = normalized_event()

    saved = dynamodb_manager.save_event(event)

    assert saved.created_at is not None
    assert saved.created_at.endswith('Z')
    assert saved.updated_at == saved.created_at
    assert not saved.is_title_modified()


def test_get_event_round_trip(dynamodb_manager, normalized_event):
    """Test that a saved event is read back with the same fields."""
    event = dynamodb_manager.save_event(normalized_event())

    loaded = dynamodb_manager.get_event(event.event_id)

    assert loaded == event
    assert loaded.agenda == ['Registration', 'Keynote', 'Workshops']
    assert not loaded.is_title_modified()


def test_get_event_not_found(dynamodb_manager):
    """Test that an unknown identity returns None."""
    assert dynamodb_manager.get_event('does-not-exist') is None


def test_get_event_by_slug(dynamodb_manager, normalized_event):
    """Test lookup through the slug table."""
    event = dynamodb_manager.save_event(normalized_event())

    loaded = dynamodb_manager.get_event_by_slug('cloud-summit-2025')

    assert loaded.event_id == event.event_id
    assert dynamodb_manager.get_event_by_slug('unknown-slug') is None


def test_resave_keeps_created_at(dynamodb_manager, normalized_event):
    """Test that updating an event keeps createdAt and its own slug."""
    event = dynamodb_manager.save_event(normalized_event())
    created_at = event.created_at

    event.description = 'Updated description'
    dynamodb_manager.save_event(event)

    loaded = dynamodb_manager.get_event(event.event_id)
    assert loaded.description == 'Updated description'
    assert loaded.created_at == created_at


def test_duplicate_slug_rejected(dynamodb_manager, normalized_event):
    """Test that a second event with the same slug is not written."""
    first = dynamodb_manager.save_event(normalized_event())
    second = normalized_event()

    with pytest.raises(UniqueConstraintError) as exc_info:
        dynamodb_manager.save_event(second)

    assert exc_info.value.field == 'slug'
    assert exc_info.value.value == 'cloud-summit-2025'
    assert not dynamodb_manager.event_exists(second.event_id)
    assert second.created_at is None
    owner = dynamodb_manager.get_event_by_slug('cloud-summit-2025')
    assert owner.event_id == first.event_id


def test_slug_change_releases_old_slug(dynamodb_manager, normalized_event):
    """Test that a renamed event frees its previous slug."""
    event = dynamodb_manager.save_event(normalized_event())

    event.title = 'Cloud Summit 2026'
    event.slug = 'cloud-summit-2026'
    dynamodb_manager.save_event(event)

    assert dynamodb_manager.get_event_by_slug('cloud-summit-2025') is None
    assert dynamodb_manager.get_event_by_slug(
        'cloud-summit-2026'
    ).event_id == event.event_id

    # The old slug can now be claimed by another event
    other = dynamodb_manager.save_event(normalized_event())
    assert dynamodb_manager.get_event_by_slug(
        'cloud-summit-2025'
    ).event_id == other.event_id


def test_save_event_stores_plain_attributes(dynamodb_manager, normalized_event):
    """Test that items and slug rows hold plain strings and lists."""
    event = dynamodb_manager.save_event(normalized_event())

    slug_row = dynamodb_manager.slugs_table.get_item(
        Key={'slug': 'cloud-summit-2025'}
    )['Item']
    item = dynamodb_manager.events_table.get_item(
        Key={'_id': event.event_id}
    )['Item']

    assert slug_row == {'slug': 'cloud-summit-2025', 'eventId': event.event_id}
    assert item['agenda'] == ['Registration', 'Keynote', 'Workshops']
    assert item['time'] == '09:30'


def _slug_rows(manager):
    rows = manager.slugs_table.scan()['Items']
    return sorted((row['slug'], row['eventId']) for row in rows)


def test_stale_copies_keep_slugs_unique(dynamodb_manager, normalized_event):
    """Test that saving from stale copies never frees a slug owned by another event."""
    first = dynamodb_manager.save_event(normalized_event(title='Alpha'))
    copy_one = dynamodb_manager.get_event(first.event_id)
    copy_two = dynamodb_manager.get_event(first.event_id)

    copy_one.title = 'Beta'
    copy_one.slug = 'beta'
    dynamodb_manager.save_event(copy_one)

    second = dynamodb_manager.save_event(normalized_event(title='Alpha'))

    # Still believes it owns 'alpha'
    copy_two.title = 'Gamma'
    copy_two.slug = 'gamma'
    dynamodb_manager.save_event(copy_two)

    with pytest.raises(UniqueConstraintError):
        dynamodb_manager.save_event(normalized_event(title='Alpha'))

    assert _slug_rows(dynamodb_manager) == sorted([
        ('alpha', second.event_id),
        ('gamma', first.event_id)
    ])
    assert dynamodb_manager.get_event(first.event_id).slug == 'gamma'


def test_stale_copy_reclaiming_taken_slug_rejected(
    dynamodb_manager, normalized_event
):
    """Test that a stale copy cannot take back a slug another event now owns."""
    first = dynamodb_manager.save_event(normalized_event(title='Alpha'))
    stale = dynamodb_manager.get_event(first.event_id)

    renamed = dynamodb_manager.get_event(first.event_id)
    renamed.title = 'Beta'
    renamed.slug = 'beta'
    dynamodb_manager.save_event(renamed)
    second = dynamodb_manager.save_event(normalized_event(title='Alpha'))

    stale.description = 'Edited from an old copy'
    with pytest.raises(UniqueConstraintError):
        dynamodb_manager.save_event(stale)

    assert _slug_rows(dynamodb_manager) == sorted([
        ('alpha', second.event_id),
        ('beta', first.event_id)
    ])


def test_list_events(dynamodb_manager, normalized_event):
    """Test that list_events returns every event keyed by identity."""
    first = dynamodb_manager.save_event(normalized_event(title='Event A'))
    second = dynamodb_manager.save_event(normalized_event(title='Event B'))

    events = dynamodb_manager.list_events()

    assert set(events) == {first.event_id, second.event_id}


def test_save_booking(dynamodb_manager, normalized_event):
    """Test that a booking for an existing event is stored."""
    event = dynamodb_manager.save_event(normalized_event())
    booking = BookingRecord(event_id=event.event_id, email='guest@example.com')

    saved = dynamodb_manager.save_booking(booking)

    assert saved.created_at is not None
    loaded = dynamodb_manager.get_booking(booking.booking_id)
    assert loaded == saved


def test_save_booking_missing_event(dynamodb_manager):
    """Test that the write-time check rejects a dangling event reference."""
    booking = BookingRecord(event_id='missing', email='guest@example.com')

    with pytest.raises(MissingReferenceError) as exc_info:
        dynamodb_manager.save_booking(booking)

    assert exc_info.value.field == 'eventId'
    assert dynamodb_manager.get_booking(booking.booking_id) is None


def test_get_bookings_for_event(dynamodb_manager, normalized_event):
    """Test querying bookings through the eventId index."""
    event = dynamodb_manager.save_event(normalized_event(title='Event A'))
    other = dynamodb_manager.save_event(normalized_event(title='Event B'))
    for i in range(3):
        dynamodb_manager.save_booking(
            BookingRecord(event_id=event.event_id, email=f'guest{i}@example.com')
        )
    dynamodb_manager.save_booking(
        BookingRecord(event_id=other.event_id, email='other@example.com')
    )

    bookings = dynamodb_manager.get_bookings_for_event(event.event_id)

    assert len(bookings) == 3
    assert {b.email for b in bookings} == {
        'guest0@example.com', 'guest1@example.com', 'guest2@example.com'
    }


def test_delete_event_releases_slug(dynamodb_manager, normalized_event):
    """Test that deleting an event removes it and frees its slug."""
    event = dynamodb_manager.save_event(normalized_event())

    assert dynamodb_manager.delete_event(event.event_id)

    assert not dynamodb_manager.event_exists(event.event_id)
    assert dynamodb_manager.get_event_by_slug('cloud-summit-2025') is None
    assert not dynamodb_manager.delete_event(event.event_id)


def test_booking_after_event_deleted(dynamodb_manager, normalized_event):
    """Test that a booking cannot be written once its event is gone."""
    event = dynamodb_manager.save_event(normalized_event())
    dynamodb_manager.delete_event(event.event_id)

    with pytest.raises(MissingReferenceError):
        dynamodb_manager.save_booking(
            BookingRecord(event_id=event.event_id, email='late@example.com')
        )


class TestConditionFailed:
    """Test cases for transaction cancellation parsing."""

    def _cancelled(self, reasons=None, message=''):
        response = {
            'Error': {
                'Code': 'TransactionCanceledException',
                'Message': message
            }
        }
        if reasons is not None:
            response['CancellationReasons'] = [
                {'Code': code} for code in reasons
            ]
        return ClientError(response, 'TransactWriteItems')

    def test_reads_cancellation_reasons(self, dynamodb_manager):
        """Test that structured reasons are matched by position."""
        error = self._cancelled(reasons=['None', 'ConditionalCheckFailed'])

        assert dynamodb_manager._condition_failed(error, 1)
        assert not dynamodb_manager._condition_failed(error, 0)

    def test_falls_back_to_message(self, dynamodb_manager):
        """Test that reasons embedded in the message are parsed."""
        error = self._cancelled(
            message='Transaction cancelled, please refer cancellation '
                    'reasons for specific reasons [ConditionalCheckFailed, None]'
        )

        assert dynamodb_manager._condition_failed(error, 0)
        assert not dynamodb_manager._condition_failed(error, 1)

    def test_other_errors_are_not_conditions(self, dynamodb_manager):
        """Test that unrelated client errors are not treated as conflicts."""
        error = ClientError(
            {'Error': {'Code': 'ResourceNotFoundException', 'Message': ''}},
            'TransactWriteItems'
        )

        assert not dynamodb_manager._condition_failed(error, 0)
