"""DynamoDB manager for event and booking storage operations."""
import logging
import re
from typing import Dict, List, Optional

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.errors import MissingReferenceError, UniqueConstraintError
from processor.event_processor import utc_now
from processor.models import BookingRecord, EventRecord
from storage.connection import DynamoDBHandle

logger = logging.getLogger(__name__)

EVENTS_TABLE = 'events'
EVENT_SLUGS_TABLE = 'event-slugs'
BOOKINGS_TABLE = 'bookings'
BOOKINGS_BY_EVENT_INDEX = 'eventId-index'

_REASONS_IN_MESSAGE = re.compile(r'\[([^\]]*)\]')


class DynamoDBManager:
    """Manager for DynamoDB operations on events and bookings."""

    SAVE_ATTEMPTS = 3  # event writes retried after a concurrent rename

    def __init__(self, handle: DynamoDBHandle):
        """
        Initialize table references from a live handle.

        Args:
            handle: Connection handle from the ConnectionCache
        """
        self.handle = handle
        # Resource-level client: takes and returns plain Python values
        self.client = handle.client
        self.events_table = handle.table(EVENTS_TABLE)
        self.slugs_table = handle.table(EVENT_SLUGS_TABLE)
        self.bookings_table = handle.table(BOOKINGS_TABLE)
        logger.info(
            f"Initialized DynamoDBManager with table prefix: "
            f"'{handle.target.table_prefix}'"
        )

    def create_tables(self) -> List[str]:
        """
        Create the events, slug and bookings tables if they do not exist.

        Returns:
            Names of the tables that were created
        """
        existing = set()
        for page in self.client.get_paginator('list_tables').paginate():
            existing.update(page.get('TableNames', []))

        created = []
        for name, definition in self._table_definitions().items():
            table_name = self.handle.table_name(name)
            if table_name in existing:
                continue

            logger.info(f"Creating DynamoDB table: {table_name}")
            self.client.create_table(
                TableName=table_name,
                BillingMode='PAY_PER_REQUEST',
                **definition
            )
            self.client.get_waiter('table_exists').wait(TableName=table_name)
            created.append(table_name)

        return created

    def event_exists(self, event_id: str) -> bool:
        """
        Check whether an event with the given identity exists.

        Args:
            event_id: Event identity

        Returns:
            True if the event exists
        """
        response = self.events_table.get_item(
            Key={'_id': event_id},
            ProjectionExpression='#id',
            ExpressionAttributeNames={'#id': '_id'},
            ConsistentRead=True
        )
        return 'Item' in response

    def save_event(self, record: EventRecord) -> EventRecord:
        """
        Write an event and claim its slug in a single transaction.

        The slug table is the unique index on Event.slug: the claim only
        succeeds when the slug is free or already owned by this event.
        The slug currently stored for the event is read back before each
        attempt and released in the same transaction when it changed, but
        only while this event still owns it. The event write is
        conditional on that stored slug, so a concurrent rename forces a
        retry instead of leaving a stale slug row behind.

        Args:
            record: Normalized event record

        Returns:
            The record with timestamps set

        Raises:
            UniqueConstraintError: If another event already owns the slug
        """
        now = utc_now()
        created_at = record.created_at or now
        item = self._event_to_item(record, created_at, now)
        release_stored_slug = True

        for attempt in range(1, self.SAVE_ATTEMPTS + 1):
            stored_slug = self._stored_slug(record.event_id)
            actions = self._event_write_actions(
                item,
                stored_slug,
                release_stored_slug and stored_slug not in (None, record.slug)
            )

            try:
                self.client.transact_write_items(TransactItems=actions)
                break
            except ClientError as e:
                if self._condition_failed(e, 1):
                    logger.warning(
                        f"Slug already taken: {record.slug}",
                        extra={'slug': record.slug, 'event_id': record.event_id}
                    )
                    raise UniqueConstraintError('slug', record.slug) from e

                retryable = attempt < self.SAVE_ATTEMPTS
                if retryable and self._condition_failed(e, 2):
                    # Old slug row belongs to another event now; leave it
                    release_stored_slug = False
                    continue
                if retryable and self._condition_failed(e, 0):
                    logger.info(
                        f"Event {record.event_id} changed concurrently, retrying",
                        extra={'event_id': record.event_id}
                    )
                    continue

                logger.error(f"Error saving event {record.event_id}: {e}")
                raise

        record.created_at = created_at
        record.updated_at = now
        record.mark_persisted()
        logger.info(
            f"Saved event '{record.slug}'",
            extra={'event_id': record.event_id, 'slug': record.slug}
        )
        return record

    def save_booking(self, record: BookingRecord) -> BookingRecord:
        """
        Write a booking only if its event still exists.

        The existence check and the write are one transaction, so an
        event deleted after validation cannot end up with a booking.

        Args:
            record: Validated booking record

        Returns:
            The record with timestamps set

        Raises:
            MissingReferenceError: If the referenced event does not exist
        """
        now = utc_now()
        created_at = record.created_at or now
        item = {
            '_id': record.booking_id,
            'eventId': record.event_id,
            'email': record.email,
            'createdAt': created_at,
            'updatedAt': now
        }

        actions = [
            {
                'ConditionCheck': {
                    'TableName': self.handle.table_name(EVENTS_TABLE),
                    'Key': {'_id': record.event_id},
                    'ConditionExpression': 'attribute_exists(#id)',
                    'ExpressionAttributeNames': {'#id': '_id'}
                }
            },
            {
                'Put': {
                    'TableName': self.handle.table_name(BOOKINGS_TABLE),
                    'Item': item
                }
            }
        ]

        try:
            self.client.transact_write_items(TransactItems=actions)
        except ClientError as e:
            if self._condition_failed(e, 0):
                logger.warning(
                    f"Event {record.event_id} vanished before booking write",
                    extra={'field': 'eventId', 'event_id': record.event_id}
                )
                raise MissingReferenceError('eventId', record.event_id) from e
            logger.error(f"Error saving booking {record.booking_id}: {e}")
            raise

        record.created_at = created_at
        record.updated_at = now
        logger.info(
            f"Saved booking for event {record.event_id}",
            extra={'booking_id': record.booking_id, 'event_id': record.event_id}
        )
        return record

    def get_event(self, event_id: str) -> Optional[EventRecord]:
        """
        Retrieve an event by identity.

        Args:
            event_id: Event identity

        Returns:
            EventRecord or None if not found
        """
        response = self.events_table.get_item(
            Key={'_id': event_id}, ConsistentRead=True
        )
        item = response.get('Item')
        if item is None:
            return None
        return self._item_to_event(item)

    def get_event_by_slug(self, slug: str) -> Optional[EventRecord]:
        """
        Retrieve an event through the slug table.

        Args:
            slug: Event slug

        Returns:
            EventRecord or None if no event owns the slug
        """
        response = self.slugs_table.get_item(
            Key={'slug': slug}, ConsistentRead=True
        )
        item = response.get('Item')
        if item is None:
            return None
        return self.get_event(item['eventId'])

    def list_events(self) -> Dict[str, EventRecord]:
        """
        Retrieve all events using a Scan operation.

        Returns:
            Dictionary mapping event identity to EventRecord
        """
        logger.info("Scanning DynamoDB table for all events")
        events = {}

        try:
            response = self.events_table.scan()
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.events_table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error scanning events table: {e}")
            raise

        for item in items:
            event = self._item_to_event(item)
            if event:
                events[event.event_id] = event

        logger.info(f"Retrieved {len(events)} events from DynamoDB")
        return events

    def get_booking(self, booking_id: str) -> Optional[BookingRecord]:
        """Retrieve a booking by identity, or None if not found."""
        response = self.bookings_table.get_item(
            Key={'_id': booking_id}, ConsistentRead=True
        )
        item = response.get('Item')
        if item is None:
            return None
        return self._item_to_booking(item)

    def get_bookings_for_event(self, event_id: str) -> List[BookingRecord]:
        """
        Retrieve all bookings for an event via the eventId index.

        Args:
            event_id: Event identity

        Returns:
            List of BookingRecord objects
        """
        query = {
            'IndexName': BOOKINGS_BY_EVENT_INDEX,
            'KeyConditionExpression': Key('eventId').eq(event_id)
        }

        try:
            response = self.bookings_table.query(**query)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.bookings_table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'], **query
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error querying bookings for event {event_id}: {e}")
            raise

        bookings = [self._item_to_booking(item) for item in items]
        return [booking for booking in bookings if booking]

    def delete_event(self, event_id: str) -> bool:
        """
        Delete an event and release its slug.

        Bookings are left in place.

        Args:
            event_id: Event identity

        Returns:
            True if an event was deleted, False if none existed
        """
        event = self.get_event(event_id)
        if event is None:
            return False

        actions = [
            {
                'Delete': {
                    'TableName': self.handle.table_name(EVENTS_TABLE),
                    'Key': {'_id': event_id},
                    'ConditionExpression': 'attribute_exists(#id)',
                    'ExpressionAttributeNames': {'#id': '_id'}
                }
            },
            {
                'Delete': {
                    'TableName': self.handle.table_name(EVENT_SLUGS_TABLE),
                    'Key': {'slug': event.slug},
                    'ConditionExpression': '#eventId = :eventId',
                    'ExpressionAttributeNames': {'#eventId': 'eventId'},
                    'ExpressionAttributeValues': {':eventId': event_id}
                }
            }
        ]

        try:
            self.client.transact_write_items(TransactItems=actions)
        except ClientError as e:
            if self._condition_failed(e, 0):
                # Deleted concurrently
                return False
            logger.error(f"Error deleting event {event_id}: {e}")
            raise

        logger.info(f"Deleted event {event_id}", extra={'event_id': event_id})
        return True

    def _table_definitions(self) -> Dict[str, dict]:
        """Key schemas for each logical table."""
        return {
            EVENTS_TABLE: {
                'KeySchema': [{'AttributeName': '_id', 'KeyType': 'HASH'}],
                'AttributeDefinitions': [
                    {'AttributeName': '_id', 'AttributeType': 'S'}
                ]
            },
            EVENT_SLUGS_TABLE: {
                'KeySchema': [{'AttributeName': 'slug', 'KeyType': 'HASH'}],
                'AttributeDefinitions': [
                    {'AttributeName': 'slug', 'AttributeType': 'S'}
                ]
            },
            BOOKINGS_TABLE: {
                'KeySchema': [{'AttributeName': '_id', 'KeyType': 'HASH'}],
                'AttributeDefinitions': [
                    {'AttributeName': '_id', 'AttributeType': 'S'},
                    {'AttributeName': 'eventId', 'AttributeType': 'S'}
                ],
                'GlobalSecondaryIndexes': [
                    {
                        'IndexName': BOOKINGS_BY_EVENT_INDEX,
                        'KeySchema': [
                            {'AttributeName': 'eventId', 'KeyType': 'HASH'}
                        ],
                        'Projection': {'ProjectionType': 'ALL'}
                    }
                ]
            }
        }

    def _stored_slug(self, event_id: str) -> Optional[str]:
        """Return the slug currently stored for an event, or None if new."""
        response = self.events_table.get_item(
            Key={'_id': event_id},
            ProjectionExpression='#slug',
            ExpressionAttributeNames={'#slug': 'slug'},
            ConsistentRead=True
        )
        return response.get('Item', {}).get('slug')

    def _event_write_actions(
        self, item: dict, stored_slug: Optional[str], release_stored_slug: bool
    ) -> List[dict]:
        """
        Build the TransactItems for one event write attempt.

        Positions are fixed: 0 event put, 1 slug claim, 2 optional release.

        Args:
            item: Event item to write
            stored_slug: Slug stored for the event when the attempt began
            release_stored_slug: Whether to delete the stored slug row

        Returns:
            List of transaction actions
        """
        slugs_table_name = self.handle.table_name(EVENT_SLUGS_TABLE)

        if stored_slug is None:
            event_condition = {
                'ConditionExpression': 'attribute_not_exists(#id)',
                'ExpressionAttributeNames': {'#id': '_id'}
            }
        else:
            event_condition = {
                'ConditionExpression': '#slug = :storedSlug',
                'ExpressionAttributeNames': {'#slug': 'slug'},
                'ExpressionAttributeValues': {':storedSlug': stored_slug}
            }

        actions = [
            {
                'Put': {
                    'TableName': self.handle.table_name(EVENTS_TABLE),
                    'Item': item,
                    **event_condition
                }
            },
            {
                'Put': {
                    'TableName': slugs_table_name,
                    'Item': {'slug': item['slug'], 'eventId': item['_id']},
                    'ConditionExpression': (
                        'attribute_not_exists(#slug) OR #eventId = :eventId'
                    ),
                    'ExpressionAttributeNames': {
                        '#slug': 'slug',
                        '#eventId': 'eventId'
                    },
                    'ExpressionAttributeValues': {':eventId': item['_id']}
                }
            }
        ]

        if release_stored_slug:
            actions.append({
                'Delete': {
                    'TableName': slugs_table_name,
                    'Key': {'slug': stored_slug},
                    'ConditionExpression': '#eventId = :eventId',
                    'ExpressionAttributeNames': {'#eventId': 'eventId'},
                    'ExpressionAttributeValues': {':eventId': item['_id']}
                }
            })

        return actions

    def _condition_failed(self, error: ClientError, index: int) -> bool:
        """
        Check whether a cancelled transaction failed on a given action.

        Args:
            error: ClientError raised by transact_write_items
            index: Position of the action in TransactItems

        Returns:
            True if that action's condition check failed
        """
        details = error.response.get('Error', {})
        if details.get('Code') != 'TransactionCanceledException':
            return False

        codes = [
            reason.get('Code')
            for reason in error.response.get('CancellationReasons', [])
        ]
        if not codes:
            # Older responses only carry the reasons inside the message
            match = _REASONS_IN_MESSAGE.search(details.get('Message', ''))
            if match:
                codes = [code.strip() for code in match.group(1).split(',')]

        return index < len(codes) and codes[index] == 'ConditionalCheckFailed'

    def _event_to_item(
        self, record: EventRecord, created_at: str, updated_at: str
    ) -> dict:
        """
        Convert EventRecord to a DynamoDB item.

        Args:
            record: EventRecord
            created_at: Creation timestamp to store
            updated_at: Update timestamp to store

        Returns:
            DynamoDB item dictionary
        """
        return {
            '_id': record.event_id,
            'title': record.title,
            'slug': record.slug,
            'description': record.description,
            'overview': record.overview,
            'image': record.image,
            'venue': record.venue,
            'location': record.location,
            'date': record.date,
            'time': record.time,
            'mode': record.mode,
            'audience': record.audience,
            'agenda': list(record.agenda),
            'organizer': record.organizer,
            'tags': list(record.tags),
            'createdAt': created_at,
            'updatedAt': updated_at
        }

    def _item_to_event(self, item: dict) -> Optional[EventRecord]:
        """
        Convert DynamoDB item to EventRecord.

        Args:
            item: DynamoDB item dictionary

        Returns:
            EventRecord or None if conversion fails
        """
        try:
            record = EventRecord(
                event_id=item['_id'],
                title=item['title'],
                slug=item['slug'],
                description=item['description'],
                overview=item['overview'],
                image=item['image'],
                venue=item['venue'],
                location=item['location'],
                date=item['date'],
                time=item['time'],
                mode=item['mode'],
                audience=item['audience'],
                agenda=list(item['agenda']),
                organizer=item['organizer'],
                tags=list(item['tags']),
                created_at=item['createdAt'],
                updated_at=item.get('updatedAt')
            )
        except KeyError as e:
            logger.warning(f"Failed to convert item to EventRecord: {e}")
            return None

        record.mark_persisted()
        return record

    def _item_to_booking(self, item: dict) -> Optional[BookingRecord]:
        """Convert DynamoDB item to BookingRecord, or None if malformed."""
        try:
            return BookingRecord(
                booking_id=item['_id'],
                event_id=item['eventId'],
                email=item['email'],
                created_at=item['createdAt'],
                updated_at=item.get('updatedAt')
            )
        except KeyError as e:
            logger.warning(f"Failed to convert item to BookingRecord: {e}")
            return None
