"""Event catalog service: the explicit write path for events and bookings."""
import logging
import threading
from typing import Dict, List, Optional

from config import Settings
from processor.booking_processor import BookingProcessor
from processor.event_processor import EventProcessor
from processor.models import BookingRecord, EventRecord
from storage.connection import ConnectionCache
from storage.dynamodb_manager import DynamoDBManager

logger = logging.getLogger(__name__)


class EventCatalog:
    """
    Service that runs normalize -> validate -> save for every write.

    Store access goes through the shared ConnectionCache, so the first
    call that needs the store opens the connection and later calls reuse it.
    """

    def __init__(
        self,
        settings: Settings,
        connection_cache: ConnectionCache,
        event_processor: Optional[EventProcessor] = None,
        booking_processor: Optional[BookingProcessor] = None
    ):
        self._settings = settings
        self._connections = connection_cache
        self._event_processor = event_processor or EventProcessor()
        self._booking_processor = booking_processor or BookingProcessor()
        self._manager: Optional[DynamoDBManager] = None
        self._manager_lock = threading.Lock()

    def store(self) -> DynamoDBManager:
        """
        Return the store manager bound to the shared connection handle.

        Raises:
            ConfigError: If no connection URI is configured
            ConnectError: If the store cannot be reached
        """
        handle = self._connections.acquire_connection(self._settings.db_uri)
        with self._manager_lock:
            if self._manager is None or self._manager.handle is not handle:
                self._manager = DynamoDBManager(handle)
            return self._manager

    def save_event(self, record: EventRecord) -> EventRecord:
        """
        Normalize, validate and persist an event.

        Raises:
            ValidationError: If the record is malformed
            UniqueConstraintError: If the derived slug is already taken
        """
        self._event_processor.validate_and_normalize(
            record, record.is_title_modified()
        )
        return self.store().save_event(record)

    def save_booking(self, record: BookingRecord) -> BookingRecord:
        """
        Validate and persist a booking.

        Raises:
            ValidationError: If the email or event reference is malformed
            MissingReferenceError: If the referenced event does not exist
        """
        store = self.store()
        self._booking_processor.validate(record, store)
        return store.save_booking(record)

    def get_event(self, event_id: str) -> Optional[EventRecord]:
        return self.store().get_event(event_id)

    def get_event_by_slug(self, slug: str) -> Optional[EventRecord]:
        return self.store().get_event_by_slug(slug)

    def list_events(self) -> Dict[str, EventRecord]:
        return self.store().list_events()

    def get_bookings_for_event(self, event_id: str) -> List[BookingRecord]:
        return self.store().get_bookings_for_event(event_id)

    def delete_event(self, event_id: str) -> bool:
        return self.store().delete_event(event_id)
