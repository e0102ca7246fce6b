"""Booking processor for validating bookings before save."""
import logging
import re
from typing import Protocol

from processor.errors import MissingReferenceError, ValidationError
from processor.models import BookingRecord

logger = logging.getLogger(__name__)

# local@domain.tld, no whitespace and no extra '@' anywhere
_EMAIL_PATTERN = re.compile(r'[^\s@]+@[^\s@]+\.[^\s@]+')


class EventLookup(Protocol):
    """Anything that can answer whether an event exists."""

    def event_exists(self, event_id: str) -> bool:
        ...


def is_valid_email(email: str) -> bool:
    """Return True if email matches the accepted local@domain.tld grammar."""
    return _EMAIL_PATTERN.fullmatch(email) is not None


class BookingProcessor:
    """Processor for validating booking records."""

    def validate(self, record: BookingRecord, events: EventLookup) -> None:
        """
        Validate a booking and confirm the referenced event exists.

        The email is trimmed in place; nothing else is rewritten.

        Args:
            record: Booking record to validate
            events: Store used for the event existence check

        Raises:
            ValidationError: If the email or event reference is malformed
            MissingReferenceError: If the referenced event does not exist
        """
        if not isinstance(record.email, str) or not is_valid_email(
            record.email.strip()
        ):
            logger.warning(
                "Invalid email format for booking",
                extra={'field': 'email', 'booking_id': record.booking_id}
            )
            raise ValidationError('email', 'Invalid email format for booking.')

        if not isinstance(record.event_id, str) or not record.event_id.strip():
            raise ValidationError('eventId', 'Booking must reference an event.')

        record.email = record.email.strip()

        if not events.event_exists(record.event_id):
            logger.warning(
                f"Booking references missing event: {record.event_id}",
                extra={'field': 'eventId', 'event_id': record.event_id}
            )
            raise MissingReferenceError('eventId', record.event_id)
