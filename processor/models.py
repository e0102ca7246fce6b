"""Data models for events and bookings."""
import uuid
from dataclasses import dataclass, field
from typing import List, Optional


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class EventRecord:
    """Event listing as stored in the events table."""
    title: str
    description: str
    overview: str
    image: str
    venue: str
    location: str
    date: str
    time: str
    mode: str
    audience: str
    agenda: List[str]
    organizer: str
    tags: List[str]
    slug: Optional[str] = None
    event_id: str = field(default_factory=_new_id)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    # Title as of the last load/save, used for change tracking
    _persisted_title: Optional[str] = field(
        default=None, repr=False, compare=False
    )

    def is_new(self) -> bool:
        """Return True if the record has never been loaded or saved."""
        return self.created_at is None

    def is_title_modified(self) -> bool:
        """
        Return True if the title changed since the record was loaded.

        A record that has never been persisted counts as modified.
        """
        if self.is_new() or self._persisted_title is None:
            return True
        return self.title != self._persisted_title

    def mark_persisted(self) -> None:
        """Snapshot tracked fields after a load or successful save."""
        self._persisted_title = self.title


@dataclass
class BookingRecord:
    """Attendee booking for an event."""
    event_id: str
    email: str
    booking_id: str = field(default_factory=_new_id)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
