"""Event processor for validating and normalizing event records."""
import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from processor.errors import ValidationError
from processor.models import EventRecord

logger = logging.getLogger(__name__)

_SLUG_SEPARATOR = re.compile(r'[^a-z0-9]+')
_TIME_24_HOUR = re.compile(r'([0-9]{1,2}):([0-9]{2})')
_TIME_12_HOUR = re.compile(r'([0-9]{1,2})(?::([0-9]{2}))?\s*(am|pm)')


def slugify(value: str) -> str:
    """
    Create a URL-friendly slug from a title.

    Args:
        value: Title text

    Returns:
        Lowercase kebab-case slug
    """
    slug = _SLUG_SEPARATOR.sub('-', value.lower().strip())
    return slug.strip('-')


def format_instant(value: datetime) -> str:
    """
    Format a datetime as an ISO 8601 UTC instant with millisecond precision.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    # isoformat keeps the year zero-padded to four digits
    return f"{value.isoformat(timespec='milliseconds')}Z"


def utc_now() -> str:
    """Return the current time as an ISO 8601 UTC instant string."""
    return format_instant(datetime.now(timezone.utc))


class EventProcessor:
    """Processor for validating and normalizing event records before save."""

    REQUIRED_TEXT_FIELDS = (
        'title',
        'description',
        'overview',
        'image',
        'venue',
        'location',
        'date',
        'time',
        'mode',
        'audience',
        'organizer',
    )

    REQUIRED_LIST_FIELDS = ('agenda', 'tags')

    # Fallback formats tried after ISO 8601 and RFC 2822
    DATE_FORMATS = [
        '%m/%d/%Y',          # US format
        '%m-%d-%Y',          # US format with dashes
        '%Y/%m/%d',          # Alternative ISO format
        '%B %d, %Y',         # Full month name
        '%b %d, %Y',         # Abbreviated month name
        '%B %d %Y',          # Full month name, no comma
        '%d %B %Y',          # Day first, full month name
        '%m/%d/%Y %H:%M',    # US format with time
        '%B %d, %Y %H:%M',   # Full month name with time
    ]

    def validate_and_normalize(
        self, record: EventRecord, is_title_modified: bool
    ) -> EventRecord:
        """
        Validate an event and rewrite slug, date and time to canonical form.

        Every check runs before any field is rewritten, so a failing
        record is left exactly as it was passed in.

        Args:
            record: Event record to normalize in place
            is_title_modified: Whether the title changed since the last save

        Returns:
            The same record with canonical slug, date and time

        Raises:
            ValidationError: If a field is missing or malformed
        """
        self._validate_required_fields(record)

        title = record.title.strip()
        slug = record.slug
        if is_title_modified or not slug:
            slug = slugify(title)

        normalized_date = self._normalize_date(record.date)
        if normalized_date is None:
            logger.warning(
                f"Invalid date format for event '{title}': {record.date}",
                extra={'field': 'date'}
            )
            raise ValidationError(
                'date', f'Invalid date format: "{record.date}"'
            )

        normalized_time = self._normalize_time(record.time)
        if normalized_time is None:
            logger.warning(
                f"Invalid time format for event '{title}': {record.time}",
                extra={'field': 'time'}
            )
            raise ValidationError(
                'time',
                f'Invalid time format: "{record.time}". '
                'Expected "HH:MM" or "h:mm AM/PM".'
            )

        record.title = title
        record.slug = slug
        record.date = normalized_date
        record.time = normalized_time
        return record

    def _validate_required_fields(self, record: EventRecord) -> None:
        """
        Validate that required fields are present and non-empty.

        Args:
            record: Event record to validate

        Raises:
            ValidationError: Naming the first offending field
        """
        for name in self.REQUIRED_TEXT_FIELDS:
            value = getattr(record, name, None)
            if not isinstance(value, str) or not value.strip():
                logger.warning(
                    f"Event missing required field: {name}",
                    extra={'field': name}
                )
                raise ValidationError(
                    name,
                    f'Field "{name}" is required and must be a '
                    'non-empty string.'
                )

        for name in self.REQUIRED_LIST_FIELDS:
            value = getattr(record, name, None)
            if (
                not isinstance(value, (list, tuple)) or
                len(value) == 0 or
                not all(isinstance(item, str) for item in value)
            ):
                logger.warning(
                    f"Event missing required list: {name}",
                    extra={'field': name}
                )
                raise ValidationError(
                    name,
                    f'"{name}" is required and must be a non-empty '
                    'array of strings.'
                )

    def _normalize_date(self, date_str: str) -> Optional[str]:
        """
        Normalize a date expression to an ISO 8601 UTC instant.

        Args:
            date_str: Date or date/time string in various formats

        Returns:
            'YYYY-MM-DDTHH:MM:SS.mmmZ' string or None if parsing fails
        """
        date_str = date_str.strip()

        # Offsets near the year limits overflow when shifted to UTC
        try:
            return format_instant(datetime.fromisoformat(date_str))
        except (ValueError, OverflowError):
            pass

        # RFC 2822, e.g. 'Mon, 15 Jan 2024 10:00:00 GMT'
        try:
            return format_instant(parsedate_to_datetime(date_str))
        except (TypeError, ValueError, IndexError, OverflowError):
            pass

        for fmt in self.DATE_FORMATS:
            try:
                return format_instant(datetime.strptime(date_str, fmt))
            except ValueError:
                continue

        return None

    def _normalize_time(self, time_str: str) -> Optional[str]:
        """
        Normalize time to 24-hour format (HH:MM).

        Accepts 'H:MM' / 'HH:MM' and 'h[:mm] am|pm' in any case.

        Args:
            time_str: Time string

        Returns:
            24-hour formatted time string or None if parsing fails
        """
        time_str = time_str.strip().lower()

        match = _TIME_24_HOUR.fullmatch(time_str)
        if match:
            hour = int(match.group(1))
            minute = int(match.group(2))
            if 0 <= hour <= 23 and 0 <= minute <= 59:
                return f"{hour:02d}:{minute:02d}"
            return None

        match = _TIME_12_HOUR.fullmatch(time_str)
        if match:
            hour = int(match.group(1))
            minute = int(match.group(2)) if match.group(2) else 0
            if not (1 <= hour <= 12 and 0 <= minute <= 59):
                return None
            if match.group(3) == 'am':
                hour = 0 if hour == 12 else hour
            else:
                hour = 12 if hour == 12 else hour + 12
            return f"{hour:02d}:{minute:02d}"

        return None
