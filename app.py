"""Process-wide wiring of settings, logging and the event catalog."""
import logging
from functools import lru_cache
from typing import Optional

from catalog.service import EventCatalog
from config import Settings
from log_config import setup_logging
from storage.connection import ConnectionCache

logger = logging.getLogger(__name__)


def create_catalog(settings: Optional[Settings] = None) -> EventCatalog:
    """
    Build an EventCatalog with its own connection cache.

    No connection is opened here; a missing EVENTS_DB_URI only surfaces
    as a ConfigError when the store is first used.

    Args:
        settings: Settings to use, read from the environment if omitted

    Returns:
        Ready-to-use EventCatalog
    """
    settings = settings or Settings()
    setup_logging(settings.log_level)
    logger.info("Event catalog created")
    return EventCatalog(settings=settings, connection_cache=ConnectionCache())


@lru_cache()
def get_catalog() -> EventCatalog:
    """Return the process-wide EventCatalog singleton."""
    return create_catalog()
