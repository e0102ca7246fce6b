"""Environment settings and connection URI parsing."""
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlparse

from processor.errors import ConfigError

DB_URI_VARIABLE = 'EVENTS_DB_URI'
URI_SCHEME = 'dynamodb'


@dataclass(frozen=True)
class ConnectionTarget:
    """Parsed form of a dynamodb:// connection URI."""
    region: str
    table_prefix: str = ''
    endpoint_url: Optional[str] = None


class Settings:
    """Settings read from environment variables."""

    def __init__(self):
        # Not validated here; a missing URI only fails on first connect
        self.db_uri: Optional[str] = os.environ.get(DB_URI_VARIABLE)
        self.log_level: str = os.environ.get('LOG_LEVEL', 'INFO')


def parse_connection_uri(uri: Optional[str]) -> ConnectionTarget:
    """
    Parse a connection URI without performing any I/O.

    Format: dynamodb://<region>[/<table_prefix>][?endpoint_url=<url>]

    Args:
        uri: Connection URI, usually from EVENTS_DB_URI

    Returns:
        ConnectionTarget describing region, table prefix and endpoint

    Raises:
        ConfigError: If the URI is missing or malformed
    """
    if uri is None or not uri.strip():
        raise ConfigError(
            f"Please define the {DB_URI_VARIABLE} environment variable."
        )

    parsed = urlparse(uri.strip())
    if parsed.scheme != URI_SCHEME:
        raise ConfigError(
            f"Unsupported connection scheme '{parsed.scheme}', "
            f"expected '{URI_SCHEME}://'"
        )
    if not parsed.netloc:
        raise ConfigError("Connection URI must name an AWS region")

    query = parse_qs(parsed.query)
    endpoint_url = query.get('endpoint_url', [None])[0]

    return ConnectionTarget(
        region=parsed.netloc,
        table_prefix=parsed.path.lstrip('/'),
        endpoint_url=endpoint_url
    )
