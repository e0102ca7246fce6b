"""Process-wide cache for the DynamoDB connection handle."""
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import ConnectionTarget, parse_connection_uri
from processor.errors import ConnectError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DynamoDBHandle:
    """Open, reusable DynamoDB resource plus the table naming it serves."""
    resource: object
    target: ConnectionTarget

    @property
    def client(self):
        return self.resource.meta.client

    def table_name(self, name: str) -> str:
        return f"{self.target.table_prefix}{name}"

    def table(self, name: str):
        return self.resource.Table(self.table_name(name))


def connect_dynamodb(target: ConnectionTarget) -> DynamoDBHandle:
    """
    Open a DynamoDB resource and verify the store answers.

    Args:
        target: Parsed connection target

    Returns:
        Live DynamoDBHandle

    Raises:
        ConnectError: If the endpoint is unreachable or rejects credentials
    """
    logger.info(f"Connecting to DynamoDB in region: {target.region}")

    try:
        resource = boto3.resource(
            'dynamodb',
            region_name=target.region,
            endpoint_url=target.endpoint_url
        )
        # Cheapest authenticated call; fails fast on bad credentials
        resource.meta.client.list_tables(Limit=1)
    except (BotoCoreError, ClientError) as e:
        logger.error(
            f"Error connecting to DynamoDB: {e}",
            extra={'error_type': type(e).__name__}
        )
        raise ConnectError(f"Could not connect to DynamoDB: {e}") from e

    logger.info("DynamoDB connection established")
    return DynamoDBHandle(resource=resource, target=target)


class ConnectionCache:
    """
    Memoizes a single store handle for the lifetime of the process.

    Holds at most one live handle and at most one in-flight connection
    attempt. Concurrent callers that arrive while an attempt is running
    wait on that attempt instead of starting their own.
    """

    def __init__(
        self,
        connector: Callable[[ConnectionTarget], DynamoDBHandle] = connect_dynamodb
    ):
        """
        Initialize an empty cache.

        Args:
            connector: Function that opens a handle for a connection target
        """
        self._connector = connector
        self._lock = threading.Lock()
        self._handle: Optional[DynamoDBHandle] = None
        self._pending: Optional[Future] = None

    @property
    def handle(self) -> Optional[DynamoDBHandle]:
        """Live handle, or None before the first successful connect."""
        return self._handle

    def acquire_connection(self, connection_uri: Optional[str]) -> DynamoDBHandle:
        """
        Return the shared handle, connecting on first use.

        Args:
            connection_uri: Connection URI from configuration

        Returns:
            The process-wide DynamoDBHandle

        Raises:
            ConfigError: If the URI is missing or malformed (before any I/O)
            ConnectError: If the store cannot be reached
        """
        target = parse_connection_uri(connection_uri)

        with self._lock:
            if self._handle is not None:
                return self._handle

            pending = self._pending
            owner = pending is None
            if owner:
                # Registered before connecting so concurrent callers see it
                pending = Future()
                self._pending = pending

        if not owner:
            logger.debug("Waiting on in-flight connection attempt")
            return pending.result()

        # Any failure, KeyboardInterrupt included, must resolve the Future
        try:
            handle = self._connector(target)
        except BaseException as e:
            with self._lock:
                self._pending = None
            pending.set_exception(e)
            raise

        with self._lock:
            self._handle = handle
        pending.set_result(handle)
        return handle
