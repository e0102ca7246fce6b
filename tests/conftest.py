"""Shared fixtures for the event and booking store tests."""
import os
from unittest.mock import patch

import pytest
from moto import mock_aws

from config import ConnectionTarget
from processor.event_processor import EventProcessor
from processor.models import EventRecord
from storage.connection import connect_dynamodb
from storage.dynamodb_manager import DynamoDBManager


@pytest.fixture
def aws_credentials():
    """Fake AWS credentials so nothing can reach a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def mocked_aws(aws_credentials):
    """Run the test inside moto's in-process AWS mock."""
    with mock_aws():
        yield


@pytest.fixture
def dynamodb_handle(mocked_aws):
    """Live handle against the mocked DynamoDB endpoint."""
    return connect_dynamodb(
        ConnectionTarget(region='us-east-1', table_prefix='test-')
    )


@pytest.fixture
def dynamodb_manager(dynamodb_handle):
    """DynamoDBManager with all tables created."""
    manager = DynamoDBManager(dynamodb_handle)
    manager.create_tables()
    return manager


@pytest.fixture
def make_event():
    """Factory for raw (not yet normalized) event records."""
    def _make(**overrides) -> EventRecord:
        fields = {
            'title': 'Cloud Summit 2025',
            'description': 'A day of talks on cloud infrastructure.',
            'overview': 'Keynotes, workshops and networking.',
            'image': '/images/cloud-summit.png',
            'venue': 'Moscone Center',
            'location': 'San Francisco, CA',
            'date': '2025-11-15',
            'time': '9:30 AM',
            'mode': 'hybrid',
            'audience': 'Developers',
            'agenda': ['Registration', 'Keynote', 'Workshops'],
            'organizer': 'Cloud Native Guild',
            'tags': ['cloud', 'devops']
        }
        fields.update(overrides)
        return EventRecord(**fields)
    return _make


@pytest.fixture
def normalized_event(make_event):
    """Factory for events that already went through the processor."""
    processor = EventProcessor()

    def _make(**overrides) -> EventRecord:
        record = make_event(**overrides)
        return processor.validate_and_normalize(record, True)
    return _make
