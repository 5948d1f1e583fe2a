"""
Shared fixtures for Conatus tests.
"""

import pytest

from conatus.core.config import AutomationConfig
from conatus.automation.engine import WorkflowEngine
from conatus.automation.execution.context import ExecutionContext
from conatus.connectors.credentials import InMemoryCredentialProvider
from conatus.connectors.registry import InMemoryConnectorRegistry

from fakes import RecordingConnector, RecordingObserver


@pytest.fixture
def connector():
    return RecordingConnector()


@pytest.fixture
def connectors(connector):
    return InMemoryConnectorRegistry({"chat": connector})


@pytest.fixture
def credentials():
    return InMemoryCredentialProvider({("user-1", "chat"): "token-1"})


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def engine(connectors, credentials, observer):
    return WorkflowEngine(
        connectors=connectors,
        credentials=credentials,
        observer=observer,
        config=AutomationConfig(action_timeout_seconds=0.5),
    )


@pytest.fixture
def context():
    return ExecutionContext(
        user_id="user-1",
        trigger_data={"message": {"text": "hello", "tags": ["a", "b"]}, "count": 3},
        variables={"name": "Ada", "items": [1, 2, 3], "user": {"city": "Paris"}},
    )
