"""
Conatus Service Connectors

Reference adapters for the collaborator interfaces the automation core
consumes.
"""

from conatus.connectors.credentials import InMemoryCredentialProvider
from conatus.connectors.http import HttpConnector
from conatus.connectors.query import QueryConnector
from conatus.connectors.registry import InMemoryConnectorRegistry

__all__ = [
    "InMemoryCredentialProvider",
    "HttpConnector",
    "QueryConnector",
    "InMemoryConnectorRegistry",
]
