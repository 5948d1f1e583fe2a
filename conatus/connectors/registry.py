"""
Conatus Connector Registry

In-process registry of service connectors.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


class InMemoryConnectorRegistry:
    """
    Maps service ids to connector objects.

    A connector is any object whose public methods are named after the
    action types it supports; each method takes the user's credential
    followed by the action parameters as keyword arguments.
    """

    def __init__(self, connectors: Optional[Dict[str, Any]] = None):
        self._connectors: Dict[str, Any] = dict(connectors or {})

    def register(self, service_id: str, connector: Any) -> None:
        """Register a connector for a service."""
        self._connectors[service_id] = connector
        logger.info("connector_registered", service_id=service_id)

    def unregister(self, service_id: str) -> bool:
        """Remove a service connector."""
        return self._connectors.pop(service_id, None) is not None

    def get_connector(self, service_id: str) -> Optional[Any]:
        """Get the connector for a service."""
        return self._connectors.get(service_id)

    def list_services(self) -> List[str]:
        """List registered service ids."""
        return sorted(self._connectors)
