"""
Conatus Credential Provider

In-process store of per-user service credentials.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


class InMemoryCredentialProvider:
    """Holds one access token per (user, service) connection."""

    def __init__(self, tokens: Optional[Dict[Tuple[str, str], str]] = None):
        self._tokens: Dict[Tuple[str, str], str] = dict(tokens or {})
        self._lock = asyncio.Lock()

    async def set_access_token(self, user_id: str, service_id: str, token: str) -> None:
        """Store (or replace) the token for a connection."""
        async with self._lock:
            self._tokens[(user_id, service_id)] = token
        logger.info("service_connected", user_id=user_id, service_id=service_id)

    async def revoke(self, user_id: str, service_id: str) -> bool:
        """Forget a connection."""
        async with self._lock:
            removed = self._tokens.pop((user_id, service_id), None) is not None
        if removed:
            logger.info("service_disconnected", user_id=user_id, service_id=service_id)
        return removed

    async def get_access_token(self, user_id: str, service_id: str) -> Optional[str]:
        """Get the token for a connection, or None if not connected."""
        return self._tokens.get((user_id, service_id))

    async def list_connections(self, user_id: str) -> List[str]:
        """List the services a user has connected."""
        return sorted(service for user, service in self._tokens if user == user_id)
