"""
Conatus Collaborator Interfaces

Capabilities the automation core consumes but does not implement:
service connectors, credentials, the language-model query router, place
lookup, trigger state and activity history.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from conatus.automation.types import ActionSpec, InitStep, LogicBlock


class ConnectorRegistry(Protocol):
    """Protocol for looking up service connectors."""

    def get_connector(self, service_id: str) -> Optional[Any]:
        ...


class CredentialProvider(Protocol):
    """Protocol for per-user service credentials."""

    async def get_access_token(self, user_id: str, service_id: str) -> Optional[str]:
        ...


class QueryRouter(Protocol):
    """Protocol for the language-model query router."""

    async def query(self, prompt: str, provider: Optional[str] = None) -> Dict[str, Any]:
        """Return at least ``{"content": str}``."""
        ...


class LocationLookup(Protocol):
    """Protocol for resolving named places to coordinates."""

    async def resolve_coordinates(
        self,
        place: str,
        user_id: Optional[str] = None,
    ) -> Optional[Dict[str, float]]:
        """Return ``{"latitude": ..., "longitude": ...}`` or None."""
        ...


class FlagStore(Protocol):
    """Protocol for expiring per-user trigger flags."""

    async def get_flag(self, user_id: str, key: str) -> Optional[bool]:
        """The stored flag, or None if unset or expired."""
        ...

    async def set_flag(self, user_id: str, key: str, value: bool, ttl_seconds: int) -> None:
        ...


@dataclass(frozen=True)
class ActivityEvent:
    """One recorded user action."""
    type: str
    timestamp: datetime


class ActivityStore(Protocol):
    """Protocol for the user's activity history and derived patterns."""

    async def get_recent_events(self, user_id: str, since: datetime) -> List[ActivityEvent]:
        """Events at or after ``since``, oldest first."""
        ...

    async def get_pattern(self, user_id: str, pattern_type: str) -> Optional[Any]:
        ...


class ExecutionObserver(Protocol):
    """Protocol for execution telemetry hooks."""

    def on_block_start(self, block: LogicBlock, depth: int) -> None:
        ...

    def on_block_end(self, block: LogicBlock, result: Any) -> None:
        ...

    def on_block_error(self, block: LogicBlock, error: BaseException) -> None:
        ...

    def on_action_dispatch(self, action: ActionSpec, user_id: str) -> None:
        ...

    def on_init_step_failure(self, step: InitStep, error: BaseException) -> None:
        ...
