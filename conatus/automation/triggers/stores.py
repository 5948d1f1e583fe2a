"""
Conatus Trigger Stores

State and history backends used by trigger evaluation:
- InMemoryFlagStore / RedisFlagStore: expiring location presence flags
- InMemoryActivityStore: activity history and derived usage patterns
- InMemoryPlaceBook: named places per user
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
import structlog

from conatus.automation.interfaces import ActivityEvent

logger = structlog.get_logger(__name__)


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# === Flag stores ===


class InMemoryFlagStore:
    """In-process flag store with per-key expiry."""

    def __init__(self):
        self._flags: Dict[Tuple[str, str], Tuple[bool, float]] = {}
        self._lock = asyncio.Lock()

    async def get_flag(self, user_id: str, key: str) -> Optional[bool]:
        """Get a flag value, or None if unset or expired."""
        async with self._lock:
            entry = self._flags.get((user_id, key))
            if entry is None:
                return None

            value, expires_at = entry
            if time.monotonic() >= expires_at:
                del self._flags[(user_id, key)]
                return None

            return value

    async def set_flag(self, user_id: str, key: str, value: bool, ttl_seconds: int) -> None:
        """Set a flag value with a time-to-live."""
        async with self._lock:
            self._flags[(user_id, key)] = (bool(value), time.monotonic() + ttl_seconds)


class RedisFlagStore:
    """
    Redis-backed flag store.

    A flag ``location:home`` for user ``u1`` lives under the key
    ``<prefix>location:u1:home``, is written with ``SET ... EX ttl`` and
    holds the string ``"true"`` or ``"false"``.
    """

    def __init__(
        self,
        client: Optional["aioredis.Redis"] = None,
        url: str = "redis://localhost:6379/0",
        prefix: str = "",
    ):
        self.url = url
        self.prefix = prefix
        self._client = client

    async def initialize(self) -> None:
        """Initialize Redis connection."""
        if self._client is not None:
            return

        logger.info("Initializing Redis flag store", url=self.url)
        self._client = aioredis.Redis.from_url(self.url, decode_responses=True)
        await self._client.ping()

    async def shutdown(self) -> None:
        """Close the Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _make_key(self, user_id: str, key: str) -> str:
        namespace, _, name = key.partition(":")
        if not name:
            return f"{self.prefix}{user_id}:{namespace}"
        return f"{self.prefix}{namespace}:{user_id}:{name}"

    async def get_flag(self, user_id: str, key: str) -> Optional[bool]:
        """Get a flag value."""
        if self._client is None:
            await self.initialize()

        value = await self._client.get(self._make_key(user_id, key))
        if isinstance(value, bytes):
            value = value.decode()
        if value is None:
            return None
        return value == "true"

    async def set_flag(self, user_id: str, key: str, value: bool, ttl_seconds: int) -> None:
        """Set a flag value with a time-to-live."""
        if self._client is None:
            await self.initialize()

        encoded = "true" if value else "false"
        await self._client.set(self._make_key(user_id, key), encoded, ex=ttl_seconds)


# === Activity ===


class InMemoryActivityStore:
    """
    In-process activity history.

    Recording an event also maintains three usage patterns per user:
    - ``daily_active_hours``: ``{"active_hours": [hour, ...]}``
    - ``weekly_active_days``: ``{"active_days": [weekday, ...]}`` (Monday = 0)
    - ``common_action_time``: ``{"actions": [{"action_type", "hour", "count", "last_seen"}]}``
    """

    def __init__(self, max_events_per_user: int = 10000):
        self.max_events_per_user = max_events_per_user
        self._events: Dict[str, List[ActivityEvent]] = defaultdict(list)
        self._patterns: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    async def record_event(
        self,
        user_id: str,
        event_type: str,
        timestamp: Optional[datetime] = None,
    ) -> ActivityEvent:
        """Record a user action and update the user's patterns."""
        event = ActivityEvent(type=event_type, timestamp=timestamp or datetime.now(timezone.utc))

        async with self._lock:
            events = self._events[user_id]
            events.append(event)
            events.sort(key=lambda e: as_utc(e.timestamp))
            if len(events) > self.max_events_per_user:
                del events[: len(events) - self.max_events_per_user]

            self._update_patterns(user_id, event)

        logger.debug("activity_recorded", user_id=user_id, event_type=event_type)
        return event

    async def get_recent_events(self, user_id: str, since: datetime) -> List[ActivityEvent]:
        """Events at or after ``since``, oldest first."""
        cutoff = as_utc(since)
        return [e for e in self._events.get(user_id, []) if as_utc(e.timestamp) >= cutoff]

    async def get_pattern(self, user_id: str, pattern_type: str) -> Optional[Dict[str, Any]]:
        """Get a usage pattern, or None if never observed."""
        return self._patterns.get(user_id, {}).get(pattern_type)

    def _update_patterns(self, user_id: str, event: ActivityEvent) -> None:
        patterns = self._patterns[user_id]
        hour = event.timestamp.hour
        weekday = event.timestamp.weekday()

        hours = patterns.setdefault("daily_active_hours", {"active_hours": []})["active_hours"]
        if hour not in hours:
            hours.append(hour)
            hours.sort()

        days = patterns.setdefault("weekly_active_days", {"active_days": []})["active_days"]
        if weekday not in days:
            days.append(weekday)
            days.sort()

        actions = patterns.setdefault("common_action_time", {"actions": []})["actions"]
        for entry in actions:
            if entry["action_type"] == event.type and entry["hour"] == hour:
                entry["count"] += 1
                entry["last_seen"] = event.timestamp.isoformat()
                break
        else:
            actions.append({
                "action_type": event.type,
                "hour": hour,
                "count": 1,
                "last_seen": event.timestamp.isoformat(),
            })


# === Places ===


class InMemoryPlaceBook:
    """Named places, per user with shared fallbacks (case-insensitive)."""

    def __init__(self):
        self._user_places: Dict[str, Dict[str, Dict[str, float]]] = defaultdict(dict)
        self._shared_places: Dict[str, Dict[str, float]] = {}

    def add_place(
        self,
        name: str,
        latitude: float,
        longitude: float,
        user_id: Optional[str] = None,
    ) -> None:
        """Save a place for one user, or for everyone when no user is given."""
        coords = {"latitude": latitude, "longitude": longitude}
        if user_id is None:
            self._shared_places[name.lower()] = coords
        else:
            self._user_places[user_id][name.lower()] = coords

    async def resolve_coordinates(
        self,
        place: str,
        user_id: Optional[str] = None,
    ) -> Optional[Dict[str, float]]:
        """Resolve a place name to coordinates."""
        key = place.lower()
        if user_id is not None and key in self._user_places.get(user_id, {}):
            return self._user_places[user_id][key]
        return self._shared_places.get(key)
