"""
Conatus Location Trigger Evaluator

Geofence triggers: entering, leaving or being near a named place.
"""

from __future__ import annotations

import asyncio
import math
from typing import Optional, TYPE_CHECKING

import structlog

from conatus.automation.types import ContextSnapshot, LocationTrigger
from conatus.automation.triggers.evaluator import BaseTriggerEvaluator

if TYPE_CHECKING:
    from conatus.automation.interfaces import FlagStore, LocationLookup

logger = structlog.get_logger(__name__)

EARTH_RADIUS_METERS = 6371000.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class LocationTriggerEvaluator(BaseTriggerEvaluator):
    """
    Evaluator for location triggers.

    The user is at a place when their distance to it is at most the fix
    accuracy plus a fixed margin. ``enter_location`` and ``exit_location``
    keep a per-user flag (``location:<place>``) and fire only on the edge;
    ``near_location`` is stateless.
    """

    def __init__(
        self,
        lookup: "LocationLookup",
        flags: "FlagStore",
        margin_meters: float = 50.0,
        near_default_radius: float = 500.0,
        flag_ttl_seconds: int = 86400,
        lookup_timeout: float = 10.0,
        store_timeout: float = 5.0,
    ):
        self.lookup = lookup
        self.flags = flags
        self.margin_meters = margin_meters
        self.near_default_radius = near_default_radius
        self.flag_ttl_seconds = flag_ttl_seconds
        self.lookup_timeout = lookup_timeout
        self.store_timeout = store_timeout

    async def evaluate(
        self,
        trigger: LocationTrigger,
        snapshot: ContextSnapshot,
        user_id: str,
    ) -> bool:
        """Evaluate a location trigger."""
        if trigger.subtype not in ("enter_location", "exit_location", "near_location"):
            logger.warning("unknown_location_trigger_subtype", subtype=trigger.subtype)
            return False

        fix = snapshot.location
        if fix is None:
            return False

        distance = await self._distance_to(trigger.location, fix.latitude, fix.longitude, user_id)
        if distance is None:
            return False

        if trigger.subtype == "near_location":
            radius = trigger.radius if trigger.radius is not None else self.near_default_radius
            return distance <= radius + fix.accuracy

        at_location = distance <= fix.accuracy + self.margin_meters
        was_at_location = await self._swap_flag(user_id, trigger.location, at_location)

        logger.debug(
            "location_checked",
            place=trigger.location,
            distance=round(distance, 1),
            at_location=at_location,
            was_at_location=was_at_location,
        )

        if trigger.subtype == "enter_location":
            return at_location and not was_at_location
        return was_at_location and not at_location

    async def _distance_to(
        self,
        place: str,
        latitude: float,
        longitude: float,
        user_id: str,
    ) -> Optional[float]:
        coords = await asyncio.wait_for(
            self.lookup.resolve_coordinates(place, user_id),
            timeout=self.lookup_timeout,
        )
        if not coords:
            logger.debug("location_not_found", place=place)
            return None

        return haversine_distance(latitude, longitude, coords["latitude"], coords["longitude"])

    async def _swap_flag(self, user_id: str, place: str, at_location: bool) -> bool:
        """Store the new presence flag and return the previous one."""
        key = f"location:{place}"
        previous = await asyncio.wait_for(
            self.flags.get_flag(user_id, key),
            timeout=self.store_timeout,
        )
        await asyncio.wait_for(
            self.flags.set_flag(user_id, key, at_location, self.flag_ttl_seconds),
            timeout=self.store_timeout,
        )
        return bool(previous)
