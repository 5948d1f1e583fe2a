"""
Conatus Behavioral Trigger Evaluator

Triggers on the user's recent activity: usage patterns, action frequency
and action sequences.
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, TYPE_CHECKING

import structlog

from conatus.automation.types import BehavioralTrigger, ContextSnapshot
from conatus.automation.triggers.evaluator import BaseTriggerEvaluator
from conatus.automation.triggers.stores import as_utc

if TYPE_CHECKING:
    from conatus.automation.interfaces import ActivityStore

logger = structlog.get_logger(__name__)

_WINDOW_PATTERN = re.compile(r"^(\d+)([mhd])$")
_WINDOW_UNITS = {"m": "minutes", "h": "hours", "d": "days"}


def parse_window(window: Optional[str]) -> Optional[timedelta]:
    """Parse a time window such as ``30m``, ``24h`` or ``7d``."""
    if not isinstance(window, str):
        return None
    match = _WINDOW_PATTERN.match(window.strip())
    if not match:
        return None
    return timedelta(**{_WINDOW_UNITS[match.group(2)]: int(match.group(1))})


def contains_run(events: Sequence[str], sequence: Sequence[str]) -> bool:
    """True if ``sequence`` occurs contiguously in ``events``."""
    size = len(sequence)
    return any(
        list(events[i:i + size]) == list(sequence)
        for i in range(len(events) - size + 1)
    )


def contains_subsequence(events: Sequence[str], sequence: Sequence[str]) -> bool:
    """True if ``sequence`` occurs in order in ``events``, gaps allowed."""
    remaining = iter(events)
    return all(any(event == wanted for event in remaining) for wanted in sequence)


class BehavioralTriggerEvaluator(BaseTriggerEvaluator):
    """
    Evaluator for behavioral triggers.

    Subtypes:
    - usage_pattern: the current hour/day matches a stored activity pattern
    - frequency_threshold: an action happened at least N times in the window
    - sequence_detection: actions happened in the given order in the window
    """

    def __init__(
        self,
        activity: "ActivityStore",
        min_pattern_actions: int = 3,
        store_timeout: float = 5.0,
    ):
        self.activity = activity
        self.min_pattern_actions = min_pattern_actions
        self.store_timeout = store_timeout

    async def evaluate(
        self,
        trigger: BehavioralTrigger,
        snapshot: ContextSnapshot,
        user_id: str,
    ) -> bool:
        """Evaluate a behavioral trigger."""
        now = snapshot.now or datetime.now(timezone.utc)

        if trigger.subtype == "usage_pattern":
            return await self.check_usage_pattern(trigger, now, user_id)

        if trigger.subtype == "frequency_threshold":
            return await self.check_frequency(trigger, now, user_id)

        if trigger.subtype == "sequence_detection":
            return await self.check_sequence(trigger, now, user_id)

        logger.warning("unknown_behavioral_trigger_subtype", subtype=trigger.subtype)
        return False

    async def check_usage_pattern(self, trigger: BehavioralTrigger, now: datetime, user_id: str) -> bool:
        """Does the current moment fall inside the stored pattern?"""
        pattern = await asyncio.wait_for(
            self.activity.get_pattern(user_id, trigger.pattern),
            timeout=self.store_timeout,
        )
        if not pattern:
            return False

        if trigger.pattern == "daily_active_hours":
            return now.hour in pattern.get("active_hours", [])

        if trigger.pattern == "weekly_active_days":
            return now.weekday() in pattern.get("active_days", [])

        if trigger.pattern == "common_action_time":
            count = sum(
                entry.get("count", 0)
                for entry in pattern.get("actions", [])
                if entry.get("hour") == now.hour
                and (not trigger.action_type or entry.get("action_type") == trigger.action_type)
            )
            return count >= self.min_pattern_actions

        logger.warning("unknown_usage_pattern", pattern=trigger.pattern)
        return False

    async def check_frequency(self, trigger: BehavioralTrigger, now: datetime, user_id: str) -> bool:
        """Count matching events in the window against the threshold."""
        events = await self._recent_event_types(trigger.time_window, now, user_id)
        if events is None:
            return False

        count = sum(1 for event in events if event == trigger.action_type)
        logger.debug(
            "frequency_checked",
            action_type=trigger.action_type,
            count=count,
            threshold=trigger.threshold,
        )
        return count >= trigger.threshold

    async def check_sequence(self, trigger: BehavioralTrigger, now: datetime, user_id: str) -> bool:
        """Look for the action sequence in the window."""
        if not trigger.sequence:
            return False

        events = await self._recent_event_types(trigger.time_window, now, user_id)
        if events is None or len(events) < len(trigger.sequence):
            return False

        if trigger.ordered:
            return contains_subsequence(events, trigger.sequence)
        return contains_run(events, trigger.sequence)

    async def _recent_event_types(
        self,
        time_window: str,
        now: datetime,
        user_id: str,
    ) -> Optional[List[str]]:
        window = parse_window(time_window)
        if window is None:
            logger.warning("invalid_time_window", time_window=time_window)
            return None

        events = await asyncio.wait_for(
            self.activity.get_recent_events(user_id, now - window),
            timeout=self.store_timeout,
        )
        # the window ends at the snapshot time
        until = as_utc(now)
        return [event.type for event in events if as_utc(event.timestamp) <= until]
