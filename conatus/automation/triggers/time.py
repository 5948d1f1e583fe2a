"""
Conatus Time Trigger Evaluator

Specific-time, time-range, recurring and relative-time triggers.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Sequence, Tuple

import structlog

from conatus.automation.types import ContextSnapshot, TimeTrigger
from conatus.automation.triggers.evaluator import BaseTriggerEvaluator

logger = structlog.get_logger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def parse_clock(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse ``HH:MM`` into (hour, minute)."""
    if not value or not isinstance(value, str):
        return None
    try:
        hour, minute = (int(part) for part in value.strip().split(":")[:2])
    except ValueError:
        return None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return hour, minute


def align(moment: datetime, reference: datetime) -> datetime:
    """
    Give ``moment`` the same awareness as ``reference``.

    Naive values are taken to be in the reference's zone; aware values are
    converted to local time when the reference is naive.
    """
    if moment.tzinfo is None and reference.tzinfo is not None:
        return moment.replace(tzinfo=reference.tzinfo)
    if moment.tzinfo is not None and reference.tzinfo is None:
        return moment.astimezone().replace(tzinfo=None)
    return moment


def parse_moment(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


class TimeTriggerEvaluator(BaseTriggerEvaluator):
    """
    Evaluator for time triggers.

    Subtypes:
    - specific_time: within the tolerance of HH:MM (nearest occurrence, so
      23:59:30 matches 00:00)
    - time_range: inclusive minute-of-day range, wrapping past midnight
    - recurring: daily / weekdays / weekends / weekly(days) / monthly(day)
    - relative_time: offset from a calendar event or a fixed datetime
    """

    def __init__(self, tolerance_seconds: float = 60.0):
        self.tolerance = timedelta(seconds=tolerance_seconds)

    async def evaluate(
        self,
        trigger: TimeTrigger,
        snapshot: ContextSnapshot,
        user_id: str,
    ) -> bool:
        """Evaluate a time trigger."""
        now = snapshot.now or datetime.now()

        if trigger.subtype == "specific_time":
            return self.check_specific_time(trigger.time, now)

        if trigger.subtype == "time_range":
            return self.check_time_range(trigger.start_time, trigger.end_time, now)

        if trigger.subtype == "recurring":
            return self.check_recurring(trigger, now)

        if trigger.subtype == "relative_time":
            return self.check_relative_time(trigger.reference, trigger.offset, now, snapshot)

        logger.warning("unknown_time_trigger_subtype", subtype=trigger.subtype)
        return False

    def check_specific_time(self, target: Optional[str], now: datetime) -> bool:
        """Within the tolerance of the nearest occurrence of HH:MM."""
        clock = parse_clock(target)
        if clock is None:
            logger.debug("invalid_trigger_time", time=target)
            return False

        today = now.replace(hour=clock[0], minute=clock[1], second=0, microsecond=0)
        candidates = (today - timedelta(days=1), today, today + timedelta(days=1))
        return min(abs(now - c) for c in candidates) <= self.tolerance

    def check_time_range(self, start: Optional[str], end: Optional[str], now: datetime) -> bool:
        """Inclusive minute-of-day range; start after end wraps midnight."""
        start_clock, end_clock = parse_clock(start), parse_clock(end)
        if start_clock is None or end_clock is None:
            return False

        current = now.hour * 60 + now.minute
        start_minutes = start_clock[0] * 60 + start_clock[1]
        end_minutes = end_clock[0] * 60 + end_clock[1]

        if start_minutes <= end_minutes:
            return start_minutes <= current <= end_minutes
        return current >= start_minutes or current <= end_minutes

    def check_recurring(self, trigger: TimeTrigger, now: datetime) -> bool:
        """Schedule day check plus the optional time-of-day check."""
        if not self._schedule_matches(trigger.schedule, trigger.days, trigger.day_of_month, now):
            return False
        if trigger.time is None:
            return True
        return self.check_specific_time(trigger.time, now)

    @staticmethod
    def _schedule_matches(
        schedule: Optional[str],
        days: Sequence[str],
        day_of_month: Optional[int],
        now: datetime,
    ) -> bool:
        weekday = now.weekday()

        if schedule == "daily":
            return True
        if schedule == "weekdays":
            return weekday < 5
        if schedule == "weekends":
            return weekday >= 5
        if schedule == "weekly":
            # full names or three-letter abbreviations
            return any(WEEKDAYS[weekday].startswith(day[:3]) for day in days if day)
        if schedule == "monthly":
            return day_of_month is not None and now.day == int(day_of_month)

        logger.warning("unknown_recurring_schedule", schedule=schedule)
        return False

    def check_relative_time(
        self,
        reference: Dict[str, Any],
        offset: Dict[str, Any],
        now: datetime,
        snapshot: ContextSnapshot,
    ) -> bool:
        """Within the tolerance of reference time + offset."""
        base = self._reference_time(reference, snapshot)
        if base is None:
            return False

        target = align(base, now) + timedelta(
            minutes=float(offset.get("minutes") or 0),
            hours=float(offset.get("hours") or 0),
            days=float(offset.get("days") or 0),
        )
        return abs(now - target) <= self.tolerance

    @staticmethod
    def _reference_time(reference: Dict[str, Any], snapshot: ContextSnapshot) -> Optional[datetime]:
        kind = reference.get("type")

        if kind == "fixed_datetime":
            return parse_moment(reference.get("datetime") or reference.get("value"))

        if kind == "calendar_event":
            event_id = reference.get("eventId") or reference.get("event_id")
            title = reference.get("eventTitle") or reference.get("event_title")
            for event in snapshot.calendar_events:
                if (event_id and event.get("id") == event_id) or (title and event.get("title") == title):
                    return parse_moment(event.get("startTime") or event.get("start_time"))
            logger.debug("reference_event_not_found", event_id=event_id, title=title)
            return None

        logger.warning("unknown_time_reference", reference_type=kind)
        return None
