"""
Conatus Trigger Evaluator

Decides whether a workflow trigger holds for a context snapshot.
"""

from __future__ import annotations

from typing import Dict, Optional, TYPE_CHECKING

import structlog

from conatus.core.config import TriggerConfig, get_config
from conatus.automation.types import ContextSnapshot, TriggerCategory, TriggerSpec, UnknownTrigger

if TYPE_CHECKING:
    from conatus.automation.interfaces import ActivityStore, FlagStore, LocationLookup

logger = structlog.get_logger(__name__)


class BaseTriggerEvaluator:
    """Base class for per-category trigger evaluators."""

    async def evaluate(
        self,
        trigger: TriggerSpec,
        snapshot: ContextSnapshot,
        user_id: str,
    ) -> bool:
        """Evaluate the trigger."""
        raise NotImplementedError


class TriggerEvaluator:
    """
    Evaluates contextual triggers.

    Routes each trigger to its category evaluator (time, location, device,
    behavioral). Evaluation never raises: unknown trigger kinds and failing
    collaborators are logged and count as "not fired".
    """

    def __init__(
        self,
        lookup: Optional["LocationLookup"] = None,
        flags: Optional["FlagStore"] = None,
        activity: Optional["ActivityStore"] = None,
        config: Optional[TriggerConfig] = None,
    ):
        from conatus.automation.triggers.behavioral import BehavioralTriggerEvaluator
        from conatus.automation.triggers.device import DeviceTriggerEvaluator
        from conatus.automation.triggers.location import LocationTriggerEvaluator
        from conatus.automation.triggers.stores import (
            InMemoryActivityStore,
            InMemoryFlagStore,
            InMemoryPlaceBook,
        )
        from conatus.automation.triggers.time import TimeTriggerEvaluator

        self.config = config or get_config().triggers

        self._evaluators: Dict[TriggerCategory, BaseTriggerEvaluator] = {
            TriggerCategory.TIME: TimeTriggerEvaluator(
                tolerance_seconds=self.config.time_tolerance_seconds,
            ),
            TriggerCategory.LOCATION: LocationTriggerEvaluator(
                lookup=lookup or InMemoryPlaceBook(),
                flags=flags or InMemoryFlagStore(),
                margin_meters=self.config.location_margin_meters,
                near_default_radius=self.config.near_default_radius_meters,
                flag_ttl_seconds=self.config.location_flag_ttl_seconds,
                lookup_timeout=self.config.location_lookup_timeout_seconds,
                store_timeout=self.config.store_timeout_seconds,
            ),
            TriggerCategory.DEVICE: DeviceTriggerEvaluator(),
            TriggerCategory.BEHAVIORAL: BehavioralTriggerEvaluator(
                activity=activity or InMemoryActivityStore(),
                min_pattern_actions=self.config.usage_pattern_min_actions,
                store_timeout=self.config.store_timeout_seconds,
            ),
        }

    def register_evaluator(self, category: TriggerCategory, evaluator: BaseTriggerEvaluator) -> None:
        """Register a custom category evaluator."""
        self._evaluators[category] = evaluator
        logger.info("trigger_evaluator_registered", category=category.value)

    def get_evaluator(self, category: TriggerCategory) -> Optional[BaseTriggerEvaluator]:
        """Get the evaluator for a category."""
        return self._evaluators.get(category)

    async def evaluate(
        self,
        trigger: Optional[TriggerSpec],
        snapshot: ContextSnapshot,
        user_id: str,
    ) -> bool:
        """
        Evaluate a trigger against a context snapshot.

        Args:
            trigger: Trigger definition
            snapshot: Current user context
            user_id: User the trigger belongs to

        Returns:
            True if the trigger fires
        """
        if trigger is None:
            return False

        if isinstance(trigger, UnknownTrigger):
            logger.warning("unknown_trigger_type", category=trigger.category, subtype=trigger.subtype)
            return False

        evaluator = self._evaluators.get(trigger.CATEGORY)
        if evaluator is None:
            logger.warning("no_trigger_evaluator", category=trigger.CATEGORY.value)
            return False

        try:
            fired = await evaluator.evaluate(trigger, snapshot, user_id)
        except Exception as e:
            logger.error(
                "trigger_evaluation_error",
                category=trigger.CATEGORY.value,
                subtype=trigger.subtype,
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.debug(
            "trigger_evaluated",
            category=trigger.CATEGORY.value,
            subtype=trigger.subtype,
            fired=fired,
        )
        return bool(fired)
