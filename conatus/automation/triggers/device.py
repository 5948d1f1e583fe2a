"""
Conatus Device Trigger Evaluator

Triggers on device type, platform, network and battery state.
"""

from __future__ import annotations

from typing import Optional

import structlog

from conatus.automation.types import ContextSnapshot, DeviceTrigger
from conatus.automation.triggers.evaluator import BaseTriggerEvaluator

logger = structlog.get_logger(__name__)


class DeviceTriggerEvaluator(BaseTriggerEvaluator):
    """Evaluator for device triggers."""

    async def evaluate(
        self,
        trigger: DeviceTrigger,
        snapshot: ContextSnapshot,
        user_id: str,
    ) -> bool:
        """Evaluate a device trigger."""
        device = snapshot.device
        if device is None:
            return False

        if trigger.subtype == "device_type":
            return device.type == trigger.device_type

        if trigger.subtype == "platform":
            return device.platform == trigger.platform

        if trigger.subtype == "network_type":
            return device.network_type == trigger.network_type

        if trigger.subtype == "battery_status":
            return self._check_battery(trigger, device.battery_level, device.charging)

        logger.warning("unknown_device_trigger_subtype", subtype=trigger.subtype)
        return False

    @staticmethod
    def _check_battery(trigger: DeviceTrigger, level: Optional[float], charging: Optional[bool]) -> bool:
        if trigger.battery_level:
            if level is None:
                return False
            threshold = trigger.battery_level.get("value")
            if threshold is None:
                return False
            if trigger.battery_level.get("type") == "below":
                return level < threshold
            if trigger.battery_level.get("type") == "above":
                return level > threshold

        if trigger.charging_state:
            if charging is None:
                return False
            return charging == (trigger.charging_state == "charging")

        return False
