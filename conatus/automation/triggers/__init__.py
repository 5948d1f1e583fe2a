"""
Conatus Contextual Triggers

Trigger evaluation by category:
- Time (specific time, range, recurring, relative)
- Location (enter, exit, near)
- Device (type, platform, network, battery)
- Behavioral (usage pattern, frequency, sequence)
"""

from conatus.automation.triggers.evaluator import BaseTriggerEvaluator, TriggerEvaluator
from conatus.automation.triggers.time import TimeTriggerEvaluator
from conatus.automation.triggers.location import LocationTriggerEvaluator, haversine_distance
from conatus.automation.triggers.device import DeviceTriggerEvaluator
from conatus.automation.triggers.behavioral import BehavioralTriggerEvaluator
from conatus.automation.triggers.stores import (
    InMemoryActivityStore,
    InMemoryFlagStore,
    InMemoryPlaceBook,
    RedisFlagStore,
)

__all__ = [
    "BaseTriggerEvaluator",
    "TriggerEvaluator",
    "TimeTriggerEvaluator",
    "LocationTriggerEvaluator",
    "haversine_distance",
    "DeviceTriggerEvaluator",
    "BehavioralTriggerEvaluator",
    "InMemoryActivityStore",
    "InMemoryFlagStore",
    "InMemoryPlaceBook",
    "RedisFlagStore",
]
