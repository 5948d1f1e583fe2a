"""
Conatus Workflow Conditions

Condition evaluation for workflow gating and branching:
- Comparison operators
- Logical combinations (AND/OR/NOT)
"""

from conatus.automation.conditions.evaluator import ConditionEvaluator
from conatus.automation.conditions.operators import OperatorRegistry

__all__ = [
    "ConditionEvaluator",
    "OperatorRegistry",
]
