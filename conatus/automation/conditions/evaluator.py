"""
Conatus Condition Evaluator

Evaluates workflow conditions.
"""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

import structlog

from conatus.automation.errors import UnknownConditionKindError
from conatus.automation.types import (
    And,
    Condition,
    Contains,
    Exists,
    IsEmpty,
    Not,
    Or,
    RegexMatch,
    UnknownCondition,
)
from conatus.automation.conditions.operators import OperatorRegistry
from conatus.automation.execution.resolver import ValueResolver

if TYPE_CHECKING:
    from conatus.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


class ConditionEvaluator:
    """
    Evaluates workflow conditions.

    Features:
    - Value resolution for operands
    - Operator evaluation
    - Short-circuit AND/OR logic
    - Negation support

    An absent condition is true. An unrecognised condition kind raises
    ``UnknownConditionKindError``; every other evaluation returns a boolean.
    """

    def __init__(
        self,
        resolver: Optional[ValueResolver] = None,
        operators: Optional[OperatorRegistry] = None,
    ):
        self.resolver = resolver or ValueResolver()
        self._operator_registry = operators or OperatorRegistry()

    def evaluate(
        self,
        condition: Optional[Condition],
        context: "ExecutionContext",
    ) -> bool:
        """
        Evaluate a condition against a context.

        Args:
            condition: Condition to evaluate (None means "always")
            context: Execution context for value resolution

        Returns:
            Boolean result
        """
        if condition is None:
            return True

        if isinstance(condition, And):
            return all(self.evaluate(c, context) for c in condition.conditions)

        if isinstance(condition, Or):
            return any(self.evaluate(c, context) for c in condition.conditions)

        if isinstance(condition, Not):
            return not self.evaluate(condition.condition, context)

        if isinstance(condition, UnknownCondition):
            raise UnknownConditionKindError(condition.kind)

        operator = self._operator_registry.get(type(condition))
        if operator is None:
            raise UnknownConditionKindError(type(condition).__name__)

        if isinstance(condition, (Exists, IsEmpty)):
            result = operator(self.resolver.resolve(condition.value, context))
        elif isinstance(condition, Contains):
            result = operator(
                self.resolver.resolve(condition.container, context),
                self.resolver.resolve(condition.item, context),
            )
        elif isinstance(condition, RegexMatch):
            result = operator(
                self.resolver.resolve(condition.text, context),
                self.resolver.resolve(condition.pattern, context),
            )
        else:
            result = operator(
                self.resolver.resolve(condition.left, context),
                self.resolver.resolve(condition.right, context),
            )

        logger.debug(
            "condition_evaluated",
            condition=type(condition).__name__,
            result=result,
        )

        return bool(result)
