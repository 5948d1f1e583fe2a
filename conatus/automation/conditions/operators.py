"""
Conatus Condition Operators

Comparison operators for condition evaluation.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, Mapping

import structlog

from conatus.automation.types import (
    Contains,
    Equals,
    Exists,
    GreaterThan,
    IsEmpty,
    LessThan,
    NotEquals,
    RegexMatch,
    is_missing,
)

logger = structlog.get_logger(__name__)


class OperatorRegistry:
    """
    Registry of comparison operators.

    Maps each leaf condition type to a predicate over its resolved operands.
    Operators never raise: incompatible operands compare as False.
    """

    def __init__(self):
        self._operators: Dict[type, Callable[..., bool]] = {}
        self._register_builtin_operators()

    def _register_builtin_operators(self) -> None:
        """Register built-in operators."""
        self._operators[Equals] = self._equals
        self._operators[NotEquals] = self._not_equals
        self._operators[GreaterThan] = self._greater_than
        self._operators[LessThan] = self._less_than
        self._operators[Contains] = self._contains
        self._operators[RegexMatch] = self._matches
        self._operators[Exists] = self._exists
        self._operators[IsEmpty] = self._is_empty

    def register(self, condition_type: type, func: Callable[..., bool]) -> None:
        """Register a custom operator."""
        self._operators[condition_type] = func

    def get(self, condition_type: type) -> Callable[..., bool]:
        return self._operators.get(condition_type)

    # === Operator Implementations ===

    @staticmethod
    def _equals(left: Any, right: Any) -> bool:
        """Equality comparison without coercion."""
        # True == 1 in Python; booleans only ever equal booleans here
        if isinstance(left, bool) != isinstance(right, bool):
            return False
        if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
            return len(left) == len(right) and all(
                OperatorRegistry._equals(a, b) for a, b in zip(left, right)
            )
        return left == right

    @staticmethod
    def _not_equals(left: Any, right: Any) -> bool:
        """Inequality comparison."""
        return not OperatorRegistry._equals(left, right)

    @staticmethod
    def _greater_than(left: Any, right: Any) -> bool:
        """Greater than comparison."""
        if not _orderable(left, right):
            return False
        return left > right

    @staticmethod
    def _less_than(left: Any, right: Any) -> bool:
        """Less than comparison."""
        if not _orderable(left, right):
            return False
        return left < right

    @staticmethod
    def _contains(container: Any, item: Any) -> bool:
        """Substring, sequence membership or mapping key membership."""
        if isinstance(container, str):
            return isinstance(item, str) and item in container
        if isinstance(container, (list, tuple)):
            return any(OperatorRegistry._equals(element, item) for element in container)
        if isinstance(container, Mapping):
            try:
                return item in container
            except TypeError:
                return False
        return False

    @staticmethod
    def _matches(text: Any, pattern: Any) -> bool:
        """Regex search."""
        if not isinstance(text, str) or not isinstance(pattern, str):
            return False
        try:
            return re.search(pattern, text) is not None
        except re.error as e:
            logger.debug("invalid_regex", pattern=pattern, error=str(e))
            return False

    @staticmethod
    def _exists(value: Any) -> bool:
        """Value is neither undefined nor null."""
        return not is_missing(value)

    @staticmethod
    def _is_empty(value: Any) -> bool:
        """Missing values and zero-length strings or containers are empty."""
        if is_missing(value):
            return True
        if isinstance(value, (str, list, tuple, dict, set)):
            return len(value) == 0
        return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _orderable(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return True
    return isinstance(left, str) and isinstance(right, str)
