"""
Conatus Value Resolver

Resolves workflow value expressions against an execution context.
"""

from __future__ import annotations

import re
from typing import Any, Optional, TYPE_CHECKING

import structlog

from conatus.automation.types import (
    FunctionCall,
    LiteralValue,
    ResultRef,
    Template,
    TriggerRef,
    VariableRef,
)
from conatus.automation.execution.functions import FunctionRegistry, render_text

if TYPE_CHECKING:
    from conatus.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


class ValueResolver:
    """
    Resolves values.

    Supports:
    - Literals (containers resolved element-wise)
    - {"type": "variable"} / {"type": "result"} / {"type": "trigger"} references
    - {{ path }} templates over the variables map
    - Built-in function calls

    Missing references resolve to ``UNDEFINED``. Only custom registered
    functions can make resolution raise.
    """

    # Expression pattern for {{ variable }}
    EXPRESSION_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")

    def __init__(self, functions: Optional[FunctionRegistry] = None):
        self.functions = functions or FunctionRegistry()

    def resolve(self, value: Any, context: "ExecutionContext") -> Any:
        """Resolve a value expression."""
        if isinstance(value, LiteralValue):
            return self.resolve(value.value, context)

        if isinstance(value, VariableRef):
            return context.get_variable(value.name)

        if isinstance(value, ResultRef):
            return context.get_result(value.name)

        if isinstance(value, TriggerRef):
            return context.get_trigger_field(value.path)

        if isinstance(value, Template):
            return self.render(value.template, context)

        if isinstance(value, FunctionCall):
            args = [self.resolve(arg, context) for arg in value.args]
            return self.functions.call(value.name, args)

        if isinstance(value, dict):
            return {k: self.resolve(v, context) for k, v in value.items()}

        if isinstance(value, (list, tuple)):
            return [self.resolve(item, context) for item in value]

        return value

    def render(self, template: str, context: "ExecutionContext") -> str:
        """Substitute every {{ path }} in a template."""
        if not isinstance(template, str):
            return ""

        def replace(match: re.Match) -> str:
            return render_text(context.lookup(match.group(1).strip()))

        return self.EXPRESSION_PATTERN.sub(replace, template)
