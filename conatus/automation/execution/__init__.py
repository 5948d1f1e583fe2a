"""
Conatus Workflow Execution

Execution state and value resolution:
- Execution context with derived copies
- Value resolution and built-in functions
- Execution history
"""

from conatus.automation.execution.context import ExecutionContext
from conatus.automation.execution.functions import FunctionRegistry
from conatus.automation.execution.history import ExecutionHistory, ExecutionRecord
from conatus.automation.execution.resolver import ValueResolver

__all__ = [
    "ExecutionContext",
    "FunctionRegistry",
    "ExecutionHistory",
    "ExecutionRecord",
    "ValueResolver",
]
