"""
Conatus Workflow Automation

Interpreter for user-authored automations and evaluator for the contextual
triggers that start them.

Core Features:
- Initialization steps (literals, trigger extraction, transforms, model queries)
- Logic blocks: actions, conditionals, loops, parallel fan-out, variables, return
- Per-block error policies (propagate, continue, returnEarly)
- Time, location, device and behavioral triggers
- Versioned workflow registry and execution history
"""

from conatus.automation.types import (
    # Sentinel
    UNDEFINED,
    # Enums
    ErrorHandling,
    OutcomeStatus,
    TriggerCategory,
    # Definitions
    ActionSpec,
    WorkflowDefinition,
    ContextSnapshot,
    # Outcomes
    BranchFailure,
    ExecutionOutcome,
    # Parsing
    parse_block,
    parse_condition,
    parse_trigger,
    parse_value,
)
from conatus.automation.errors import (
    AutomationError,
    ActionError,
    BlockExecutionError,
    WorkflowDisabledError,
    WorkflowNotFoundError,
)
from conatus.automation.execution.context import ExecutionContext
from conatus.automation.engine import WorkflowEngine
from conatus.automation.registry import WorkflowRegistry
from conatus.automation.service import AutomationService
from conatus.automation.triggers.evaluator import TriggerEvaluator

__all__ = [
    "UNDEFINED",
    "ErrorHandling",
    "OutcomeStatus",
    "TriggerCategory",
    "ActionSpec",
    "WorkflowDefinition",
    "ContextSnapshot",
    "BranchFailure",
    "ExecutionOutcome",
    "parse_block",
    "parse_condition",
    "parse_trigger",
    "parse_value",
    "AutomationError",
    "ActionError",
    "BlockExecutionError",
    "WorkflowDisabledError",
    "WorkflowNotFoundError",
    "ExecutionContext",
    "WorkflowEngine",
    "WorkflowRegistry",
    "AutomationService",
    "TriggerEvaluator",
]
