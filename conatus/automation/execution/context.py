"""
Conatus Execution Context

Variable and result storage for one workflow execution.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Set

import structlog

from conatus.automation.types import UNDEFINED
from conatus.automation.execution.paths import get_path

logger = structlog.get_logger(__name__)


class ExecutionContext:
    """
    Execution context for workflows.

    Features:
    - Variable and named-result storage
    - Dotted-path access into trigger data and variables
    - Last-error tracking
    - Derived copies for loop iterations and parallel branches

    A derived context starts from a shallow copy of its parent and records
    every variable, result and error it writes. ``merge`` copies exactly those
    writes back, except for the bindings the child was derived with.
    """

    def __init__(
        self,
        user_id: str,
        trigger_data: Optional[Mapping[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
        results: Optional[Dict[str, Any]] = None,
    ):
        self.user_id = user_id
        self.trigger_data: Mapping[str, Any] = trigger_data or {}
        self.variables: Dict[str, Any] = dict(variables or {})
        self.results: Dict[str, Any] = dict(results or {})
        self.last_error: Optional[Dict[str, Any]] = None

        self._written_variables: Set[str] = set()
        self._written_results: Set[str] = set()
        self._error_written = False
        self._bindings: Set[str] = set()

    # === Data Access ===

    def set_variable(self, name: str, value: Any) -> None:
        """Set a variable."""
        self.variables[name] = value
        self._written_variables.add(name)
        logger.debug("context_set", key=name)

    def get_variable(self, name: str, default: Any = UNDEFINED) -> Any:
        """Get a variable by exact name."""
        return self.variables.get(name, default)

    def lookup(self, path: str, default: Any = UNDEFINED) -> Any:
        """Get a value from the variables map using dot notation."""
        return get_path(self.variables, path, default)

    def get_result(self, name: str, default: Any = UNDEFINED) -> Any:
        """Get a named block result."""
        return self.results.get(name, default)

    def record_result(self, name: str, value: Any) -> None:
        """Store a named block result under both results and variables."""
        self.results[name] = value
        self._written_results.add(name)
        self.set_variable(name, value)

    def get_trigger_field(self, path: str) -> Any:
        """Get a trigger payload field, following dotted paths."""
        return get_path(self.trigger_data, path)

    def record_error(self, message: str, block_kind: str) -> Dict[str, Any]:
        """Record the most recent block failure."""
        self.last_error = {
            "message": message,
            "blockKind": block_kind,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self._error_written = True
        return self.last_error

    # === Derivation ===

    def derive(self, **bindings: Any) -> "ExecutionContext":
        """Create a child context with extra (unmerged) variable bindings."""
        child = ExecutionContext(
            user_id=self.user_id,
            trigger_data=self.trigger_data,
            variables=self.variables,
            results=self.results,
        )
        child.last_error = self.last_error
        child.variables.update(bindings)
        child._bindings = set(bindings)
        return child

    def merge(self, child: "ExecutionContext") -> None:
        """Copy the writes of a derived context into this one."""
        for name in child._written_variables - child._bindings:
            self.variables[name] = child.variables[name]
            self._written_variables.add(name)

        for name in child._written_results:
            self.results[name] = child.results[name]
            self._written_results.add(name)

        if child._error_written:
            self.last_error = child.last_error
            self._error_written = True

    def __repr__(self) -> str:
        """String representation."""
        return f"ExecutionContext(user={self.user_id}, keys={list(self.variables.keys())})"
