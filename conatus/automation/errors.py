"""
Conatus Automation Errors

Exception taxonomy for workflow execution.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class AutomationError(Exception):
    """Base class for all automation errors."""


# === Action dispatch ===


class ActionError(AutomationError):
    """Raised when an action cannot be dispatched or fails in its connector."""

    def __init__(self, message: str, service_id: Optional[str] = None):
        self.service_id = service_id
        super().__init__(message)


class UnknownServiceError(ActionError):
    """Raised when no connector is registered for a service."""

    def __init__(self, service_id: str):
        super().__init__(f"Unknown service connector: {service_id}", service_id)


class NoCredentialError(ActionError):
    """Raised when the user never connected the target service."""

    def __init__(self, user_id: str, service_id: str):
        self.user_id = user_id
        super().__init__(
            f"No active connection found for service: {service_id}",
            service_id,
        )


class UnsupportedActionError(ActionError):
    """Raised when a connector exposes no method for the requested action."""

    def __init__(self, service_id: str, action_type: str):
        self.action_type = action_type
        super().__init__(
            f"Service {service_id} does not support action: {action_type}",
            service_id,
        )


class ConnectorError(ActionError):
    """Wraps a failure raised by a connector."""

    def __init__(
        self,
        message: str,
        service_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.cause = cause
        super().__init__(message, service_id)


class ActionTimeoutError(ConnectorError):
    """Raised when a connector or credential call exceeds its timeout."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Action on {service_id} timed out after {timeout}s",
            service_id,
        )


# === Transformations ===


class TransformError(AutomationError):
    """Raised when the model-assisted transform fails."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class TransformTimeoutError(TransformError):
    """Raised when the model-assisted transform exceeds its timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Transform timed out after {timeout}s")


# === Interpretation ===


class UnknownConditionKindError(AutomationError):
    """Raised when a condition carries an unrecognised type tag."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unknown condition type: {kind}")


class UnknownBlockKindError(AutomationError):
    """Raised when a logic block carries an unrecognised type tag."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unknown logic block type: {kind}")


class MaxDepthExceededError(AutomationError):
    """Raised when nested blocks exceed the configured depth."""

    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        super().__init__(f"Maximum block nesting depth of {max_depth} exceeded")


class BlockExecutionError(AutomationError):
    """
    Raised when a block fails under the ``propagate`` policy.

    Carries the kind of the innermost failing block so callers can point at
    the exact automation step.
    """

    def __init__(
        self,
        message: str,
        block_kind: str,
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.block_kind = block_kind
        self.cause = cause
        super().__init__(message)


# === Workflow management ===


class WorkflowNotFoundError(AutomationError):
    """Raised when a saved workflow does not exist for the user."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Automation not found: {workflow_id}")


class WorkflowDisabledError(AutomationError):
    """Raised when running a disabled workflow."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Automation is disabled: {workflow_id}")


class InvalidWorkflowError(AutomationError):
    """Raised when a workflow definition fails validation."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Invalid workflow: {', '.join(errors)}")


def describe_error(error: BaseException) -> Dict[str, Any]:
    """Summarise an exception for logs and failure markers."""
    return {"error": str(error), "error_type": type(error).__name__}
