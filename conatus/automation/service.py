"""
Conatus Automation Service

Runs saved workflows on demand or when their contextual trigger fires.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import structlog

from conatus.automation.engine import WorkflowEngine
from conatus.automation.errors import (
    AutomationError,
    WorkflowDisabledError,
    WorkflowNotFoundError,
)
from conatus.automation.execution.history import ExecutionHistory, ExecutionRecord
from conatus.automation.registry import WorkflowRegistry
from conatus.automation.triggers.evaluator import TriggerEvaluator
from conatus.automation.types import ContextSnapshot, ExecutionOutcome, OutcomeStatus

logger = structlog.get_logger(__name__)


class AutomationService:
    """
    Entry point for running a user's saved automations.

    Ties together the registry (definitions and counters), the engine,
    the trigger evaluator and the execution history.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        registry: Optional[WorkflowRegistry] = None,
        triggers: Optional[TriggerEvaluator] = None,
        history: Optional[ExecutionHistory] = None,
    ):
        self.engine = engine
        self.registry = registry or WorkflowRegistry()
        self.triggers = triggers or TriggerEvaluator()
        self.history = history or ExecutionHistory(
            max_records=engine.config.history_max_records,
        )

    async def run_configured(
        self,
        workflow_id: str,
        trigger_data: Optional[Mapping[str, Any]],
        user_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionOutcome:
        """
        Run a saved workflow for its owner.

        Raises:
            WorkflowNotFoundError: unknown id, or the workflow belongs to someone else
            WorkflowDisabledError: the workflow is disabled
        """
        workflow = await self.registry.get(workflow_id)
        if workflow is None or workflow.owner_id != user_id:
            raise WorkflowNotFoundError(workflow_id)

        if not workflow.enabled:
            raise WorkflowDisabledError(workflow_id)

        started_at = datetime.now(timezone.utc)
        outcome = await self.engine.run(workflow, trigger_data, user_id, cancel_event=cancel_event)
        completed_at = datetime.now(timezone.utc)

        await self.history.record(
            workflow_id=workflow.id,
            workflow_version=workflow.version,
            user_id=user_id,
            outcome=outcome,
            started_at=started_at,
            completed_at=completed_at,
            trigger_data=dict(trigger_data or {}),
        )
        await self.registry.record_execution(workflow.id, completed_at)

        logger.info(
            "automation_executed",
            workflow_id=workflow.id,
            user_id=user_id,
            status=outcome.status.value,
        )
        return outcome

    async def handle_context(
        self,
        user_id: str,
        snapshot: ContextSnapshot,
    ) -> Dict[str, ExecutionOutcome]:
        """
        Run every enabled workflow of the user whose trigger fires.

        Triggers are evaluated one by one (location edges update shared
        flags); the fired workflows then run concurrently. A workflow that
        was disabled or deleted after listing is logged and left out.

        Returns:
            Outcomes keyed by workflow id
        """
        workflows = await self.registry.list(owner_id=user_id, enabled=True)

        fired = []
        for workflow in workflows:
            if workflow.trigger is None:
                continue
            if await self.triggers.evaluate(workflow.trigger, snapshot, user_id):
                fired.append(workflow)

        if not fired:
            return {}

        logger.info(
            "automations_triggered",
            user_id=user_id,
            workflow_ids=[w.id for w in fired],
        )

        trigger_data = snapshot.to_dict()
        outcomes = await asyncio.gather(
            *(self.run_configured(w.id, trigger_data, user_id) for w in fired),
            return_exceptions=True,
        )

        results: Dict[str, ExecutionOutcome] = {}
        failed: Dict[str, BaseException] = {}
        for workflow, outcome in zip(fired, outcomes):
            if isinstance(outcome, BaseException):
                failed[workflow.id] = outcome
            else:
                results[workflow.id] = outcome

        if failed:
            logger.warning(
                "triggered_automations_not_run",
                user_id=user_id,
                errors={wid: str(e) for wid, e in failed.items()},
            )
            # Stale definitions are skipped; anything else is a real fault
            for error in failed.values():
                if not isinstance(error, AutomationError):
                    raise error

        return results

    async def get_execution_history(
        self,
        user_id: str,
        workflow_id: Optional[str] = None,
        status: Optional[OutcomeStatus] = None,
        limit: int = 20,
    ) -> List[ExecutionRecord]:
        """List the user's past runs, newest first."""
        return await self.history.list(
            user_id=user_id,
            workflow_id=workflow_id,
            status=status,
            limit=limit,
        )
