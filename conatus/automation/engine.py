"""
Conatus Workflow Engine

Main execution engine for workflows.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Dict, Mapping, Optional

import structlog

from conatus.core.config import AutomationConfig, get_config
from conatus.automation.errors import AutomationError, BlockExecutionError
from conatus.automation.types import (
    ExecutionOutcome,
    ExtractFromTriggerStep,
    InitStep,
    ModelQueryStep,
    OutcomeStatus,
    SetLiteralStep,
    TransformStep,
    UNDEFINED,
    WorkflowDefinition,
)
from conatus.automation.actions.dispatcher import ActionDispatcher
from conatus.automation.conditions.evaluator import ConditionEvaluator
from conatus.automation.execution.blocks import BlockExecutor, WorkflowReturn
from conatus.automation.execution.context import ExecutionContext
from conatus.automation.execution.functions import render_text
from conatus.automation.execution.paths import get_path
from conatus.automation.execution.resolver import ValueResolver
from conatus.automation.interfaces import (
    ConnectorRegistry,
    CredentialProvider,
    ExecutionObserver,
    QueryRouter,
)
from conatus.automation.observability.observer import LoggingObserver
from conatus.automation.transforms.engine import TransformationEngine

logger = structlog.get_logger(__name__)


class WorkflowEngine:
    """
    Main workflow execution engine.

    Features:
    - Initialization steps (literals, trigger extraction, transforms, model queries)
    - Logic block interpretation with per-block error policies
    - Parallel action fan-out
    - Cooperative cancellation
    - Injected execution observer

    Each ``run`` starts from a fresh context, so concurrent runs never share
    mutable state.
    """

    def __init__(
        self,
        connectors: ConnectorRegistry,
        credentials: CredentialProvider,
        query_router: Optional[QueryRouter] = None,
        observer: Optional[ExecutionObserver] = None,
        config: Optional[AutomationConfig] = None,
    ):
        self.config = config or get_config().automation
        self.query_router = query_router
        self.observer = observer or LoggingObserver()

        # Components
        self.resolver = ValueResolver()
        self.evaluator = ConditionEvaluator(self.resolver)
        self.transforms = TransformationEngine(
            query_router=query_router,
            resolver=self.resolver,
            evaluator=self.evaluator,
            timeout=self.config.transform_timeout_seconds,
        )
        self.dispatcher = ActionDispatcher(
            connectors=connectors,
            credentials=credentials,
            resolver=self.resolver,
            observer=self.observer,
            action_timeout=self.config.action_timeout_seconds,
            credential_timeout=self.config.credential_timeout_seconds,
        )
        self.executor = BlockExecutor(
            dispatcher=self.dispatcher,
            resolver=self.resolver,
            evaluator=self.evaluator,
            observer=self.observer,
            max_depth=self.config.max_block_depth,
            max_parallel=self.config.max_parallel_actions,
        )

    # === Execution ===

    async def run(
        self,
        workflow: WorkflowDefinition,
        trigger_data: Optional[Mapping[str, Any]],
        user_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionOutcome:
        """
        Execute a workflow.

        Args:
            workflow: Workflow definition
            trigger_data: Payload of whatever fired the workflow
            user_id: User the workflow runs for
            cancel_event: Setting this event cancels the run

        Returns:
            Execution outcome
        """
        if cancel_event is not None and cancel_event.is_set():
            return self._cancelled(workflow)

        context = ExecutionContext(user_id=user_id, trigger_data=trigger_data or {})

        logger.info(
            "execution_started",
            workflow_id=workflow.id,
            workflow_version=workflow.version,
            user_id=user_id,
        )

        task = asyncio.create_task(self._execute(workflow, context))

        if cancel_event is None:
            try:
                return await task
            except asyncio.CancelledError:
                task.cancel()
                raise

        waiter = asyncio.create_task(cancel_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

        return self._cancelled(workflow)

    async def _execute(
        self,
        workflow: WorkflowDefinition,
        context: ExecutionContext,
    ) -> ExecutionOutcome:
        """Run initialization steps, then the logic blocks."""
        await self._initialize(workflow, context)

        try:
            final_result = await self.executor.execute(workflow.logic, context)

        except WorkflowReturn as r:
            final_result = r.value
            logger.debug("execution_returned", workflow_id=workflow.id)

        except BlockExecutionError as e:
            logger.error(
                "workflow_execution_failed",
                workflow_id=workflow.id,
                block_kind=e.block_kind,
                error=e.message,
            )
            return ExecutionOutcome(
                status=OutcomeStatus.FAILURE,
                results=context.results,
                variables=context.variables,
                error=e.message,
                last_error=context.last_error,
            )

        logger.info(
            "execution_completed",
            workflow_id=workflow.id,
            results=len(context.results),
        )

        return ExecutionOutcome(
            status=OutcomeStatus.SUCCESS,
            results=context.results,
            variables=context.variables,
            final_result=final_result,
            last_error=context.last_error,
        )

    def _cancelled(self, workflow: WorkflowDefinition) -> ExecutionOutcome:
        logger.info("execution_cancelled", workflow_id=workflow.id)
        return ExecutionOutcome(status=OutcomeStatus.CANCELLED)

    # === Initialization ===

    async def _initialize(
        self,
        workflow: WorkflowDefinition,
        context: ExecutionContext,
    ) -> None:
        """Bind initial variables; a failing step is reported and skipped."""
        for step in workflow.initialization:
            try:
                value = await self._run_init_step(step, context)
                context.set_variable(step.name, value)

            except Exception as e:
                logger.warning(
                    "init_step_error",
                    workflow_id=workflow.id,
                    step_type=step.KIND,
                    error=str(e),
                )
                if self.observer:
                    self.observer.on_init_step_failure(step, e)

    async def _run_init_step(self, step: InitStep, context: ExecutionContext) -> Any:
        if isinstance(step, SetLiteralStep):
            return self.resolver.resolve(step.value, context)

        if isinstance(step, ExtractFromTriggerStep):
            if step.json_path:
                value = get_path(context.trigger_data, step.json_path)
            elif step.source:
                value = context.get_trigger_field(step.source)
            else:
                value = UNDEFINED
            return None if value is UNDEFINED else value

        if isinstance(step, TransformStep):
            data = self.resolver.resolve(step.input, context)
            return await self.transforms.apply(data, step.transformation, context)

        if isinstance(step, ModelQueryStep):
            return await self._query_model(step, context)

        raise AutomationError(f"Unknown initialization step type: {step.kind}")

    async def _query_model(self, step: ModelQueryStep, context: ExecutionContext) -> str:
        if self.query_router is None:
            raise AutomationError("No query router configured for llm_generation")

        prompt = render_text(self.resolver.resolve(step.prompt, context))
        response = await asyncio.wait_for(
            self.query_router.query(prompt, provider=step.provider),
            timeout=self.config.query_timeout_seconds,
        )
        return (response or {}).get("content", "")

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        stats: Dict[str, Any] = {
            "max_block_depth": self.executor.max_depth,
            "max_parallel_actions": self.executor.max_parallel,
        }
        if hasattr(self.observer, "get_stats"):
            stats["observer"] = self.observer.get_stats()
        return stats
