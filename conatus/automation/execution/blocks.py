"""
Conatus Block Executor

Tree-walking interpreter for workflow logic blocks.
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence, TYPE_CHECKING

import structlog

from conatus.automation.errors import (
    BlockExecutionError,
    MaxDepthExceededError,
    UnknownBlockKindError,
)
from conatus.automation.types import (
    ActionBlock,
    ActionSpec,
    BranchFailure,
    ConditionalBlock,
    ErrorHandling,
    LogicBlock,
    LoopBlock,
    ParallelBlock,
    ReturnBlock,
    SetVariableBlock,
)
from conatus.automation.conditions.evaluator import ConditionEvaluator
from conatus.automation.execution.resolver import ValueResolver

if TYPE_CHECKING:
    from conatus.automation.actions.dispatcher import ActionDispatcher
    from conatus.automation.execution.context import ExecutionContext
    from conatus.automation.interfaces import ExecutionObserver

logger = structlog.get_logger(__name__)


class WorkflowReturn(Exception):
    """
    Internal signal that ends the whole execution with a value.

    Raised by return blocks and by the ``returnEarly`` error policy. It is
    never subject to block error policies.
    """

    def __init__(self, value: Any):
        self.value = value
        super().__init__("workflow return")


class BlockExecutor:
    """
    Executes lists of logic blocks.

    Each pass walks its list once, carrying a single result slot:
    1. Skip the block when its condition is false
    2. Execute it by kind
    3. Store the result under ``result_name`` (results and variables)
    4. Stop this list when the block is terminal

    Failures are recorded as ``last_error`` and handled by the block's
    ``error_handling`` policy.
    """

    def __init__(
        self,
        dispatcher: "ActionDispatcher",
        resolver: Optional[ValueResolver] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        observer: Optional["ExecutionObserver"] = None,
        max_depth: int = 64,
        max_parallel: Optional[int] = None,
    ):
        self.dispatcher = dispatcher
        self.resolver = resolver or ValueResolver()
        self.evaluator = evaluator or ConditionEvaluator(self.resolver)
        self.observer = observer
        self.max_depth = max_depth
        self.max_parallel = max_parallel

    async def execute(
        self,
        blocks: Sequence[LogicBlock],
        context: "ExecutionContext",
        depth: int = 0,
    ) -> Any:
        """
        Execute a list of blocks.

        Args:
            blocks: Blocks to execute in order
            context: Execution context
            depth: Nesting depth of this pass

        Returns:
            Result of the last executed block (None if none ran)
        """
        if depth > self.max_depth:
            raise MaxDepthExceededError(self.max_depth)

        result = None

        for block in blocks:
            try:
                if not self.evaluator.evaluate(block.condition, context):
                    logger.debug("block_skipped", block_kind=block.block_kind, depth=depth)
                    continue

                if self.observer:
                    self.observer.on_block_start(block, depth)

                result = await self._execute_block(block, context, depth)

            except WorkflowReturn:
                raise

            except Exception as e:
                self._handle_error(block, e, context)
                continue

            if block.result_name:
                context.record_result(block.result_name, result)

            if self.observer:
                self.observer.on_block_end(block, result)

            if block.terminal:
                break

        return result

    async def _execute_block(
        self,
        block: LogicBlock,
        context: "ExecutionContext",
        depth: int,
    ) -> Any:
        """Execute a single block."""
        if isinstance(block, ActionBlock):
            return await self.dispatcher.dispatch(block.action, context)

        if isinstance(block, ConditionalBlock):
            if self.evaluator.evaluate(block.if_condition, context):
                return await self.execute(block.then_blocks, context, depth + 1)
            if block.else_blocks is not None:
                return await self.execute(block.else_blocks, context, depth + 1)
            return None

        if isinstance(block, LoopBlock):
            return await self._execute_loop(block, context, depth)

        if isinstance(block, ParallelBlock):
            return await self._execute_parallel(block, context)

        if isinstance(block, SetVariableBlock):
            value = self.resolver.resolve(block.value, context)
            context.set_variable(block.name, value)
            return value

        if isinstance(block, ReturnBlock):
            raise WorkflowReturn(self.resolver.resolve(block.value, context))

        raise UnknownBlockKindError(block.block_kind)

    async def _execute_loop(
        self,
        block: LoopBlock,
        context: "ExecutionContext",
        depth: int,
    ) -> List[Any]:
        """Execute a loop body once per item, sequentially."""
        items = self.resolver.resolve(block.items, context)
        if not isinstance(items, (list, tuple)):
            logger.debug("loop_items_not_sequence", item_type=type(items).__name__)
            return []

        results: List[Any] = []
        for index, item in enumerate(items):
            child = context.derive(**{block.item_var: item, block.index_var: index})
            try:
                results.append(await self.execute(block.body, child, depth + 1))
            finally:
                context.merge(child)

        return results

    async def _execute_parallel(
        self,
        block: ParallelBlock,
        context: "ExecutionContext",
    ) -> List[Any]:
        """Dispatch every action concurrently and join them all."""
        semaphore = asyncio.Semaphore(self.max_parallel) if self.max_parallel else None

        async def run_branch(action: ActionSpec) -> Any:
            branch = context.derive()
            if semaphore is None:
                return await self.dispatcher.dispatch(action, branch)
            async with semaphore:
                return await self.dispatcher.dispatch(action, branch)

        outcomes = await asyncio.gather(
            *(run_branch(action) for action in block.actions),
            return_exceptions=True,
        )

        results: List[Any] = []
        first_failure: Optional[BaseException] = None
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                first_failure = first_failure or outcome
                results.append(BranchFailure(str(outcome), type(outcome).__name__))
            else:
                results.append(outcome)

        if first_failure is None:
            return results

        message = str(first_failure)
        context.record_error(message, block.block_kind)
        logger.warning(
            "parallel_branch_failed",
            failed=sum(isinstance(r, BranchFailure) for r in results),
            total=len(results),
            error=message,
        )

        # propagate is reported once, by _handle_error
        if self.observer and block.error_handling != ErrorHandling.PROPAGATE:
            self.observer.on_block_error(block, first_failure)

        if block.error_handling == ErrorHandling.CONTINUE:
            return results

        if block.error_handling == ErrorHandling.RETURN_EARLY:
            raise WorkflowReturn({"error": message})

        raise BlockExecutionError(message, block.block_kind, cause=first_failure) from first_failure

    def _handle_error(
        self,
        block: LogicBlock,
        error: Exception,
        context: "ExecutionContext",
    ) -> None:
        """Apply the block's error policy; returns only under ``continue``."""
        if isinstance(error, BlockExecutionError):
            # Already recorded by the innermost failing block
            message, block_kind = error.message, error.block_kind
        else:
            message, block_kind = str(error), block.block_kind
            context.record_error(message, block_kind)

        if self.observer:
            self.observer.on_block_error(block, error)

        logger.debug(
            "block_error_handled",
            block_kind=block.block_kind,
            failed_kind=block_kind,
            policy=block.error_handling.value,
        )

        if block.error_handling == ErrorHandling.CONTINUE:
            return

        if block.error_handling == ErrorHandling.RETURN_EARLY:
            raise WorkflowReturn({"error": message})

        if isinstance(error, BlockExecutionError):
            raise error

        raise BlockExecutionError(message, block_kind, cause=error) from error
