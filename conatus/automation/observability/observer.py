"""
Conatus Execution Observer

Default telemetry hooks for the block executor and workflow engine.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict

import structlog

from conatus.automation.types import ActionSpec, InitStep, LogicBlock

logger = structlog.get_logger(__name__)


class LoggingObserver:
    """
    Execution observer that emits structured log events.

    Also keeps simple in-process counters (blocks started, failed, actions
    dispatched per service) that callers can read through ``get_stats``.
    """

    def __init__(self):
        self._counters: Counter = Counter()

    def on_block_start(self, block: LogicBlock, depth: int) -> None:
        self._counters["blocks_started"] += 1
        logger.debug("block_started", block_kind=block.block_kind, depth=depth)

    def on_block_end(self, block: LogicBlock, result: Any) -> None:
        self._counters["blocks_completed"] += 1
        logger.debug(
            "block_completed",
            block_kind=block.block_kind,
            result_name=block.result_name,
        )

    def on_block_error(self, block: LogicBlock, error: BaseException) -> None:
        self._counters["blocks_failed"] += 1
        logger.warning(
            "block_failed",
            block_kind=block.block_kind,
            error_handling=block.error_handling.value,
            error=str(error),
            error_type=type(error).__name__,
        )

    def on_action_dispatch(self, action: ActionSpec, user_id: str) -> None:
        self._counters["actions_dispatched"] += 1
        self._counters[f"actions.{action.service_id}"] += 1
        logger.info(
            "action_dispatched",
            service_id=action.service_id,
            action_type=action.action_type,
            user_id=user_id,
        )

    def on_init_step_failure(self, step: InitStep, error: BaseException) -> None:
        self._counters["init_steps_failed"] += 1
        logger.warning(
            "init_step_failed",
            step_type=step.KIND,
            variable=getattr(step, "name", None),
            error=str(error),
        )

    def get_stats(self) -> Dict[str, int]:
        """Get observer counters."""
        return dict(self._counters)
