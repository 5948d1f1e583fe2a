"""
Conatus Execution History

History tracking for workflow executions.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from conatus.automation.types import ExecutionOutcome, OutcomeStatus, to_jsonable

logger = structlog.get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class ExecutionRecord:
    """A historical execution record."""
    workflow_id: str
    user_id: str
    status: OutcomeStatus
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    workflow_version: int = 1

    # Data
    trigger_data: Dict[str, Any] = field(default_factory=dict)
    final_result: Any = None
    error: Optional[str] = None
    last_error: Optional[Dict[str, Any]] = None

    # Timestamps
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds() * 1000
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "workflow_version": self.workflow_version,
            "user_id": self.user_id,
            "status": self.status.value,
            "trigger_data": to_jsonable(self.trigger_data),
            "final_result": to_jsonable(self.final_result),
            "error": self.error,
            "last_error": self.last_error,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionRecord":
        """Create from dictionary."""
        record = cls(
            id=data["id"],
            workflow_id=data["workflow_id"],
            workflow_version=data.get("workflow_version", 1),
            user_id=data.get("user_id", ""),
            status=OutcomeStatus(data.get("status", "success")),
            trigger_data=data.get("trigger_data", {}),
            final_result=data.get("final_result"),
            error=data.get("error"),
            last_error=data.get("last_error"),
        )

        if data.get("started_at"):
            record.started_at = datetime.fromisoformat(data["started_at"])
        if data.get("completed_at"):
            record.completed_at = datetime.fromisoformat(data["completed_at"])

        return record


class ExecutionHistory:
    """
    Keeps one record per workflow run.

    Features:
    - Filtered listing (user, workflow, status), newest first
    - Per-workflow statistics
    - Bounded retention (oldest records dropped first)
    """

    def __init__(self, max_records: int = 10000):
        self.max_records = max_records

        self._history: Dict[str, ExecutionRecord] = {}
        self._by_workflow: Dict[str, List[str]] = defaultdict(list)
        self._by_user: Dict[str, List[str]] = defaultdict(list)

        self._lock = asyncio.Lock()

    # === History Operations ===

    async def record(
        self,
        workflow_id: str,
        user_id: str,
        outcome: ExecutionOutcome,
        started_at: datetime,
        completed_at: Optional[datetime] = None,
        trigger_data: Optional[Dict[str, Any]] = None,
        workflow_version: int = 1,
    ) -> ExecutionRecord:
        """Record a finished execution."""
        async with self._lock:
            record = ExecutionRecord(
                workflow_id=workflow_id,
                workflow_version=workflow_version,
                user_id=user_id,
                status=outcome.status,
                trigger_data=dict(trigger_data or {}),
                final_result=outcome.final_result,
                error=outcome.error,
                last_error=outcome.last_error,
                started_at=started_at,
                completed_at=completed_at or datetime.now(timezone.utc),
            )

            self._history[record.id] = record
            self._by_workflow[workflow_id].append(record.id)
            self._by_user[user_id].append(record.id)

            self._enforce_limits()

        logger.debug(
            "execution_recorded",
            execution_id=record.id,
            workflow_id=workflow_id,
            status=record.status.value,
        )
        return record

    async def get(self, execution_id: str) -> Optional[ExecutionRecord]:
        """Get a history record by ID."""
        return self._history.get(execution_id)

    async def list(
        self,
        user_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        status: Optional[OutcomeStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[ExecutionRecord]:
        """List history records with filters, newest first."""
        if workflow_id:
            record_ids = self._by_workflow.get(workflow_id, [])
        elif user_id:
            record_ids = self._by_user.get(user_id, [])
        else:
            record_ids = list(self._history.keys())

        records = [self._history[rid] for rid in reversed(record_ids) if rid in self._history]

        if user_id:
            records = [r for r in records if r.user_id == user_id]
        if status:
            records = [r for r in records if r.status == OutcomeStatus(status)]

        # stable sort: equal start times stay newest-recorded first
        records.sort(key=lambda r: r.started_at or _EPOCH, reverse=True)

        return records[offset:offset + limit]

    async def delete(self, execution_id: str) -> bool:
        """Delete a history record."""
        async with self._lock:
            return self._remove(execution_id)

    # === Analytics ===

    async def get_workflow_stats(self, workflow_id: str) -> Dict[str, Any]:
        """Get statistics for a workflow."""
        records = await self.list(workflow_id=workflow_id, limit=self.max_records)

        if not records:
            return {
                "total_executions": 0,
                "success_rate": 0.0,
                "avg_duration_ms": 0.0,
            }

        total = len(records)
        succeeded = len([r for r in records if r.status == OutcomeStatus.SUCCESS])
        failed = len([r for r in records if r.status == OutcomeStatus.FAILURE])
        durations = [r.duration_ms for r in records]

        return {
            "total_executions": total,
            "succeeded": succeeded,
            "failed": failed,
            "success_rate": succeeded / total,
            "avg_duration_ms": sum(durations) / len(durations),
        }

    # === Retention ===

    def _remove(self, execution_id: str) -> bool:
        record = self._history.pop(execution_id, None)
        if not record:
            return False

        if execution_id in self._by_workflow.get(record.workflow_id, []):
            self._by_workflow[record.workflow_id].remove(execution_id)
        if execution_id in self._by_user.get(record.user_id, []):
            self._by_user[record.user_id].remove(execution_id)

        return True

    def _enforce_limits(self) -> None:
        """Drop the oldest records beyond ``max_records``."""
        excess = len(self._history) - self.max_records
        if excess <= 0:
            return

        # dicts keep insertion order, so the first keys are the oldest records
        for rid in list(self._history.keys())[:excess]:
            self._remove(rid)

        logger.debug("history_trimmed", removed=excess)
