"""
Conatus Workflow Registry

Storage and retrieval of workflow definitions.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import structlog

from conatus.automation.errors import InvalidWorkflowError, WorkflowNotFoundError
from conatus.automation.types import WorkflowDefinition

logger = structlog.get_logger(__name__)


@dataclass
class WorkflowStats:
    """Execution bookkeeping for one workflow."""
    execution_count: int = 0
    last_executed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "execution_count": self.execution_count,
            "last_executed_at": self.last_executed_at.isoformat() if self.last_executed_at else None,
        }


class WorkflowRegistry:
    """
    Registry for workflow definitions.

    Features:
    - Versioned storage: saving an existing id stores a new frozen version
    - Query by owner and enabled state
    - Enable/disable
    - Execution count and last-executed tracking
    """

    def __init__(self):
        self._versions: Dict[str, List[WorkflowDefinition]] = {}
        self._by_owner: Dict[str, List[str]] = defaultdict(list)
        self._stats: Dict[str, WorkflowStats] = defaultdict(WorkflowStats)
        self._lock = asyncio.Lock()

    # === Workflow Operations ===

    async def save(self, workflow: Union[WorkflowDefinition, Dict[str, Any]]) -> WorkflowDefinition:
        """Validate and store a workflow, returning the stored version."""
        if isinstance(workflow, dict):
            workflow = WorkflowDefinition.from_dict(workflow)

        errors = workflow.validate()
        if errors:
            raise InvalidWorkflowError(errors)

        async with self._lock:
            versions = self._versions.get(workflow.id)
            is_new = not versions

            if is_new:
                stored = workflow
                self._versions[workflow.id] = [stored]
                if workflow.owner_id:
                    self._by_owner[workflow.owner_id].append(workflow.id)
            else:
                current = versions[-1]
                if workflow.owner_id != current.owner_id:
                    raise InvalidWorkflowError([f"Workflow {workflow.id} belongs to another user"])
                stored = dataclasses.replace(workflow, version=current.version + 1)
                versions.append(stored)

        logger.info(
            "workflow_saved",
            workflow_id=stored.id,
            version=stored.version,
            is_new=is_new,
        )
        return stored

    async def get(self, workflow_id: str, version: Optional[int] = None) -> Optional[WorkflowDefinition]:
        """Get the latest (or a specific) version of a workflow."""
        versions = self._versions.get(workflow_id)
        if not versions:
            return None
        if version is None:
            return versions[-1]
        for workflow in versions:
            if workflow.version == version:
                return workflow
        return None

    async def get_versions(self, workflow_id: str) -> List[WorkflowDefinition]:
        """Get every stored version, oldest first."""
        return list(self._versions.get(workflow_id, []))

    async def delete(self, workflow_id: str) -> bool:
        """Delete a workflow and all of its versions."""
        async with self._lock:
            versions = self._versions.pop(workflow_id, None)
            if not versions:
                return False

            owner_id = versions[-1].owner_id
            if workflow_id in self._by_owner.get(owner_id, []):
                self._by_owner[owner_id].remove(workflow_id)
            self._stats.pop(workflow_id, None)

        logger.info("workflow_deleted", workflow_id=workflow_id)
        return True

    async def list(
        self,
        owner_id: Optional[str] = None,
        enabled: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[WorkflowDefinition]:
        """List latest versions with filters."""
        if owner_id is not None:
            workflow_ids = list(self._by_owner.get(owner_id, []))
        else:
            workflow_ids = list(self._versions.keys())

        workflows = [self._versions[wid][-1] for wid in workflow_ids if wid in self._versions]

        if enabled is not None:
            workflows = [w for w in workflows if w.enabled == enabled]

        return workflows[offset:offset + limit]

    async def set_enabled(self, workflow_id: str, enabled: bool) -> WorkflowDefinition:
        """Enable or disable the current version of a workflow."""
        async with self._lock:
            versions = self._versions.get(workflow_id)
            if not versions:
                raise WorkflowNotFoundError(workflow_id)

            versions[-1] = dataclasses.replace(versions[-1], enabled=enabled)

        logger.info("workflow_enabled_changed", workflow_id=workflow_id, enabled=enabled)
        return versions[-1]

    # === Execution bookkeeping ===

    async def record_execution(
        self,
        workflow_id: str,
        executed_at: Optional[datetime] = None,
    ) -> WorkflowStats:
        """Increment the execution count and stamp the last execution."""
        async with self._lock:
            stats = self._stats[workflow_id]
            stats.execution_count += 1
            stats.last_executed_at = executed_at or datetime.now(timezone.utc)
            return stats

    async def get_stats(self, workflow_id: str) -> WorkflowStats:
        """Get execution bookkeeping for a workflow."""
        return self._stats.get(workflow_id) or WorkflowStats()

    async def count(self, owner_id: Optional[str] = None) -> int:
        """Count workflows."""
        if owner_id is not None:
            return len(self._by_owner.get(owner_id, []))
        return len(self._versions)
