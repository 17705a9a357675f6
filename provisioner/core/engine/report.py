"""
Report — the structured outcome of one plan execution.

Pure data: per-node results in completion order plus an overall
status. ``to_dict()`` is the machine-readable form consumed by the
CLI ``--json`` output, the audit ledger and automation callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from provisioner.core.models.action import ActionError


class NodeStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.SKIPPED)


class SkipReason(StrEnum):
    DEPENDENCY_FAILED = "dependency_failed"
    CANCELLED = "cancelled"


class OverallStatus(StrEnum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"


class NodeResult(BaseModel):
    """Final outcome of one node."""

    model_config = ConfigDict(populate_by_name=True)

    node_id: str = Field(serialization_alias="nodeId")
    node_type: str = Field(default="action", serialization_alias="nodeType")
    kind: str = ""
    status: NodeStatus
    changed: bool = False
    duration_ms: int = Field(default=0, serialization_alias="durationMs")
    output: dict[str, Any] = Field(default_factory=dict)
    error: ActionError | None = None
    skip_reason: SkipReason | None = Field(default=None, serialization_alias="skipReason")
    blocked_by: str | None = Field(default=None, serialization_alias="blockedBy")
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == NodeStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == NodeStatus.FAILED

    @property
    def skipped(self) -> bool:
        return self.status == NodeStatus.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class Report:
    """Result of executing a plan."""

    operation_id: str = ""
    plan_name: str = ""
    dry_run: bool = False
    cancelled: bool = False
    started_at: str = ""
    ended_at: str = ""
    duration_ms: int = 0
    node_results: list[NodeResult] = field(default_factory=list)
    goals: list[str] = field(default_factory=list)

    # ── Lookups ─────────────────────────────────────────────────

    def result_for(self, node_id: str) -> NodeResult | None:
        for result in self.node_results:
            if result.node_id == node_id:
                return result
        return None

    def status_of(self, node_id: str) -> NodeStatus | None:
        result = self.result_for(node_id)
        return result.status if result else None

    # ── Counts ──────────────────────────────────────────────────

    @property
    def total(self) -> int:
        return len(self.node_results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.node_results if r.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.node_results if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.node_results if r.skipped)

    @property
    def changed(self) -> int:
        return sum(1 for r in self.node_results if r.changed)

    # ── Status ──────────────────────────────────────────────────

    @property
    def overall_status(self) -> OverallStatus:
        """success if every goal succeeded, failure if none did,
        partial_failure otherwise. A plan without goals is a success."""
        if not self.goals:
            return OverallStatus.SUCCESS
        reached = sum(1 for g in self.goals if self.status_of(g) == NodeStatus.SUCCEEDED)
        if reached == len(self.goals):
            return OverallStatus.SUCCESS
        if reached == 0:
            return OverallStatus.FAILURE
        return OverallStatus.PARTIAL_FAILURE

    @property
    def ok(self) -> bool:
        return self.overall_status == OverallStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "operationId": self.operation_id,
            "plan": self.plan_name,
            "dryRun": self.dry_run,
            "cancelled": self.cancelled,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "durationMs": self.duration_ms,
            "overallStatus": self.overall_status.value,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "changed": self.changed,
            "goals": list(self.goals),
            "nodeResults": [r.to_dict() for r in self.node_results],
        }
