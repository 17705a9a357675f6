"""
ExecutionState — per-run node statuses, owned by one executor run.

Worker threads and the scheduling loop share this object, so every
transition happens under a single lock. Completion order is recorded
as a tick counter; a skip-cascade lands on one tick, and ties are
broken by declaration order when the report is assembled.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from provisioner.core.engine.plan import Plan
from provisioner.core.engine.report import NodeResult, NodeStatus, SkipReason

logger = logging.getLogger(__name__)


class ExecutionState:
    """Status table for one run of a plan."""

    def __init__(self, plan: Plan):
        self._plan = plan
        self._lock = threading.Lock()
        self._status: dict[str, NodeStatus] = {nid: NodeStatus.PENDING for nid in plan.ids}
        self._results: dict[str, NodeResult] = {}
        self._completed_at: dict[str, int] = {}
        self._tick = 0
        self._applied_keys: dict[str, str] = {}

    # ── Reads ───────────────────────────────────────────────────

    def status_of(self, node_id: str) -> NodeStatus:
        with self._lock:
            return self._status[node_id]

    def output_of(self, node_id: str) -> dict[str, Any]:
        with self._lock:
            result = self._results.get(node_id)
            return dict(result.output) if result else {}

    def snapshot(self) -> dict[str, NodeStatus]:
        """Consistent copy of every node's status."""
        with self._lock:
            return dict(self._status)

    def ready_nodes(self) -> list[str]:
        """Pending nodes whose dependencies have all succeeded."""
        with self._lock:
            return [
                node.id
                for node in self._plan.nodes
                if self._status[node.id] == NodeStatus.PENDING
                and all(self._status[d] == NodeStatus.SUCCEEDED for d in node.depends_on)
            ]

    def count(self, status: NodeStatus) -> int:
        with self._lock:
            return sum(1 for s in self._status.values() if s == status)

    @property
    def finished(self) -> bool:
        with self._lock:
            return all(s.terminal for s in self._status.values())

    def applied_by(self, idempotency_key: str) -> str | None:
        """Id of a node in this run that already applied the same change."""
        with self._lock:
            return self._applied_keys.get(idempotency_key)

    # ── Transitions ─────────────────────────────────────────────

    def mark_running(self, node_id: str) -> None:
        with self._lock:
            if self._status[node_id] != NodeStatus.PENDING:
                raise RuntimeError(f"Node {node_id!r} is {self._status[node_id]}, not pending")
            for dep in self._plan.dependencies_of(node_id):
                if self._status[dep] != NodeStatus.SUCCEEDED:
                    raise RuntimeError(
                        f"Node {node_id!r} cannot start: dependency {dep!r} is {self._status[dep]}"
                    )
            self._status[node_id] = NodeStatus.RUNNING

    def complete(
        self,
        result: NodeResult,
        idempotency_key: str | None = None,
    ) -> list[str]:
        """Record a running node's final result.

        On failure, every transitive dependent still pending is marked
        skipped in the same tick. Returns the ids that were skipped.
        """
        node_id = result.node_id
        with self._lock:
            if self._status[node_id] != NodeStatus.RUNNING:
                raise RuntimeError(f"Node {node_id!r} is {self._status[node_id]}, not running")
            self._tick += 1
            self._record(result)
            if result.succeeded and idempotency_key:
                self._applied_keys.setdefault(idempotency_key, node_id)
            if not result.failed:
                return []

            skipped = []
            for dependent in self._plan.dependents_of(node_id):
                if self._status[dependent] != NodeStatus.PENDING:
                    continue
                self._record(self._skip_result(dependent, SkipReason.DEPENDENCY_FAILED, node_id))
                skipped.append(dependent)
        if skipped:
            logger.info("Skipping %d node(s) blocked by %s: %s", len(skipped), node_id, skipped)
        return skipped

    def skip_pending(self, reason: SkipReason) -> list[str]:
        """Mark every pending node skipped (used on cancellation)."""
        with self._lock:
            self._tick += 1
            skipped = [nid for nid in self._plan.ids if self._status[nid] == NodeStatus.PENDING]
            for nid in skipped:
                self._record(self._skip_result(nid, reason, None))
        return skipped

    # ── Results ─────────────────────────────────────────────────

    def ordered_results(self) -> list[NodeResult]:
        """Final results by completion tick, ties in declaration order."""
        with self._lock:
            ids = sorted(
                self._results,
                key=lambda nid: (self._completed_at[nid], self._plan.index_of(nid)),
            )
            return [self._results[nid] for nid in ids]

    def _record(self, result: NodeResult) -> None:
        self._status[result.node_id] = result.status
        self._results[result.node_id] = result
        self._completed_at[result.node_id] = self._tick

    def _skip_result(self, node_id: str, reason: SkipReason, blocked_by: str | None) -> NodeResult:
        node = self._plan.get(node_id)
        return NodeResult(
            node_id=node_id,
            node_type=node.node_type,
            kind=node.kind.value,
            status=NodeStatus.SKIPPED,
            skip_reason=reason,
            blocked_by=blocked_by,
        )
