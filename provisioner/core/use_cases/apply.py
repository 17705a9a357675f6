"""
Apply use case — build, execute and record a provisioning run.

The full vertical slice: settings → components → facts → plan →
executor → report → state file + audit ledger.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from provisioner.core.engine.executor import CancellationToken, ExecuteOptions, Executor
from provisioner.core.engine.plan import Plan
from provisioner.core.engine.report import NodeStatus, OverallStatus, Report
from provisioner.core.models.facts import HostFacts
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.state_file import load_state, save_state, state_path
from provisioner.core.use_cases.plan import build_plan_for
from provisioner.handlers.registry import HandlerRegistry, default_registry

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Result of an apply (or dry-run)."""

    report: Report | None = None
    plan: Plan | None = None
    versions: dict[str, str] | None = None
    state_saved: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.ok

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        result: dict = {"versions": self.versions or {}, "stateSaved": self.state_saved}
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def component_status(report: Report, component: str) -> OverallStatus:
    """Overall status restricted to one component's goals."""
    prefix = f"{component}/"
    goals = [g for g in report.goals if g.startswith(prefix)]
    reached = sum(1 for g in goals if report.status_of(g) == NodeStatus.SUCCEEDED)
    if reached == len(goals):
        return OverallStatus.SUCCESS
    if reached == 0:
        return OverallStatus.FAILURE
    return OverallStatus.PARTIAL_FAILURE


def run_apply(
    names: list[str],
    config_path: Path | None = None,
    dry_run: bool = False,
    concurrency: int | None = None,
    version: str | None = None,
    mock_mode: bool = False,
    save: bool = True,
    registry: HandlerRegistry | None = None,
    facts: HostFacts | None = None,
    cancellation: CancellationToken | None = None,
    on_progress: Callable[[str, NodeStatus], Any] | None = None,
    sleep: Callable[[float], Any] | None = None,
) -> ApplyResult:
    """Provision the named components on this host.

    Args:
        names: Components to apply.
        config_path: Optional explicit provisioner.yml.
        dry_run: Predict changes without making them.
        concurrency: Worker count; defaults to the settings value.
        version: Version override for a single component.
        mock_mode: Route every action and probe to a mock.
        save: Write the state file and audit ledger (never for dry-runs).
        registry: Pre-configured handler registry (tests).
        facts: Host facts; gathered if None.
        cancellation: Token the caller can use to stop the run.
        on_progress: Called with (node_id, status) as nodes move.
        sleep: Injected delay function for retries and probe polling.
    """
    result = ApplyResult()

    planned = build_plan_for(names, config_path=config_path, version=version, facts=facts)
    if planned.error:
        result.error = planned.error
        return result
    assert planned.plan is not None and planned.settings is not None and planned.facts is not None

    result.plan = planned.plan
    result.versions = planned.versions
    settings = planned.settings

    if registry is None:
        registry = default_registry(mock_mode=mock_mode)

    try:
        options = ExecuteOptions(
            concurrency=concurrency or settings.concurrency,
            dry_run=dry_run,
            cancellation=cancellation,
            facts=planned.facts,
            on_progress=on_progress,
        )
    except ValueError as e:
        result.error = str(e)
        return result

    report = Executor(registry, sleep=sleep).execute(planned.plan, options)
    result.report = report

    if dry_run or not save:
        return result

    # ── Persist state ────────────────────────────────────────────
    path = state_path(settings.state_path)
    state = load_state(path)
    state.host = planned.facts.model_dump(mode="json", exclude={"installed"})
    op = state.last_operation
    op.operation_id = report.operation_id
    op.plan_name = report.plan_name
    op.started_at = report.started_at
    op.ended_at = report.ended_at
    op.status = report.overall_status.value
    op.cancelled = report.cancelled
    op.nodes_total = report.total
    op.nodes_succeeded = report.succeeded
    op.nodes_failed = report.failed
    op.nodes_skipped = report.skipped

    for spec in planned.components:
        prefix = f"{spec.name}/"
        state.set_component_state(
            spec.name,
            version=planned.versions.get(spec.name),
            last_applied_at=report.ended_at,
            last_status=component_status(report, spec.name).value,
            nodes_changed=sum(1 for r in report.node_results if r.changed and r.node_id.startswith(prefix)),
        )

    try:
        save_state(state, path)
        result.state_saved = True
    except OSError as e:
        logger.error("Run finished but state could not be saved: %s", e)

    # ── Write audit log ──────────────────────────────────────────
    AuditWriter(state_dir=settings.state_path).write(
        AuditEntry.from_report(
            report,
            [c.name for c in planned.components],
            versions=planned.versions,
            mock=registry.mock_mode,
        )
    )
    return result
