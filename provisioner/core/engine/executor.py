"""
Engine executor — walks a Plan and produces a Report.

Flow:
    ready nodes → mark running → worker pool → registry → complete → ...

The scheduling loop is the only place nodes are submitted; workers only
call the handler registry and build a NodeResult. Every status change
goes through ``ExecutionState``, which applies the skip-cascade when a
node fails. Node failures never raise out of ``execute``: the caller
always gets a Report.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from provisioner.core.engine.plan import Plan
from provisioner.core.engine.report import NodeResult, NodeStatus, Report, SkipReason
from provisioner.core.engine.state import ExecutionState
from provisioner.core.models.action import Action, ActionError, ActionResult, ErrorKind
from provisioner.core.models.facts import HostFacts
from provisioner.core.models.node import Node, is_action
from provisioner.core.models.probe import Probe, Verdict

if TYPE_CHECKING:
    from provisioner.handlers.registry import HandlerRegistry

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation for one run.

    Nodes already running finish; nothing new starts (including retry
    attempts and probe polls) once ``cancel()`` has been called.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns early if cancelled."""
        return self._event.wait(timeout)


@dataclass
class ExecuteOptions:
    """Knobs for one execution."""

    concurrency: int = 1
    dry_run: bool = False
    cancellation: CancellationToken | None = None
    facts: HostFacts = field(default_factory=HostFacts)
    on_progress: Callable[[str, NodeStatus], None] | None = None

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"


class Executor:
    """Runs plans through a handler registry.

    Args:
        registry: Dispatches actions and probes to handlers.
        sleep: Called with a delay in seconds between retry attempts
            and probe polls. Defaults to waiting on the cancellation
            token, so a cancel cuts the wait short.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        sleep: Callable[[float], Any] | None = None,
    ):
        self._registry = registry
        self._sleep = sleep

    def execute(self, plan: Plan, options: ExecuteOptions | None = None) -> Report:
        options = options or ExecuteOptions()
        token = options.cancellation or CancellationToken()
        state = ExecutionState(plan)

        started = datetime.now(UTC)
        start_time = time.monotonic()
        report = Report(
            operation_id=generate_operation_id(),
            plan_name=plan.name,
            dry_run=options.dry_run,
            started_at=started.isoformat(),
            goals=plan.goals(),
        )
        logger.info(
            "Executing plan %s (%d nodes, concurrency=%d%s) as %s",
            plan.name, len(plan), options.concurrency,
            ", dry-run" if options.dry_run else "", report.operation_id,
        )

        running: dict[Future[NodeResult], tuple[Node, str | None]] = {}
        in_flight: set[str] = set()

        with ThreadPoolExecutor(
            max_workers=options.concurrency,
            thread_name_prefix="provisioner",
        ) as pool:
            while True:
                if not token.cancelled:
                    for node_id in state.ready_nodes():
                        if len(running) >= options.concurrency:
                            break
                        node = plan.get(node_id)
                        key = node.idempotency_key if is_action(node) else None
                        # Same change already in flight: wait for it, then dedupe.
                        if key and key in in_flight:
                            continue
                        state.mark_running(node_id)
                        self._notify(options, node_id, NodeStatus.RUNNING)
                        future = pool.submit(self._run_node, node, state, options, token)
                        running[future] = (node, key)
                        if key:
                            in_flight.add(key)

                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: plan.index_of(running[f][0].id)):
                    node, key = running.pop(future)
                    if key:
                        in_flight.discard(key)
                    result = future.result()
                    skipped = state.complete(result, idempotency_key=key)
                    self._log_result(result)
                    self._notify(options, node.id, result.status)
                    for skipped_id in skipped:
                        self._notify(options, skipped_id, NodeStatus.SKIPPED)

        if token.cancelled:
            skipped = state.skip_pending(SkipReason.CANCELLED)
            if skipped:
                logger.warning("Run cancelled; %d node(s) not started: %s", len(skipped), skipped)
            for skipped_id in skipped:
                self._notify(options, skipped_id, NodeStatus.SKIPPED)

        report.cancelled = token.cancelled
        report.node_results = state.ordered_results()
        report.ended_at = datetime.now(UTC).isoformat()
        report.duration_ms = int((time.monotonic() - start_time) * 1000)

        logger.info(
            "Plan %s finished: %s (%d succeeded, %d failed, %d skipped, %d changed)",
            plan.name, report.overall_status.value, report.succeeded,
            report.failed, report.skipped, report.changed,
        )
        return report

    # ── Node execution (worker threads) ─────────────────────────

    def _run_node(
        self,
        node: Node,
        state: ExecutionState,
        options: ExecuteOptions,
        token: CancellationToken,
    ) -> NodeResult:
        start_time = time.monotonic()
        try:
            if is_action(node):
                result = self._run_action(node, state, options, token)
            else:
                result = self._run_probe(node, options, token)
        except Exception as e:
            logger.error("Node %s raised during execution: %s", node.id, e)
            result = NodeResult(
                node_id=node.id,
                node_type=node.node_type,
                kind=node.kind.value,
                status=NodeStatus.FAILED,
                error=ActionError(kind=ErrorKind.UNEXPECTED, message=f"Unexpected error: {e}"),
                attempts=1,
            )
        result.duration_ms = int((time.monotonic() - start_time) * 1000)
        return result

    def _run_action(
        self,
        action: Action,
        state: ExecutionState,
        options: ExecuteOptions,
        token: CancellationToken,
    ) -> NodeResult:
        duplicate_of = state.applied_by(action.idempotency_key)
        if duplicate_of:
            logger.info("Node %s: same change already applied by %s", action.id, duplicate_of)
            return self._action_result(
                action,
                ActionResult.unchanged(f"already applied by {duplicate_of}"),
                attempts=0,
                extra={"duplicate_of": duplicate_of},
            )

        if options.dry_run:
            prediction = self._registry.predict(action, options.facts)
            return self._action_result(action, prediction, attempts=1, extra={"dry_run": True})

        policy = action.retry
        attempts = 0
        while True:
            attempts += 1
            logger.debug("Node %s: attempt %d/%d", action.id, attempts, policy.max_attempts)
            result = self._registry.apply(action, options.facts)
            if result.ok or not result.error.retryable:
                break
            if attempts >= policy.max_attempts or token.cancelled:
                break
            delay = policy.delay_for(attempts)
            logger.warning(
                "Node %s failed (%s: %s), retrying in %.1fs (attempt %d/%d)",
                action.id, result.error.kind.value, result.error.message,
                delay, attempts + 1, policy.max_attempts,
            )
            self._pause(delay, token)
            if token.cancelled:
                break
        return self._action_result(action, result, attempts=attempts)

    def _run_probe(
        self,
        probe: Probe,
        options: ExecuteOptions,
        token: CancellationToken,
    ) -> NodeResult:
        if options.dry_run:
            verdict = self._registry.evaluate(probe, options.facts)
            return NodeResult(
                node_id=probe.id,
                node_type=probe.node_type,
                kind=probe.kind.value,
                status=NodeStatus.SUCCEEDED,
                output={"verdict": verdict.verdict.value, "detail": verdict.detail, "dry_run": True},
                attempts=1,
            )

        attempts = 0
        verdict = None
        while attempts < probe.max_attempts:
            attempts += 1
            verdict = self._registry.evaluate(probe, options.facts)
            logger.debug(
                "Probe %s attempt %d/%d: %s", probe.id, attempts, probe.max_attempts, verdict.verdict,
            )
            if verdict.verdict == Verdict.HEALTHY:
                return NodeResult(
                    node_id=probe.id,
                    node_type=probe.node_type,
                    kind=probe.kind.value,
                    status=NodeStatus.SUCCEEDED,
                    output={"verdict": verdict.verdict.value, "detail": verdict.detail},
                    attempts=attempts,
                )
            if attempts >= probe.max_attempts or token.cancelled:
                break
            self._pause(probe.interval, token)
            if token.cancelled:
                break

        last = verdict.verdict.value if verdict else Verdict.UNKNOWN.value
        detail = verdict.detail if verdict else ""
        return NodeResult(
            node_id=probe.id,
            node_type=probe.node_type,
            kind=probe.kind.value,
            status=NodeStatus.FAILED,
            output={"verdict": last, "detail": detail},
            error=ActionError(
                kind=ErrorKind.PROBE_TIMEOUT,
                message=f"not healthy after {attempts} attempt(s): {last}"
                + (f" ({detail})" if detail else ""),
            ),
            attempts=attempts,
        )

    # ── Helpers ─────────────────────────────────────────────────

    def _pause(self, delay: float, token: CancellationToken) -> None:
        if delay <= 0:
            return
        if self._sleep is not None:
            self._sleep(delay)
        else:
            token.wait(delay)

    @staticmethod
    def _action_result(
        action: Action,
        result: ActionResult,
        attempts: int,
        extra: dict[str, Any] | None = None,
    ) -> NodeResult:
        output: dict[str, Any] = {"message": result.output}
        if result.stdout:
            output["stdout"] = result.stdout
        if result.stderr:
            output["stderr"] = result.stderr
        if result.exit_code is not None:
            output["exit_code"] = result.exit_code
        if result.metadata:
            output["metadata"] = result.metadata
        if extra:
            output.update(extra)
        return NodeResult(
            node_id=action.id,
            node_type=action.node_type,
            kind=action.kind.value,
            status=NodeStatus.SUCCEEDED if result.ok else NodeStatus.FAILED,
            changed=result.ok and result.changed,
            output=output,
            error=result.error,
            attempts=attempts,
        )

    @staticmethod
    def _log_result(result: NodeResult) -> None:
        if result.failed and result.error:
            logger.error(
                "Node %s failed after %d attempt(s): %s: %s",
                result.node_id, result.attempts, result.error.kind.value, result.error.message,
            )
        else:
            logger.info(
                "Node %s %s%s (%dms)",
                result.node_id, result.status.value,
                ", changed" if result.changed else "", result.duration_ms,
            )

    @staticmethod
    def _notify(options: ExecuteOptions, node_id: str, status: NodeStatus) -> None:
        if options.on_progress is None:
            return
        try:
            options.on_progress(node_id, status)
        except Exception as e:
            logger.debug("Progress callback failed for %s: %s", node_id, e)


def execute(
    plan: Plan,
    registry: HandlerRegistry,
    options: ExecuteOptions | None = None,
    sleep: Callable[[float], Any] | None = None,
) -> Report:
    """Execute ``plan`` through ``registry`` and return its Report."""
    return Executor(registry, sleep=sleep).execute(plan, options)
