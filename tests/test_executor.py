"""
Tests for the executor — ordering, skip-cascade, retries, probes,
dry-run, cancellation and dedupe.
"""

import threading

import pytest

from provisioner.core.engine.executor import (
    CancellationToken,
    ExecuteOptions,
    Executor,
    execute,
    generate_operation_id,
)
from provisioner.core.engine.plan import build_plan
from provisioner.core.engine.report import NodeStatus, OverallStatus, SkipReason
from provisioner.core.models.action import ActionFailed, ErrorKind
from provisioner.core.models.params import ActionKind
from provisioner.core.models.probe import Verdict
from provisioner.handlers.base import Handler
from provisioner.handlers.mock import MockHandler
from provisioner.handlers.registry import HandlerRegistry


def _statuses(report) -> dict[str, NodeStatus]:
    return {r.node_id: r.status for r in report.node_results}


class TestScenarios:
    def test_service_conflict_fails_and_skips_probe(self, action, probe, mock_registry, mock_handler, mock_probe):
        plan = build_plan([
            action("install"),
            action("start", "install"),
            probe("healthy", "start"),
        ], name="redis")
        mock_handler.set_failure("start", ErrorKind.CONFLICT, "port 6379 already in use")

        report = execute(plan, mock_registry)

        assert _statuses(report) == {
            "install": NodeStatus.SUCCEEDED,
            "start": NodeStatus.FAILED,
            "healthy": NodeStatus.SKIPPED,
        }
        start = report.result_for("start")
        assert start.error.kind == ErrorKind.CONFLICT
        assert "6379" in start.error.message
        healthy = report.result_for("healthy")
        assert healthy.skip_reason == SkipReason.DEPENDENCY_FAILED
        assert healthy.blocked_by == "start"
        assert report.overall_status == OverallStatus.FAILURE
        assert mock_probe.call_log == []

    def test_independent_branch_survives(self, action, mock_registry, mock_handler):
        prometheus = build_plan([
            action("prometheus/install"),
            action("prometheus/start", "prometheus/install"),
        ], name="prometheus")
        grafana = build_plan([
            action("grafana/install"),
            action("grafana/start", "grafana/install"),
        ], name="grafana")
        mock_handler.set_failure("grafana/install", ErrorKind.OPERATION_FAILED, "no such package")

        report = execute(prometheus.merge(grafana), mock_registry)

        assert report.status_of("prometheus/install") == NodeStatus.SUCCEEDED
        assert report.status_of("prometheus/start") == NodeStatus.SUCCEEDED
        assert report.status_of("grafana/install") == NodeStatus.FAILED
        assert report.status_of("grafana/start") == NodeStatus.SKIPPED
        assert report.overall_status == OverallStatus.PARTIAL_FAILURE
        assert mock_handler.calls_for("grafana/start") == 0

    def test_all_succeed(self, action, probe, mock_registry):
        plan = build_plan([action("install"), action("start", "install"), probe("healthy", "start")])
        report = execute(plan, mock_registry)
        assert report.ok
        assert report.overall_status == OverallStatus.SUCCESS
        assert report.succeeded == 3
        assert report.changed == 2

    def test_empty_plan_is_success(self, mock_registry):
        report = execute(build_plan([]), mock_registry)
        assert report.total == 0
        assert report.overall_status == OverallStatus.SUCCESS

    def test_optional_failure_keeps_success(self, action, mock_registry, mock_handler):
        plan = build_plan([
            action("install"),
            action("firewall", "install", required=False),
        ])
        mock_handler.set_failure("firewall", ErrorKind.PERMISSION_DENIED, "not root")
        report = execute(plan, mock_registry)
        assert report.status_of("firewall") == NodeStatus.FAILED
        assert report.overall_status == OverallStatus.SUCCESS


class TestOrdering:
    def test_no_node_starts_before_its_dependencies(self, action, probe, mock_registry):
        plan = build_plan([
            action("base"),
            action("left", "base"),
            action("right", "base"),
            action("join", "left", "right"),
            probe("healthy", "join"),
            action("solo"),
        ])
        events: list[tuple[str, NodeStatus]] = []
        lock = threading.Lock()

        def record(node_id, status):
            with lock:
                events.append((node_id, status))

        report = execute(plan, mock_registry, ExecuteOptions(concurrency=3, on_progress=record))
        assert report.ok

        for node in plan:
            started = events.index((node.id, NodeStatus.RUNNING))
            for dep in node.depends_on:
                assert events.index((dep, NodeStatus.SUCCEEDED)) < started

    def test_sequential_report_is_topological(self, action, mock_registry):
        plan = build_plan([
            action("start", "config"),
            action("config", "install"),
            action("install"),
        ])
        report = execute(plan, mock_registry)
        assert [r.node_id for r in report.node_results] == ["install", "config", "start"]

    def test_every_node_gets_exactly_one_result(self, action, mock_registry, mock_handler):
        plan = build_plan([action("a"), action("b", "a"), action("c", "b"), action("d")])
        mock_handler.set_failure("a")
        report = execute(plan, mock_registry, ExecuteOptions(concurrency=2))
        ids = [r.node_id for r in report.node_results]
        assert sorted(ids) == ["a", "b", "c", "d"]
        assert report.skipped == 2

    def test_cascade_lands_together(self, action, mock_registry, mock_handler):
        plan = build_plan([action("a"), action("b", "a"), action("c", "b"), action("d")])
        mock_handler.set_failure("a")
        report = execute(plan, mock_registry)
        ids = [r.node_id for r in report.node_results]
        # b and c are skipped in the same step as a fails, before d runs
        assert ids == ["a", "b", "c", "d"]
        assert report.result_for("c").blocked_by == "a"

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            ExecuteOptions(concurrency=0)

    def test_parallel_independent_nodes(self, action, mock_registry, mock_handler):
        plan = build_plan([action(f"n{i}") for i in range(8)])
        report = execute(plan, mock_registry, ExecuteOptions(concurrency=4))
        assert report.succeeded == 8
        assert sorted(mock_handler.applied_ids()) == sorted(plan.ids)


class TestRetries:
    def test_retryable_failure_is_retried(self, action, mock_registry, mock_handler, sleeps):
        plan = build_plan([action("install", retry={"max_retries": 3, "base_delay": 1})])
        mock_handler.set_failure("install", ErrorKind.DEPENDENCY_UNAVAILABLE, "mirror down", times=2)

        report = execute(plan, mock_registry, sleep=sleeps.append)

        result = report.result_for("install")
        assert result.status == NodeStatus.SUCCEEDED
        assert result.attempts == 3
        assert mock_handler.calls_for("install") == 3
        assert sleeps == [1.0, 2.0]

    def test_non_retryable_failure_is_not_retried(self, action, mock_registry, mock_handler, sleeps):
        plan = build_plan([action("start", retry={"max_retries": 3})])
        mock_handler.set_failure("start", ErrorKind.CONFLICT, "port busy")

        report = execute(plan, mock_registry, sleep=sleeps.append)

        result = report.result_for("start")
        assert result.status == NodeStatus.FAILED
        assert result.attempts == 1
        assert sleeps == []

    def test_retries_exhausted(self, action, mock_registry, mock_handler, sleeps):
        plan = build_plan([action("download", retry={"max_retries": 2, "backoff": "fixed", "base_delay": 5})])
        mock_handler.set_failure("download", ErrorKind.TIMEOUT, "timed out")

        report = execute(plan, mock_registry, sleep=sleeps.append)

        result = report.result_for("download")
        assert result.status == NodeStatus.FAILED
        assert result.error.kind == ErrorKind.TIMEOUT
        assert result.attempts == 3
        assert sleeps == [5.0, 5.0]

    def test_no_retry_policy_means_one_attempt(self, action, mock_registry, mock_handler, sleeps):
        plan = build_plan([action("install")])
        mock_handler.set_failure("install", ErrorKind.DEPENDENCY_UNAVAILABLE, times=1)
        report = execute(plan, mock_registry, sleep=sleeps.append)
        assert report.result_for("install").failed
        assert mock_handler.calls_for("install") == 1


class TestProbes:
    def test_probe_polls_until_healthy(self, action, probe, mock_registry, mock_probe, sleeps):
        plan = build_plan([action("start"), probe("healthy", "start", max_attempts=5, interval=0.5)])
        mock_probe.set_verdicts("healthy", Verdict.UNHEALTHY, Verdict.UNKNOWN, Verdict.HEALTHY)

        report = execute(plan, mock_registry, sleep=sleeps.append)

        result = report.result_for("healthy")
        assert result.status == NodeStatus.SUCCEEDED
        assert result.attempts == 3
        assert result.output["verdict"] == "healthy"
        assert sleeps == [0.5, 0.5]

    def test_probe_timeout(self, probe, mock_registry, mock_probe, sleeps):
        plan = build_plan([probe("healthy", max_attempts=3, interval=2)])
        mock_probe.set_verdicts("healthy", Verdict.UNHEALTHY)

        report = execute(plan, mock_registry, sleep=sleeps.append)

        result = report.result_for("healthy")
        assert result.status == NodeStatus.FAILED
        assert result.error.kind == ErrorKind.PROBE_TIMEOUT
        assert result.output["verdict"] == "unhealthy"
        assert mock_probe.calls_for("healthy") == 3
        assert sleeps == [2.0, 2.0]
        assert report.overall_status == OverallStatus.FAILURE

    def test_probe_never_changes(self, probe, mock_registry):
        report = execute(build_plan([probe("healthy")]), mock_registry)
        assert report.result_for("healthy").changed is False
        assert report.changed == 0


class TestDryRun:
    def _plan(self, action, probe):
        return build_plan([
            action("install"),
            action("config", "install"),
            action("start", "config"),
            probe("healthy", "start"),
        ])

    def test_dry_run_has_no_side_effects(self, action, probe, mock_registry, mock_handler):
        report = execute(self._plan(action, probe), mock_registry, ExecuteOptions(dry_run=True))
        assert report.dry_run
        assert mock_handler.call_count == 0
        assert all(r.output.get("dry_run") for r in report.node_results)

    def test_predictions_match_real_run(self, action, probe, mock_registry, mock_handler):
        plan = self._plan(action, probe)
        mock_handler.set_satisfied("install")

        predicted = execute(plan, mock_registry, ExecuteOptions(dry_run=True))
        real = execute(plan, mock_registry)

        assert {r.node_id: r.changed for r in predicted.node_results} == {
            r.node_id: r.changed for r in real.node_results
        }
        assert predicted.result_for("install").changed is False
        assert predicted.result_for("start").changed is True
        assert mock_handler.applied_ids() == ["config", "start"]

    def test_second_real_run_changes_nothing(self, action, probe, mock_registry):
        plan = self._plan(action, probe)
        first = execute(plan, mock_registry)
        second = execute(plan, mock_registry)
        assert first.changed == 3
        assert second.changed == 0
        assert second.ok

    def test_dry_run_probe_evaluated_once(self, probe, mock_registry, mock_probe):
        plan = build_plan([probe("healthy", max_attempts=5)])
        mock_probe.set_verdicts("healthy", Verdict.UNHEALTHY)
        report = execute(plan, mock_registry, ExecuteOptions(dry_run=True))
        result = report.result_for("healthy")
        assert result.status == NodeStatus.SUCCEEDED
        assert result.output["verdict"] == "unhealthy"
        assert mock_probe.calls_for("healthy") == 1


class TestCancellation:
    def test_cancel_skips_nodes_not_started(self, action, mock_registry, mock_handler):
        plan = build_plan([action("a"), action("b", "a"), action("c")])
        token = CancellationToken()

        def on_progress(node_id, status):
            if node_id == "a" and status == NodeStatus.SUCCEEDED:
                token.cancel()

        report = execute(plan, mock_registry, ExecuteOptions(cancellation=token, on_progress=on_progress))

        assert report.cancelled
        assert report.status_of("a") == NodeStatus.SUCCEEDED
        for node_id in ("b", "c"):
            result = report.result_for(node_id)
            assert result.status == NodeStatus.SKIPPED
            assert result.skip_reason == SkipReason.CANCELLED
        assert mock_handler.applied_ids() == ["a"]

    def test_cancel_before_start(self, action, mock_registry, mock_handler):
        token = CancellationToken()
        token.cancel()
        report = execute(build_plan([action("a")]), mock_registry, ExecuteOptions(cancellation=token))
        assert report.status_of("a") == NodeStatus.SKIPPED
        assert mock_handler.call_count == 0

    def test_cancel_stops_retries(self, action, mock_registry, mock_handler):
        plan = build_plan([action("install", retry={"max_retries": 5})])
        mock_handler.set_failure("install", ErrorKind.DEPENDENCY_UNAVAILABLE)
        token = CancellationToken()

        report = execute(
            plan, mock_registry, ExecuteOptions(cancellation=token),
            sleep=lambda delay: token.cancel(),
        )

        assert report.result_for("install").failed
        assert mock_handler.calls_for("install") == 1

    def test_running_node_finishes_after_cancel(self, action):
        token = CancellationToken()

        class CancelledMidway(MockHandler):
            def change(self, context):
                if context.action.id == "install":
                    token.cancel()
                    threading.Event().wait(0.2)
                return super().change(context)

        handler = CancelledMidway()
        registry = HandlerRegistry()
        registry.set_mock_mode(True, mock_handler=handler)
        plan = build_plan([action("install"), action("repo"), action("config", "install")])

        report = execute(plan, registry, ExecuteOptions(concurrency=2, cancellation=token))

        assert report.cancelled
        assert report.status_of("install") == NodeStatus.SUCCEEDED
        assert report.result_for("install").changed
        assert report.result_for("config").skip_reason == SkipReason.CANCELLED
        assert handler.calls_for("config") == 0

    def test_token_wait_returns_early(self):
        token = CancellationToken()
        token.cancel()
        assert token.wait(10) is True
        assert token.cancelled


class TestDedupe:
    def test_identical_change_applied_once(self, action, mock_registry, mock_handler):
        params = {"command": "yum install -y epel-release", "unless": "rpm -q epel-release"}
        plan = build_plan([
            action("redis/epel", parameters=params),
            action("nginx/epel", parameters=params),
        ])

        report = execute(plan, mock_registry, ExecuteOptions(concurrency=2))

        assert mock_handler.applied_ids() == ["redis/epel"]
        duplicate = report.result_for("nginx/epel")
        assert duplicate.status == NodeStatus.SUCCEEDED
        assert duplicate.changed is False
        assert duplicate.output["duplicate_of"] == "redis/epel"

    def test_failed_change_is_not_deduped(self, action, mock_registry, mock_handler):
        params = {"command": "install thing", "creates": "/opt/thing"}
        plan = build_plan([
            action("first", parameters=params),
            action("second", parameters=params),
        ])
        mock_handler.set_failure("first", times=1)
        report = execute(plan, mock_registry)
        assert report.status_of("first") == NodeStatus.FAILED
        assert report.status_of("second") == NodeStatus.SUCCEEDED
        assert mock_handler.calls_for("second") == 1


class _ExplodingHandler(Handler):
    kind = ActionKind.SHELL

    def check(self, context):
        return True

    def change(self, context):
        raise RuntimeError("boom")


class _FailingHandler(Handler):
    kind = ActionKind.SHELL

    def check(self, context):
        return True

    def change(self, context):
        raise ActionFailed(ErrorKind.PERMISSION_DENIED, "sudo: a password is required", exit_code=1)


class TestHandlerErrors:
    def test_unexpected_exception_becomes_failure(self, action):
        registry = HandlerRegistry()
        registry.register(_ExplodingHandler())
        report = Executor(registry).execute(build_plan([action("a"), action("b", "a")]))
        result = report.result_for("a")
        assert result.error.kind == ErrorKind.UNEXPECTED
        assert "boom" in result.error.message
        assert report.status_of("b") == NodeStatus.SKIPPED

    def test_classified_failure_keeps_details(self, action):
        registry = HandlerRegistry()
        registry.register(_FailingHandler())
        report = Executor(registry).execute(build_plan([action("a")]))
        result = report.result_for("a")
        assert result.error.kind == ErrorKind.PERMISSION_DENIED
        assert result.output["exit_code"] == 1

    def test_missing_handler(self, action):
        report = Executor(HandlerRegistry()).execute(build_plan([action("a")]))
        assert report.result_for("a").error.kind == ErrorKind.OPERATION_FAILED

    def test_unchanged_result(self, action):
        class Satisfied(_ExplodingHandler):
            def check(self, context):
                return False

        registry = HandlerRegistry()
        registry.register(Satisfied())
        report = Executor(registry).execute(build_plan([action("a")]))
        assert report.result_for("a").succeeded
        assert report.result_for("a").changed is False


class TestReport:
    def test_operation_id_format(self):
        op_id = generate_operation_id()
        assert op_id.startswith("op-")
        assert len(op_id.split("-")) == 4

    def test_to_dict(self, action, mock_registry, mock_handler):
        mock_handler.set_failure("b", ErrorKind.CONFLICT, "busy")
        report = execute(build_plan([action("a"), action("b", "a"), action("c", "b")]), mock_registry)
        data = report.to_dict()
        assert data["overallStatus"] == "failure"
        assert data["total"] == 3
        assert data["goals"] == ["c"]
        nodes = {n["nodeId"]: n for n in data["nodeResults"]}
        assert nodes["b"]["error"] == {"kind": "conflict", "message": "busy"}
        assert nodes["c"]["skipReason"] == "dependency_failed"
        assert nodes["c"]["blockedBy"] == "b"
        assert nodes["a"]["durationMs"] >= 0
