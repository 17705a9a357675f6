"""
Mock handler — test double for every action and probe kind.

Used in mock mode to exercise plans without touching the host.
Behaves like a real idempotent handler by default: the first apply of
an action reports ``changed=True``, later ones ``changed=False``.
Failures, "already satisfied" nodes and probe verdict sequences are
configurable per node id.
"""

from __future__ import annotations

import threading
from collections import deque

from provisioner.core.models.action import ActionFailed, ActionResult, ErrorKind
from provisioner.core.models.params import ActionKind, ProbeKind
from provisioner.core.models.probe import ProbeResult, Verdict
from provisioner.handlers.base import ExecutionContext, Handler, ProbeChecker, ProbeContext


class MockHandler(Handler):
    """Universal mock handler for testing.

    Thread-safe: the executor may call it from several workers.
    """

    def __init__(self, kind: ActionKind = ActionKind.SHELL, default_output: str = "[mock] applied"):
        self._kind = kind
        self._default_output = default_output
        self._lock = threading.Lock()
        self._failures: dict[str, deque[tuple[ErrorKind, str]]] = {}
        self._persistent_failures: dict[str, tuple[ErrorKind, str]] = {}
        self._satisfied: set[str] = set()
        self._call_log: list[ExecutionContext] = []

    @property
    def kind(self) -> ActionKind:
        return self._kind

    @property
    def call_log(self) -> list[ExecutionContext]:
        """Contexts of every apply (not check) this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def applied_ids(self) -> list[str]:
        """Node ids in the order they were applied."""
        return [c.action.id for c in self._call_log]

    def calls_for(self, node_id: str) -> int:
        return sum(1 for c in self._call_log if c.action.id == node_id)

    def set_failure(
        self,
        node_id: str,
        kind: ErrorKind = ErrorKind.OPERATION_FAILED,
        message: str = "Mock failure",
        times: int | None = None,
    ) -> None:
        """Make a node fail: always, or for the next ``times`` applies."""
        with self._lock:
            if times is None:
                self._persistent_failures[node_id] = (kind, message)
            else:
                self._failures[node_id] = deque([(kind, message)] * times)

    def set_satisfied(self, node_id: str) -> None:
        """Treat a node as already in its desired state."""
        with self._lock:
            self._satisfied.add(node_id)

    def check(self, context: ExecutionContext) -> bool:
        with self._lock:
            return context.action.id not in self._satisfied

    def change(self, context: ExecutionContext) -> ActionResult:
        node_id = context.action.id
        with self._lock:
            self._call_log.append(context)
            queued = self._failures.get(node_id)
            if queued:
                kind, message = queued.popleft()
                raise ActionFailed(kind, message)
            if node_id in self._persistent_failures:
                kind, message = self._persistent_failures[node_id]
                raise ActionFailed(kind, message)
            self._satisfied.add(node_id)
        return ActionResult.success(changed=True, output=self._default_output)

    def reset(self) -> None:
        """Clear call log and configured behaviour."""
        with self._lock:
            self._call_log.clear()
            self._failures.clear()
            self._persistent_failures.clear()
            self._satisfied.clear()


class MockProbe(ProbeChecker):
    """Mock probe checker: healthy unless told otherwise.

    ``set_verdicts`` queues verdicts for a probe id; once the queue is
    drained the last verdict repeats.
    """

    def __init__(self, kind: ProbeKind = ProbeKind.COMMAND):
        self._kind = kind
        self._lock = threading.Lock()
        self._verdicts: dict[str, deque[Verdict]] = {}
        self._last: dict[str, Verdict] = {}
        self._call_log: list[str] = []

    @property
    def kind(self) -> ProbeKind:
        return self._kind

    @property
    def call_log(self) -> list[str]:
        return self._call_log

    def calls_for(self, probe_id: str) -> int:
        return self._call_log.count(probe_id)

    def set_verdicts(self, probe_id: str, *verdicts: Verdict) -> None:
        with self._lock:
            self._verdicts[probe_id] = deque(verdicts)
            self._last.pop(probe_id, None)

    def evaluate(self, context: ProbeContext) -> ProbeResult:
        probe_id = context.probe.id
        with self._lock:
            self._call_log.append(probe_id)
            queued = self._verdicts.get(probe_id)
            if queued:
                verdict = queued.popleft()
                self._last[probe_id] = verdict
            else:
                verdict = self._last.get(probe_id, Verdict.HEALTHY)
        return ProbeResult(verdict=verdict, detail=f"[mock] {verdict.value}")
