"""
Plan — a validated, immutable DAG of actions and probes.

``build_plan`` is the only way to get a Plan: it rejects duplicate ids,
dependencies on unknown ids, and cycles before anything touches the
host. A Plan can be executed any number of times (dry-run, then real).
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from functools import cached_property

from provisioner.core.models.node import Node


class PlanError(Exception):
    """Raised when a plan cannot be built. Nothing has been executed."""


class DuplicateId(PlanError):
    def __init__(self, node_id: str):
        super().__init__(f"Duplicate node id: {node_id!r}")
        self.node_id = node_id


class DanglingDependency(PlanError):
    def __init__(self, node_id: str, missing: str):
        super().__init__(f"Node {node_id!r} depends on unknown node {missing!r}")
        self.node_id = node_id
        self.missing = missing


class CycleDetected(PlanError):
    """``cycle`` lists node ids where each depends on the next,
    and the last depends on the first."""

    def __init__(self, cycle: list[str]):
        path = " -> ".join([*cycle, cycle[0]]) if cycle else "?"
        super().__init__(f"Dependency cycle detected: {path}")
        self.cycle = cycle


class InvalidNode(PlanError):
    """A node definition failed validation (unknown kind, bad parameters)."""

    def __init__(self, node_id: str, detail: str):
        super().__init__(f"Invalid node {node_id!r}: {detail}")
        self.node_id = node_id
        self.detail = detail


class UnsupportedHost(PlanError):
    """No component variant matches the host facts."""

    def __init__(self, component: str, detail: str):
        super().__init__(f"Component {component!r} does not support this host: {detail}")
        self.component = component


@dataclass(frozen=True)
class Plan:
    """Validated DAG of nodes, kept in declaration order."""

    name: str
    nodes: tuple[Node, ...]

    # ── Lookups ─────────────────────────────────────────────────

    @cached_property
    def _index(self) -> dict[str, int]:
        return {node.id: i for i, node in enumerate(self.nodes)}

    @cached_property
    def _direct_dependents(self) -> dict[str, tuple[str, ...]]:
        dependents: dict[str, list[str]] = {node.id: [] for node in self.nodes}
        for node in self.nodes:
            for dep in node.depends_on:
                dependents[dep].append(node.id)
        return {k: tuple(v) for k, v in dependents.items()}

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(node.id for node in self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def get(self, node_id: str) -> Node:
        return self.nodes[self._index[node_id]]

    def index_of(self, node_id: str) -> int:
        """Declaration position, used to break ordering ties."""
        return self._index[node_id]

    def dependencies_of(self, node_id: str) -> tuple[str, ...]:
        return self.get(node_id).depends_on

    def direct_dependents(self, node_id: str) -> tuple[str, ...]:
        return self._direct_dependents[node_id]

    def dependents_of(self, node_id: str) -> list[str]:
        """All transitive dependents, in declaration order."""
        seen: set[str] = set()
        queue = deque(self._direct_dependents[node_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self._direct_dependents[current])
        return sorted(seen, key=self.index_of)

    # ── Graph views ─────────────────────────────────────────────

    def topological_order(self) -> list[str]:
        """Kahn's algorithm; ties resolved by declaration order."""
        in_degree = {node.id: len(node.depends_on) for node in self.nodes}
        ready = [nid for nid in self.ids if in_degree[nid] == 0]
        order: list[str] = []
        while ready:
            ready.sort(key=self.index_of)
            current = ready.pop(0)
            order.append(current)
            for successor in self._direct_dependents[current]:
                in_degree[successor] -= 1
                if in_degree[successor] == 0:
                    ready.append(successor)
        return order

    def goals(self) -> list[str]:
        """Required nodes that no other required node depends on."""
        goals = []
        for node in self.nodes:
            if not node.required:
                continue
            if any(self.get(d).required for d in self._direct_dependents[node.id]):
                continue
            goals.append(node.id)
        return goals

    def merge(self, *others: Plan, name: str | None = None) -> Plan:
        """Union of this plan and others, re-validated as one plan."""
        nodes: list[Node] = list(self.nodes)
        for other in others:
            nodes.extend(other.nodes)
        merged_name = name or "+".join([self.name, *(o.name for o in others)])
        return build_plan(nodes, name=merged_name)

    def describe(self) -> list[dict]:
        """Nodes in topological order, for display."""
        rows = []
        for node_id in self.topological_order():
            node = self.get(node_id)
            rows.append({
                "id": node.id,
                "type": node.node_type,
                "kind": node.kind.value,
                "depends_on": list(node.depends_on),
                "required": node.required,
                "description": node.description,
            })
        return rows


def build_plan(nodes: Iterable[Node], name: str = "plan") -> Plan:
    """Validate nodes and freeze them into a Plan.

    Raises:
        DuplicateId: Two nodes share an id.
        DanglingDependency: A ``depends_on`` entry names no node.
        CycleDetected: The dependency graph has a cycle.
    """
    node_list = list(nodes)

    seen: set[str] = set()
    for node in node_list:
        if node.id in seen:
            raise DuplicateId(node.id)
        seen.add(node.id)

    for node in node_list:
        for dep in node.depends_on:
            if dep not in seen:
                raise DanglingDependency(node.id, dep)

    cycle = _find_cycle(node_list)
    if cycle:
        raise CycleDetected(cycle)

    return Plan(name=name, nodes=tuple(node_list))


def _find_cycle(nodes: list[Node]) -> list[str]:
    """Return one dependency cycle, or an empty list if the graph is acyclic."""
    in_degree: dict[str, int] = {n.id: len(n.depends_on) for n in nodes}
    adj: dict[str, list[str]] = {n.id: [] for n in nodes}
    for n in nodes:
        for dep in n.depends_on:
            adj[dep].append(n.id)

    queue = deque(nid for nid, deg in in_degree.items() if deg == 0)
    while queue:
        current = queue.popleft()
        for successor in adj[current]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                queue.append(successor)

    remaining = {nid for nid, deg in in_degree.items() if deg > 0}
    if not remaining:
        return []

    # Every remaining node still has an unprocessed dependency,
    # so walking dependencies inside ``remaining`` must revisit a node.
    deps = {n.id: [d for d in n.depends_on if d in remaining] for n in nodes}
    start = next(n.id for n in nodes if n.id in remaining)
    path: list[str] = []
    position: dict[str, int] = {}
    current = start
    while current not in position:
        position[current] = len(path)
        path.append(current)
        current = deps[current][0]
    return path[position[current]:]
