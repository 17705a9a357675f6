"""
Planner — turn component specs and host facts into a Plan.

For each component:

    select variant → substitute ${vars} → qualify ids → validate nodes

then everything is handed to ``build_plan`` in one go, so a node in one
component may depend on another component's node by its qualified id
(``prometheus/healthy``).
"""

from __future__ import annotations

import logging
from string import Template
from typing import Any

from pydantic import ValidationError

from provisioner.core.engine.plan import InvalidNode, Plan, UnsupportedHost, build_plan
from provisioner.core.models.component import ComponentSpec
from provisioner.core.models.facts import HostFacts
from provisioner.core.models.node import Node, node_from_dict

logger = logging.getLogger(__name__)

_ACTION_DEFAULT_KEYS = ("timeout", "retry")


def qualify(component: str, node_id: str) -> str:
    """``install`` → ``redis/install``; ids that already name a component are kept."""
    return node_id if "/" in node_id else f"{component}/{node_id}"


def substitute(value: Any, variables: dict[str, str]) -> Any:
    """Replace ``${name}`` in every string inside ``value``. Unknown names are left as-is."""
    if isinstance(value, str):
        return Template(value).safe_substitute(variables)
    if isinstance(value, list):
        return [substitute(v, variables) for v in value]
    if isinstance(value, dict):
        return {k: substitute(v, variables) for k, v in value.items()}
    return value


def resolve_version(spec: ComponentSpec, override: str | None = None) -> str:
    return override or spec.version or "latest"


def component_nodes(
    spec: ComponentSpec,
    facts: HostFacts,
    version: str | None = None,
    action_defaults: dict[str, Any] | None = None,
) -> list[Node]:
    """Validated nodes for one component on this host.

    Raises:
        UnsupportedHost: The component has variants and none matches.
        InvalidNode: A node definition is malformed.
    """
    raw_nodes = list(spec.nodes)
    if spec.variants:
        variant = spec.select_variant(facts)
        if variant is None:
            raise UnsupportedHost(
                spec.name,
                f"no variant for {facts.os_id or 'unknown'} {facts.os_version} "
                f"(family={facts.os_family.value}, arch={facts.arch or '?'}, "
                f"root={facts.is_root})",
            )
        logger.debug("Component %s: using variant %r", spec.name, variant.name)
        raw_nodes.extend(variant.nodes)

    resolved_version = resolve_version(spec, version)
    variables = {**facts.substitutions(), "version": resolved_version, "component": spec.name}

    nodes: list[Node] = []
    for raw in raw_nodes:
        data = substitute(dict(raw), variables)
        local_id = str(data.get("id", ""))
        if not local_id:
            raise InvalidNode(f"{spec.name}/?", "node has no id")
        data["id"] = qualify(spec.name, local_id)
        data["depends_on"] = [qualify(spec.name, d) for d in data.get("depends_on") or []]
        if "action" in data and action_defaults:
            for key in _ACTION_DEFAULT_KEYS:
                if key in action_defaults and key not in data:
                    data[key] = action_defaults[key]
        try:
            nodes.append(node_from_dict(data))
        except ValidationError as e:
            raise InvalidNode(data["id"], _first_error(e)) from e
        except ValueError as e:
            raise InvalidNode(data["id"], str(e)) from e
    return nodes


def build_component_plan(
    spec: ComponentSpec,
    facts: HostFacts,
    version: str | None = None,
    action_defaults: dict[str, Any] | None = None,
) -> Plan:
    """Build the Plan that installs one component on this host."""
    return build_components_plan(
        [spec], facts,
        versions={spec.name: version} if version else None,
        action_defaults=action_defaults,
    )


def build_components_plan(
    specs: list[ComponentSpec],
    facts: HostFacts,
    versions: dict[str, str] | None = None,
    action_defaults: dict[str, Any] | None = None,
) -> Plan:
    """Build one Plan covering several components.

    Raises:
        PlanError: Any component is unsupported or invalid, or the
            combined graph is not a valid DAG.
    """
    versions = versions or {}
    nodes: list[Node] = []
    for spec in specs:
        nodes.extend(component_nodes(spec, facts, versions.get(spec.name), action_defaults))
    name = "+".join(spec.name for spec in specs) or "empty"
    plan = build_plan(nodes, name=name)
    logger.info("Built plan %s: %d nodes, goals=%s", plan.name, len(plan), plan.goals())
    return plan


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg', '')}" if loc else err.get("msg", "")
