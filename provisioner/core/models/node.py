"""
Plan nodes — an Action or a Probe.

Component files describe nodes as mappings with either an ``action:``
or a ``probe:`` key naming the kind; ``node_from_dict`` turns such a
mapping into the matching model.
"""

from __future__ import annotations

from typing import Any, Union

from provisioner.core.models.action import Action
from provisioner.core.models.probe import Probe

Node = Union[Action, Probe]


def node_from_dict(data: dict[str, Any]) -> Node:
    """Build an Action or Probe from a component-file mapping.

    Raises:
        ValueError: If the mapping names neither or both node types.
        pydantic.ValidationError: If fields or parameters are invalid.
    """
    raw = dict(data)
    has_action = "action" in raw
    has_probe = "probe" in raw
    if has_action == has_probe:
        raise ValueError(
            f"node {raw.get('id', '?')!r} must declare exactly one of 'action' or 'probe'"
        )
    if has_action:
        raw["kind"] = raw.pop("action")
        return Action.model_validate(raw)
    raw["kind"] = raw.pop("probe")
    return Probe.model_validate(raw)


def is_action(node: Node) -> bool:
    return node.node_type == "action"
