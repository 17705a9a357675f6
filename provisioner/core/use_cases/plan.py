"""
Plan use case — resolve component names into a validated Plan.

Loads settings, discovers components, gathers host facts (unless
given) and builds the plan. Shared by ``plan`` and ``apply``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config.component_loader import discover_components, select_components
from provisioner.core.config.loader import ConfigError, load_settings
from provisioner.core.engine.plan import Plan, PlanError
from provisioner.core.models.component import ComponentSpec
from provisioner.core.models.facts import HostFacts
from provisioner.core.models.settings import Settings
from provisioner.core.services.facts import gather_facts
from provisioner.core.services.planner import build_components_plan, resolve_version

logger = logging.getLogger(__name__)


@dataclass
class PlanResult:
    """A plan and everything that went into it."""

    plan: Plan | None = None
    settings: Settings | None = None
    facts: HostFacts | None = None
    components: list[ComponentSpec] = field(default_factory=list)
    versions: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "plan": self.plan.name if self.plan else "",
            "components": [
                {"name": c.name, "version": self.versions.get(c.name, "latest")}
                for c in self.components
            ],
            "goals": self.plan.goals() if self.plan else [],
            "nodes": self.plan.describe() if self.plan else [],
        }


@dataclass
class ComponentInfo:
    name: str
    description: str
    version: str
    supported: bool
    variant: str | None = None


def build_plan_for(
    names: list[str],
    config_path: Path | None = None,
    version: str | None = None,
    facts: HostFacts | None = None,
) -> PlanResult:
    """Build the plan for the named components.

    Args:
        names: Component names, in the order they should be declared.
        config_path: Optional explicit provisioner.yml.
        version: Version override; only valid with a single component.
        facts: Host facts; gathered from this host if None.
    """
    result = PlanResult()

    if not names:
        result.error = "No components given."
        return result
    if version and len(set(names)) > 1:
        result.error = "--version can only be used with a single component."
        return result

    try:
        settings = load_settings(config_path)
        result.settings = settings
        available = discover_components(settings.components_path)
        result.components = select_components(available, names)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.facts = facts or gather_facts(
        include_packages=any(c.needs_packages for c in result.components),
    )
    overrides = {result.components[0].name: version} if version else {}
    result.versions = {
        c.name: resolve_version(c, overrides.get(c.name)) for c in result.components
    }

    try:
        result.plan = build_components_plan(
            result.components,
            result.facts,
            versions=overrides,
            action_defaults=settings.action_defaults(),
        )
    except PlanError as e:
        result.error = str(e)
    return result


def list_components(
    config_path: Path | None = None,
    facts: HostFacts | None = None,
) -> tuple[list[ComponentInfo], str | None]:
    """Every discovered component and whether it supports this host."""
    try:
        settings = load_settings(config_path)
    except ConfigError as e:
        return [], str(e)

    specs = discover_components(settings.components_path)
    facts = facts or gather_facts(include_packages=any(s.needs_packages for s in specs.values()))
    infos = []
    for spec in specs.values():
        variant = spec.select_variant(facts)
        infos.append(ComponentInfo(
            name=spec.name,
            description=spec.description,
            version=resolve_version(spec),
            supported=spec.supports(facts),
            variant=variant.name if variant else None,
        ))
    return infos, None
