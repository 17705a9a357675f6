"""
Config check use case — validate settings and every component file.

Each component is checked variant by variant: nodes must validate and
the common nodes plus the variant's nodes must form a valid DAG.
Dependencies on other components are checked for existence only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config.component_loader import component_file, load_component
from provisioner.core.config.loader import ConfigError, find_config_file, load_settings
from provisioner.core.engine.plan import PlanError, build_plan
from provisioner.core.models.component import ComponentSpec
from provisioner.core.models.facts import HostFacts
from provisioner.core.models.node import node_from_dict
from provisioner.core.models.settings import Settings
from provisioner.core.services.planner import qualify, resolve_version, substitute


@dataclass
class ComponentCheck:
    name: str
    path: str
    valid: bool = False
    supported: bool | None = None      # None when no host facts were given
    variants: list[str] = field(default_factory=list)
    node_count: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    settings: Settings | None = None
    config_path: Path | None = None
    components: list[ComponentCheck] = field(default_factory=list)
    handlers: dict[str, dict] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "components_dir": str(self.settings.components_path) if self.settings else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "components": [
                {
                    "name": c.name,
                    "path": c.path,
                    "valid": c.valid,
                    "supported": c.supported,
                    "variants": c.variants,
                    "nodes": c.node_count,
                    "errors": c.errors,
                    "warnings": c.warnings,
                }
                for c in self.components
            ],
            "handlers": self.handlers,
        }


def check_components(
    config_path: Path | None = None,
    facts: HostFacts | None = None,
    handler_status: dict[str, dict] | None = None,
) -> ConfigCheckResult:
    """Validate settings and every component under the components dir.

    Args:
        config_path: Optional explicit provisioner.yml.
        facts: If given, also report whether each component supports this host.
        handler_status: Handler availability to include in the result.
    """
    result = ConfigCheckResult(handlers=handler_status or {})

    try:
        result.config_path = config_path or find_config_file()
        settings = load_settings(result.config_path)
        result.settings = settings
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    if result.config_path is None:
        result.warnings.append("No provisioner.yml found, using defaults.")

    components_dir = settings.components_path
    if not components_dir.is_dir():
        result.errors.append(f"Components directory not found: {components_dir}")
        return result

    specs: dict[str, ComponentSpec] = {}
    for child in sorted(components_dir.iterdir()):
        if not child.is_dir():
            continue
        path = component_file(child)
        if path is None:
            result.warnings.append(f"{child.name}/ has no component.yml")
            continue
        check = ComponentCheck(name=child.name, path=str(path))
        result.components.append(check)
        try:
            spec = load_component(path)
        except ConfigError as e:
            check.errors.append(str(e))
            continue
        check.name = spec.name
        if spec.name in specs:
            check.errors.append(f"Duplicate component name {spec.name!r}")
            continue
        specs[spec.name] = spec

    if not result.components:
        result.warnings.append(f"No components found in {components_dir}")

    for check in result.components:
        spec = specs.get(check.name)
        if spec is None or check.errors:
            continue
        _check_spec(spec, set(specs), check)
        if facts is not None:
            check.supported = spec.supports(facts)
        check.valid = not check.errors

    result.valid = not result.errors and all(c.valid for c in result.components)
    return result


def _check_spec(spec: ComponentSpec, known: set[str], check: ComponentCheck) -> None:
    variables = {**HostFacts().substitutions(), "version": resolve_version(spec), "component": spec.name}
    variant_sets = [(v.name or f"variant-{i}", v.nodes) for i, v in enumerate(spec.variants)]
    if not variant_sets:
        variant_sets = [("", [])]

    for variant_name, variant_nodes in variant_sets:
        if variant_name:
            check.variants.append(variant_name)
        label = f"variant {variant_name!r}" if variant_name else "nodes"
        nodes = []
        for raw in [*spec.nodes, *variant_nodes]:
            data = substitute(dict(raw), variables)
            node_id = qualify(spec.name, str(data.get("id", "?")))
            data["id"] = node_id
            local_deps = []
            for dep in data.get("depends_on") or []:
                qualified = qualify(spec.name, dep)
                other = qualified.split("/", 1)[0]
                if other != spec.name:
                    if other not in known:
                        check.errors.append(f"{node_id} depends on unknown component {other!r}")
                    continue
                local_deps.append(qualified)
            data["depends_on"] = local_deps
            try:
                nodes.append(node_from_dict(data))
            except ValueError as e:
                check.errors.append(f"{label}: {node_id}: {e}")
        if len(nodes) != len(spec.nodes) + len(variant_nodes):
            continue
        try:
            plan = build_plan(nodes, name=spec.name)
        except PlanError as e:
            check.errors.append(f"{label}: {e}")
            continue
        check.node_count = max(check.node_count, len(plan))
        if not plan.goals():
            check.warnings.append(f"{label}: no required nodes")
