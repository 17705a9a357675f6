"""
Component loader — loads component definitions from YAML files.

Components live in components/<name>/component.yml. This module
discovers and loads them all into a registry keyed by name.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from provisioner.core.config.loader import ConfigError, read_yaml_mapping
from provisioner.core.models.component import ComponentSpec

logger = logging.getLogger(__name__)

COMPONENT_FILES = ("component.yml", "component.yaml")


def component_file(directory: Path) -> Path | None:
    for name in COMPONENT_FILES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def load_component(path: Path) -> ComponentSpec:
    """Load a single component definition.

    Raises:
        ConfigError: If the file is unreadable or does not validate.
    """
    data = read_yaml_mapping(path)
    try:
        spec = ComponentSpec.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid component in {path}: {e}") from e
    logger.debug("Loaded component: %s from %s", spec.name, path)
    return spec


def discover_components(components_dir: Path) -> dict[str, ComponentSpec]:
    """Load every component under ``components_dir``.

    Expects structure::

        components/
            redis/
                component.yml
            prometheus/
                component.yml

    Broken files are logged and skipped; ``check`` reports them in detail.
    """
    components: dict[str, ComponentSpec] = {}

    if not components_dir.is_dir():
        logger.debug("Components directory not found: %s", components_dir)
        return components

    for child in sorted(components_dir.iterdir()):
        if not child.is_dir():
            continue
        path = component_file(child)
        if path is None:
            continue
        try:
            spec = load_component(path)
        except ConfigError as e:
            logger.warning("Skipping component in %s: %s", child.name, e)
            continue
        if spec.name in components:
            logger.warning("Duplicate component name %r in %s, keeping the first", spec.name, path)
            continue
        components[spec.name] = spec

    logger.info("Discovered %d components: %s", len(components), list(components.keys()))
    return components


def select_components(available: dict[str, ComponentSpec], names: list[str]) -> list[ComponentSpec]:
    """Pick components by name, in the order given.

    Raises:
        ConfigError: If a name is unknown.
    """
    unknown = [n for n in names if n not in available]
    if unknown:
        known = ", ".join(sorted(available)) or "none"
        raise ConfigError(f"Unknown component(s): {', '.join(unknown)} (available: {known})")
    return [available[n] for n in dict.fromkeys(names)]
