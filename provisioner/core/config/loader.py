"""
Configuration loader — reads provisioner.yml into Settings.

Settings are optional: without a config file every field takes its
default and paths resolve against the working directory.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from provisioner.core.models.settings import Settings

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "provisioner.yml"


class ConfigError(Exception):
    """Raised when settings or component files are invalid or unreadable."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for provisioner.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to provisioner.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def read_yaml_mapping(path: Path) -> dict:
    """Read a YAML file that must contain a mapping.

    Raises:
        ConfigError: If the file cannot be read or is not a YAML mapping.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def load_settings(path: Path | None = None, start_dir: Path | None = None) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit path to provisioner.yml. If None, searches upward
            from ``start_dir``; if nothing is found, defaults are used.
        start_dir: Where the upward search starts (default: cwd).

    Raises:
        ConfigError: If an explicit path is missing, or the file is invalid.
    """
    if path is not None and not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    if path is None:
        path = find_config_file(start_dir)

    if path is None:
        root = (start_dir or Path.cwd()).resolve()
        logger.debug("No %s found, using defaults rooted at %s", CONFIG_FILE, root)
        return Settings(root=root)

    logger.debug("Loading settings from %s", path)
    data = read_yaml_mapping(path)

    try:
        settings = Settings.model_validate({**data, "root": path.parent.resolve()})
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {path}: {e}") from e

    logger.info("Loaded settings from %s", path)
    return settings
