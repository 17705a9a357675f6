"""
State file — atomic read/write of ProvisionState.

Stored as JSON in ``.state/current.json``. Writes go to a temp file in
the same directory that is then renamed over the target, so a crash
mid-write leaves the previous state intact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from provisioner.core.models.state import ProvisionState

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "current.json"


def state_path(state_dir: Path) -> Path:
    return state_dir / DEFAULT_STATE_FILE


def load_state(path: Path) -> ProvisionState:
    """Load state, or a fresh one if the file is missing or unreadable."""
    if not path.is_file():
        logger.info("No state file at %s, starting fresh", path)
        return ProvisionState()

    try:
        state = ProvisionState.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Cannot load state from %s (%s), starting fresh", path, e)
        return ProvisionState()

    logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
    return state


def save_state(state: ProvisionState, path: Path) -> None:
    """Write state atomically.

    Raises:
        OSError: If the directory or file cannot be written.
    """
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise
    logger.debug("State saved to %s", path)
