"""
Status use case — last recorded runs from the state file and ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config.loader import ConfigError, load_settings
from provisioner.core.models.state import ProvisionState
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.state_file import load_state, state_path


@dataclass
class StatusResult:
    """Recorded provisioning state of this host."""

    state: ProvisionState | None = None
    state_file: Path | None = None
    history: list[AuditEntry] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        result: dict = {"state_file": str(self.state_file) if self.state_file else None}
        if self.state:
            result["state"] = self.state.model_dump(mode="json")
        result["history"] = [e.model_dump(mode="json") for e in self.history]
        return result


def get_status(
    config_path: Path | None = None,
    component: str | None = None,
    history: int = 10,
) -> StatusResult:
    """Load recorded state and recent history.

    Args:
        config_path: Optional explicit provisioner.yml.
        component: Limit history to runs that included this component.
        history: How many ledger entries to return.
    """
    result = StatusResult()
    try:
        settings = load_settings(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.state_file = state_path(settings.state_path)
    result.state = load_state(result.state_file)
    result.history = AuditWriter(state_dir=settings.state_path).read_recent(history, component=component)
    return result
