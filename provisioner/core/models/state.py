"""
ProvisionState — what the last runs did on this host.

Serialized to ``.state/current.json`` after every non-dry-run apply.
It is a record, not a source of truth: actions always re-check the
host, so deleting the file only loses history.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ComponentState(BaseModel):
    """Last known outcome for one component."""

    name: str
    version: str | None = None
    last_applied_at: str | None = None
    last_status: str | None = None      # success, partial_failure, failure
    nodes_changed: int = 0


class OperationRecord(BaseModel):
    """Summary of the last apply."""

    operation_id: str = ""
    plan_name: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""
    cancelled: bool = False
    nodes_total: int = 0
    nodes_succeeded: int = 0
    nodes_failed: int = 0
    nodes_skipped: int = 0


class ProvisionState(BaseModel):
    """Root state document."""

    schema_version: int = 1

    host: dict[str, Any] = Field(default_factory=dict)   # facts snapshot

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    components: dict[str, ComponentState] = Field(default_factory=dict)
    last_operation: OperationRecord = Field(default_factory=OperationRecord)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def set_component_state(self, name: str, **kwargs: Any) -> None:
        """Update or create a component state entry."""
        if name in self.components:
            for key, value in kwargs.items():
                setattr(self.components[name], key, value)
        else:
            self.components[name] = ComponentState(name=name, **kwargs)
