"""
Probe model — a read-only verification of host state.

Probes answer "is it healthy?" after actions have run: is the unit
active, does the binary answer ``--version``, is the port open. The
executor polls a probe until it reports healthy or its attempts run
out.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from provisioner.core.models.params import PROBE_PARAMS, ProbeKind

DEFAULT_PROBE_TIMEOUT = 10.0


class Verdict(StrEnum):
    """Result of a single probe evaluation."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class Probe(BaseModel):
    """A health/version check on a previously applied action."""

    model_config = ConfigDict(frozen=True)

    node_type: Literal["probe"] = "probe"
    id: str = Field(min_length=1)
    kind: ProbeKind
    parameters: dict[str, Any] = Field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    timeout: float = Field(default=DEFAULT_PROBE_TIMEOUT, gt=0)
    max_attempts: int = Field(default=1, ge=1)
    interval: float = Field(default=2.0, ge=0)
    required: bool = True
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _validate_parameters(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "kind" not in data:
            return data
        kind = ProbeKind(data["kind"])
        params = PROBE_PARAMS[kind].model_validate(data.get("parameters") or {})
        return {**data, "parameters": params.model_dump(exclude_none=True)}

    @property
    def typed_params(self) -> Any:
        return PROBE_PARAMS[self.kind].model_validate(self.parameters)

    @property
    def label(self) -> str:
        return self.description or f"probe:{self.kind.value}:{self.id}"


class ProbeResult(BaseModel):
    """Outcome of one probe evaluation."""

    verdict: Verdict
    detail: str = ""

    @classmethod
    def healthy(cls, detail: str = "") -> ProbeResult:
        return cls(verdict=Verdict.HEALTHY, detail=detail)

    @classmethod
    def unhealthy(cls, detail: str = "") -> ProbeResult:
        return cls(verdict=Verdict.UNHEALTHY, detail=detail)

    @classmethod
    def unknown(cls, detail: str = "") -> ProbeResult:
        return cls(verdict=Verdict.UNKNOWN, detail=detail)
