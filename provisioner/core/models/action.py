"""
Action and ActionResult models — the execution contract.

An Action is a single idempotent unit of host change. Handlers take an
Action and return an ActionResult; they never let exceptions escape.
Failures are classified by ``ErrorKind`` so the executor can decide
whether a retry makes sense.
"""

from __future__ import annotations

import hashlib
import json
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from provisioner.core.models.params import ACTION_PARAMS, ActionKind
from provisioner.core.reliability.retry import RetryPolicy

DEFAULT_ACTION_TIMEOUT = 300.0


class ErrorKind(StrEnum):
    """Why an action (or probe) failed."""

    PERMISSION_DENIED = "permission_denied"
    DEPENDENCY_UNAVAILABLE = "dependency_unavailable"   # network / repo unreachable
    CONFLICT = "conflict"                               # e.g. port held by another service
    TIMEOUT = "timeout"
    OPERATION_FAILED = "operation_failed"               # non-zero exit or request error, unclassified
    PROBE_TIMEOUT = "probe_timeout"                     # verification never went healthy
    UNEXPECTED = "unexpected"                           # handler raised

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset({ErrorKind.DEPENDENCY_UNAVAILABLE, ErrorKind.TIMEOUT})


class ActionError(BaseModel):
    """A classified failure attached to a node result."""

    kind: ErrorKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class ActionFailed(Exception):
    """Raised inside handlers; converted to a failed ActionResult by the registry."""

    def __init__(self, kind: ErrorKind, message: str, **details: Any):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details


class Action(BaseModel):
    """A requested host change.

    ``parameters`` is validated against the schema for ``kind`` when the
    action is created; unknown keys and missing fields are rejected.
    """

    model_config = ConfigDict(frozen=True)

    node_type: Literal["action"] = "action"
    id: str = Field(min_length=1)
    kind: ActionKind
    parameters: dict[str, Any] = Field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    timeout: float = Field(default=DEFAULT_ACTION_TIMEOUT, gt=0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    required: bool = True
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _validate_parameters(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "kind" not in data:
            return data
        kind = ActionKind(data["kind"])
        params = ACTION_PARAMS[kind].model_validate(data.get("parameters") or {})
        return {**data, "parameters": params.model_dump(exclude_none=True)}

    @property
    def typed_params(self) -> Any:
        """Parameters as the kind's schema model."""
        return ACTION_PARAMS[self.kind].model_validate(self.parameters)

    @property
    def idempotency_key(self) -> str:
        """Stable digest of what this action does (kind + parameters)."""
        payload = json.dumps(
            {"kind": self.kind.value, "parameters": self.parameters},
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    @property
    def label(self) -> str:
        return self.description or f"{self.kind.value}:{self.id}"


class ActionResult(BaseModel):
    """Outcome of applying (or dry-running) an action.

    ``changed`` is independent of success: an already-satisfied action
    succeeds with ``changed=False``.
    """

    changed: bool = False
    output: str = ""
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    error: ActionError | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def success(cls, changed: bool, output: str = "", **kwargs: Any) -> ActionResult:
        return cls(changed=changed, output=output, **kwargs)

    @classmethod
    def unchanged(cls, output: str = "already in desired state", **kwargs: Any) -> ActionResult:
        return cls(changed=False, output=output, **kwargs)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **kwargs: Any) -> ActionResult:
        return cls(error=ActionError(kind=kind, message=message), **kwargs)
