"""
Handler base — the contract between the executor and the host.

Every action kind has one Handler; every probe kind has one
ProbeChecker. The executor only reaches them through the
HandlerRegistry, never directly.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from provisioner.core.models.action import Action, ActionFailed, ActionResult, ErrorKind
from provisioner.core.models.facts import HostFacts
from provisioner.core.models.params import ActionKind, ProbeKind
from provisioner.core.models.probe import Probe, ProbeResult


class ExecutionContext(BaseModel):
    """Everything a handler needs to check or apply one action.

    One context is built per attempt. ``action.timeout`` is the budget for
    the whole attempt, so every command and transfer a handler runs draws
    on the same clock through ``timeout``.
    """

    action: Action
    facts: HostFacts
    dry_run: bool = False
    started_at: float = Field(default_factory=time.monotonic)

    @property
    def params(self) -> Any:
        return self.action.typed_params

    @property
    def deadline(self) -> float:
        """``time.monotonic()`` value at which this attempt times out."""
        return self.started_at + self.action.timeout

    @property
    def timeout(self) -> float:
        """Seconds left for this attempt.

        Raises:
            ActionFailed: TIMEOUT once the budget is spent.
        """
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise ActionFailed(
                ErrorKind.TIMEOUT,
                f"{self.action.id} exceeded its {self.action.timeout:g}s timeout",
            )
        return remaining


class ProbeContext(BaseModel):
    """Everything a checker needs to evaluate one probe."""

    probe: Probe
    facts: HostFacts

    @property
    def params(self) -> Any:
        return self.probe.typed_params

    @property
    def timeout(self) -> float:
        return self.probe.timeout


class Handler(ABC):
    """Abstract base class for action handlers.

    Subclasses implement ``check`` (read-only: would applying change the
    host?) and ``change`` (make the change). ``apply`` ties them together,
    so applying an already-satisfied action is a no-op.

    Handlers signal failure by raising ``ActionFailed``; the registry
    turns that into a failed ActionResult.
    """

    @property
    @abstractmethod
    def kind(self) -> ActionKind:
        """The action kind this handler serves."""

    def is_available(self) -> bool:
        """Whether the underlying tool exists on this host."""
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Host-specific validation beyond the parameter schema.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        return True, ""

    @abstractmethod
    def check(self, context: ExecutionContext) -> bool:
        """True if applying the action would change the host."""

    @abstractmethod
    def change(self, context: ExecutionContext) -> ActionResult:
        """Bring the host to the desired state. Only called when ``check`` is True."""

    def apply(self, context: ExecutionContext) -> ActionResult:
        if not self.check(context):
            return ActionResult.unchanged()
        return self.change(context)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} kind={self.kind.value!r}>"


class ProbeChecker(ABC):
    """Abstract base class for read-only health checks."""

    @property
    @abstractmethod
    def kind(self) -> ProbeKind:
        """The probe kind this checker serves."""

    @abstractmethod
    def evaluate(self, context: ProbeContext) -> ProbeResult:
        """Look at the host and return a verdict. Never mutates anything."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} kind={self.kind.value!r}>"
