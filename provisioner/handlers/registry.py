"""
Handler registry — central dispatch for actions and probes.

The registry handles registration, lookup, mock mode and the
exception boundary: whatever a handler raises comes back as a failed
ActionResult (or an ``unknown`` probe verdict). The executor never
talks to handlers directly.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from provisioner.core.models.action import Action, ActionFailed, ActionResult, ErrorKind
from provisioner.core.models.facts import HostFacts
from provisioner.core.models.params import ActionKind, ProbeKind
from provisioner.core.models.probe import Probe, ProbeResult
from provisioner.handlers.base import ExecutionContext, Handler, ProbeChecker, ProbeContext

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Central registry and dispatcher for handlers.

    Features:
        - Register handlers by action kind, checkers by probe kind
        - Mock mode: route everything to a mock that touches nothing
        - Apply, predict (dry-run) and evaluate without ever raising
    """

    def __init__(self, mock_mode: bool = False):
        self._handlers: dict[ActionKind, Handler] = {}
        self._checkers: dict[ProbeKind, ProbeChecker] = {}
        self._mock_mode = mock_mode
        self._mock_handler: Handler | None = None
        self._mock_checker: ProbeChecker | None = None

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def set_mock_mode(
        self,
        enabled: bool,
        mock_handler: Handler | None = None,
        mock_checker: ProbeChecker | None = None,
    ) -> None:
        """Enable or disable mock mode.

        Args:
            enabled: Whether to use mock mode.
            mock_handler: Serves every action kind. If None, actions
                succeed with ``changed=True``.
            mock_checker: Serves every probe kind. If None, probes are healthy.
        """
        self._mock_mode = enabled
        self._mock_handler = mock_handler
        self._mock_checker = mock_checker

    def register(self, handler: Handler) -> None:
        kind = handler.kind
        if kind in self._handlers:
            logger.warning("Overwriting existing handler: %s", kind.value)
        self._handlers[kind] = handler
        logger.debug("Registered handler: %s", kind.value)

    def register_checker(self, checker: ProbeChecker) -> None:
        kind = checker.kind
        if kind in self._checkers:
            logger.warning("Overwriting existing probe checker: %s", kind.value)
        self._checkers[kind] = checker
        logger.debug("Registered probe checker: %s", kind.value)

    def get(self, kind: ActionKind) -> Handler | None:
        return self._handlers.get(kind)

    def get_checker(self, kind: ProbeKind) -> ProbeChecker | None:
        return self._checkers.get(kind)

    def list_handlers(self) -> list[str]:
        return [k.value for k in self._handlers]

    def list_checkers(self) -> list[str]:
        return [k.value for k in self._checkers]

    def handler_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered handler."""
        status = {}
        for kind, handler in self._handlers.items():
            try:
                available = handler.is_available()
            except Exception:
                available = False
            status[kind.value] = {
                "kind": kind.value,
                "available": available,
                "type": handler.__class__.__name__,
            }
        return status

    # ── Dispatch ────────────────────────────────────────────────

    def apply(self, action: Action, facts: HostFacts) -> ActionResult:
        """Apply an action through its handler. Never raises."""
        return self._dispatch(action, facts, dry_run=False)

    def predict(self, action: Action, facts: HostFacts) -> ActionResult:
        """Report whether applying would change the host, without changing it."""
        return self._dispatch(action, facts, dry_run=True)

    def evaluate(self, probe: Probe, facts: HostFacts) -> ProbeResult:
        """Evaluate a probe through its checker. Never raises."""
        if self._mock_mode and self._mock_checker is None:
            return ProbeResult.healthy(f"[mock] {probe.kind.value}:{probe.id}")

        checker = self._mock_checker if self._mock_mode else self._checkers.get(probe.kind)
        if checker is None:
            return ProbeResult.unknown(f"No probe checker registered for '{probe.kind.value}'")

        context = ProbeContext(probe=probe, facts=facts)
        try:
            return checker.evaluate(context)
        except Exception as e:
            logger.error("Probe checker %s raised: %s", probe.kind.value, e)
            return ProbeResult.unknown(f"Unexpected error: {e}")

    def _dispatch(self, action: Action, facts: HostFacts, dry_run: bool) -> ActionResult:
        start_time = time.monotonic()

        if self._mock_mode and self._mock_handler is None:
            verb = "would apply" if dry_run else "applied"
            return ActionResult.success(
                changed=True,
                output=f"[mock] {verb} {action.kind.value}:{action.id}",
                metadata={"mock": True},
            )

        handler = self._mock_handler if self._mock_mode else self._handlers.get(action.kind)
        if handler is None:
            return ActionResult.failure(
                ErrorKind.OPERATION_FAILED,
                f"No handler registered for '{action.kind.value}'",
            )

        context = ExecutionContext(action=action, facts=facts, dry_run=dry_run)

        try:
            is_valid, error_msg = handler.validate(context)
            if not is_valid:
                return ActionResult.failure(ErrorKind.OPERATION_FAILED, f"Validation failed: {error_msg}")

            if dry_run:
                changed = handler.check(context)
                output = "would change" if changed else "already in desired state"
                result = ActionResult.success(changed=changed, output=output)
            else:
                result = handler.apply(context)
        except ActionFailed as e:
            result = ActionResult.failure(
                e.kind,
                e.message,
                stdout=e.details.get("stdout", ""),
                stderr=e.details.get("stderr", ""),
                exit_code=e.details.get("exit_code"),
            )
        except Exception as e:
            # Handlers should raise ActionFailed, anything else is a handler bug
            logger.error("Handler %s raised during %s: %s", action.kind.value, action.id, e)
            result = ActionResult.failure(ErrorKind.UNEXPECTED, f"Unexpected error: {e}")

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        logger.debug(
            "%s %s: %s in %dms",
            "Predicted" if dry_run else "Applied", action.id,
            "failed" if result.failed else ("changed" if result.changed else "unchanged"),
            elapsed_ms,
        )
        return result


def default_registry(mock_mode: bool = False) -> HandlerRegistry:
    """A registry with every built-in handler and probe checker."""
    from provisioner.handlers.download import DownloadHandler
    from provisioner.handlers.file import FileHandler
    from provisioner.handlers.package import PackageHandler
    from provisioner.handlers.probes import (
        CommandProbe,
        HttpProbe,
        ServiceProbe,
        TcpProbe,
    )
    from provisioner.handlers.service import ServiceHandler
    from provisioner.handlers.shell import ShellHandler

    registry = HandlerRegistry(mock_mode=mock_mode)
    for handler in (PackageHandler(), FileHandler(), ServiceHandler(), ShellHandler(), DownloadHandler()):
        registry.register(handler)
    for checker in (CommandProbe(), ServiceProbe(), TcpProbe(), HttpProbe()):
        registry.register_checker(checker)
    return registry
