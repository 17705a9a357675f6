"""
Service handler — start, stop, enable and disable systemd units.
"""

from __future__ import annotations

import logging
import shutil
import socket

from provisioner.core.models.action import ActionFailed, ActionResult, ErrorKind
from provisioner.core.models.params import ActionKind, ServiceParams
from provisioner.handlers.base import ExecutionContext, Handler
from provisioner.handlers.runner import privileged, require_success, run_command

logger = logging.getLogger(__name__)

_QUERY_TIMEOUT = 30.0


def port_in_use(port: int, host: str = "127.0.0.1", timeout: float = 1.0) -> bool:
    """True if something accepts TCP connections on ``host:port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        return sock.connect_ex((host, port)) == 0


def unit_active(name: str, timeout: float = _QUERY_TIMEOUT) -> bool:
    result = run_command(["systemctl", "is-active", name], timeout=timeout)
    return result.stdout.strip() == "active"


def unit_enabled(name: str, timeout: float = _QUERY_TIMEOUT) -> bool:
    result = run_command(["systemctl", "is-enabled", name], timeout=timeout)
    return result.stdout.strip() in ("enabled", "enabled-runtime", "alias", "static")


class ServiceHandler(Handler):
    """Brings a systemd unit to the requested state."""

    @property
    def kind(self) -> ActionKind:
        return ActionKind.SERVICE

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def check(self, context: ExecutionContext) -> bool:
        params: ServiceParams = context.params
        active = unit_active(params.name, _query_timeout(context))
        if (params.state == "started") != active:
            return True
        if params.enabled is not None and unit_enabled(params.name, _query_timeout(context)) != params.enabled:
            return True
        return False

    def change(self, context: ExecutionContext) -> ActionResult:
        params: ServiceParams = context.params
        is_root = context.facts.is_root
        done: list[str] = []

        if params.enabled is not None and unit_enabled(params.name, _query_timeout(context)) != params.enabled:
            verb = "enable" if params.enabled else "disable"
            require_success(
                run_command(privileged(["systemctl", verb, params.name], is_root), timeout=context.timeout),
                f"systemctl {verb} {params.name}",
            )
            done.append(f"{verb}d")

        active = unit_active(params.name, _query_timeout(context))
        if params.state == "started" and not active:
            if params.port is not None and port_in_use(params.port):
                raise ActionFailed(
                    ErrorKind.CONFLICT,
                    f"port {params.port} is already bound by another process; "
                    f"{params.name} cannot start",
                    port=params.port,
                )
            # Pick up unit files written earlier in the plan
            require_success(
                run_command(privileged(["systemctl", "daemon-reload"], is_root), timeout=context.timeout),
                "systemctl daemon-reload",
            )
            require_success(
                run_command(privileged(["systemctl", "start", params.name], is_root), timeout=context.timeout),
                f"systemctl start {params.name}",
            )
            done.append("started")
        elif params.state == "stopped" and active:
            require_success(
                run_command(privileged(["systemctl", "stop", params.name], is_root), timeout=context.timeout),
                f"systemctl stop {params.name}",
            )
            done.append("stopped")

        logger.info("Service %s: %s", params.name, ", ".join(done) or "no change")
        return ActionResult.success(
            changed=bool(done),
            output=f"{params.name} {', '.join(done)}" if done else "already in desired state",
            metadata={"service": params.name, "steps": done},
        )


def _query_timeout(context: ExecutionContext) -> float:
    return min(_QUERY_TIMEOUT, context.timeout)
