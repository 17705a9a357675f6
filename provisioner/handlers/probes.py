"""
Probe checkers — read-only health checks.

``unknown`` means the check itself could not be carried out (tool
missing, check timed out); ``unhealthy`` means it ran and the answer
was no. The executor treats both as "not yet healthy" when polling.
"""

from __future__ import annotations

import logging
import re
import shutil
import socket
import urllib.error
import urllib.request

from provisioner import __version__
from provisioner.core.models.params import (
    CommandProbeParams,
    HttpProbeParams,
    ProbeKind,
    ServiceProbeParams,
    TcpProbeParams,
)
from provisioner.core.models.probe import ProbeResult
from provisioner.handlers.base import ProbeChecker, ProbeContext
from provisioner.handlers.runner import run_command

logger = logging.getLogger(__name__)


def _first_line(text: str) -> str:
    text = text.strip()
    return text.splitlines()[0] if text else ""


class CommandProbe(ProbeChecker):
    """Runs a command, e.g. ``redis-cli ping`` or ``terraform --version``."""

    @property
    def kind(self) -> ProbeKind:
        return ProbeKind.COMMAND

    def evaluate(self, context: ProbeContext) -> ProbeResult:
        params: CommandProbeParams = context.params
        result = run_command(params.command, shell=True, timeout=context.timeout)
        if result.timed_out:
            return ProbeResult.unknown(f"{params.command!r} timed out")
        output = f"{result.stdout}\n{result.stderr}"
        if not result.ok:
            detail = _first_line(result.stderr) or _first_line(result.stdout)
            return ProbeResult.unhealthy(f"exit {result.exit_code}: {detail}".rstrip(": "))
        if params.expect and not re.search(params.expect, output):
            return ProbeResult.unhealthy(
                f"output did not match {params.expect!r}: {_first_line(result.stdout)}"
            )
        return ProbeResult.healthy(_first_line(result.stdout))


class ServiceProbe(ProbeChecker):
    """Asks systemd whether a unit is active."""

    @property
    def kind(self) -> ProbeKind:
        return ProbeKind.SERVICE

    def evaluate(self, context: ProbeContext) -> ProbeResult:
        params: ServiceProbeParams = context.params
        if shutil.which("systemctl") is None:
            return ProbeResult.unknown("systemctl not available")
        result = run_command(["systemctl", "is-active", params.name], timeout=context.timeout)
        if result.timed_out:
            return ProbeResult.unknown(f"systemctl is-active {params.name} timed out")
        state = result.stdout.strip() or "unknown"
        if state == "active":
            return ProbeResult.healthy(f"{params.name} is active")
        return ProbeResult.unhealthy(f"{params.name} is {state}")


class TcpProbe(ProbeChecker):
    """Connects to a TCP port."""

    @property
    def kind(self) -> ProbeKind:
        return ProbeKind.TCP

    def evaluate(self, context: ProbeContext) -> ProbeResult:
        params: TcpProbeParams = context.params
        address = f"{params.host}:{params.port}"
        try:
            with socket.create_connection((params.host, params.port), timeout=context.timeout):
                return ProbeResult.healthy(f"{address} accepting connections")
        except (socket.timeout, TimeoutError):
            return ProbeResult.unknown(f"{address} timed out")
        except OSError as e:
            return ProbeResult.unhealthy(f"{address}: {e.strerror or e}")


class HttpProbe(ProbeChecker):
    """Requests a URL, e.g. ``http://localhost:9090/-/healthy``."""

    @property
    def kind(self) -> ProbeKind:
        return ProbeKind.HTTP

    def evaluate(self, context: ProbeContext) -> ProbeResult:
        params: HttpProbeParams = context.params
        req = urllib.request.Request(
            params.url, headers={"User-Agent": f"host-provisioner/{__version__}"},
        )
        try:
            with urllib.request.urlopen(req, timeout=context.timeout) as resp:
                status = resp.status
                body = resp.read(64 * 1024).decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            status = e.code
            body = ""
        except urllib.error.URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                return ProbeResult.unknown(f"{params.url} timed out")
            return ProbeResult.unhealthy(f"{params.url}: {e.reason}")
        except (socket.timeout, TimeoutError):
            return ProbeResult.unknown(f"{params.url} timed out")
        except (ConnectionError, OSError) as e:
            return ProbeResult.unhealthy(f"{params.url}: {e}")

        if status != params.expect_status:
            return ProbeResult.unhealthy(f"{params.url} returned {status}, expected {params.expect_status}")
        if params.expect_body and params.expect_body not in body:
            return ProbeResult.unhealthy(f"{params.url} body does not contain {params.expect_body!r}")
        return ProbeResult.healthy(f"{params.url} returned {status}")
