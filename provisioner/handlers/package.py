"""
Package handler — install OS packages with dnf, yum, apt-get or apk.

Only packages that are missing (or installed at a version that does not
match the pin) are passed to the package manager, so re-applying an
installed set is a no-op.
"""

from __future__ import annotations

import logging
import shutil

from provisioner.core.models.action import ActionFailed, ActionResult, ErrorKind
from provisioner.core.models.params import ActionKind, PackageParams
from provisioner.handlers.base import ExecutionContext, Handler
from provisioner.handlers.runner import privileged, require_success, run_command

logger = logging.getLogger(__name__)

_RPM_MANAGERS = ("dnf", "yum")
_QUERY_TIMEOUT = 30.0


class PackageHandler(Handler):
    """Installs packages through the host's package manager."""

    @property
    def kind(self) -> ActionKind:
        return ActionKind.PACKAGE

    def is_available(self) -> bool:
        return any(shutil.which(m) for m in ("dnf", "yum", "apt-get", "apk"))

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        params: PackageParams = context.params
        manager = self._manager(context)
        if manager is None:
            return False, f"no supported package manager for os family '{context.facts.os_family}'"
        if params.enable_module and manager != "dnf":
            return False, f"enable_module needs dnf, host uses {manager}"
        return True, ""

    def check(self, context: ExecutionContext) -> bool:
        return bool(self.missing(context))

    def change(self, context: ExecutionContext) -> ActionResult:
        params: PackageParams = context.params
        manager = self._manager(context)
        missing = self.missing(context)
        is_root = context.facts.is_root

        if params.enable_module:
            require_success(
                run_command(
                    privileged(["dnf", "module", "enable", "-y", params.enable_module], is_root),
                    timeout=context.timeout,
                ),
                f"dnf module enable {params.enable_module}",
            )

        env = None
        if manager == "apt-get":
            env = {"DEBIAN_FRONTEND": "noninteractive"}
            require_success(
                run_command(privileged(["apt-get", "update"], is_root), timeout=context.timeout, env_overrides=env),
                "apt-get update",
            )

        specs = [self._install_spec(manager, name, params) for name in missing]
        argv = privileged(self._install_argv(manager, specs), is_root)
        logger.info("Installing %s with %s", ", ".join(missing), manager)
        result = require_success(
            run_command(argv, timeout=context.timeout, env_overrides=env),
            f"{manager} install {' '.join(missing)}",
        )
        return ActionResult.success(
            changed=True,
            output=f"installed {', '.join(missing)}",
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
            metadata={"manager": manager, "packages": missing},
        )

    # ── Queries ─────────────────────────────────────────────────

    def missing(self, context: ExecutionContext) -> list[str]:
        """Packages not installed at the requested version."""
        params: PackageParams = context.params
        manager = self._manager(context)
        pin = params.pinned_version
        missing = []
        for name in params.packages:
            installed = self.installed_version(manager, name, timeout=min(_QUERY_TIMEOUT, context.timeout))
            if installed is None:
                missing.append(name)
            elif pin and installed and not installed.startswith(pin):
                logger.info("%s is at %s, wanted %s", name, installed, pin)
                missing.append(name)
        return missing

    @staticmethod
    def installed_version(manager: str | None, name: str, timeout: float = _QUERY_TIMEOUT) -> str | None:
        """Installed version of ``name``, "" if installed but unknown, None if absent."""
        if manager in _RPM_MANAGERS:
            result = run_command(["rpm", "-q", "--queryformat", "%{VERSION}", name], timeout=timeout)
            return result.stdout.strip() if result.ok else None
        if manager == "apt-get":
            result = run_command(
                ["dpkg-query", "-W", "-f=${Status}|${Version}", name], timeout=timeout,
            )
            if not result.ok:
                return None
            status, _, version = result.stdout.partition("|")
            if not status.strip().endswith("installed"):
                return None
            return version.split(":", 1)[-1].strip()
        if manager == "apk":
            result = run_command(["apk", "info", "-e", name], timeout=timeout)
            return "" if result.ok else None
        return None

    # ── Helpers ─────────────────────────────────────────────────

    @staticmethod
    def _manager(context: ExecutionContext) -> str | None:
        params: PackageParams = context.params
        return params.manager or context.facts.default_package_manager

    @staticmethod
    def _install_spec(manager: str, name: str, params: PackageParams) -> str:
        if name in params.sources:
            return params.sources[name]
        pin = params.pinned_version
        if not pin:
            return name
        if manager in _RPM_MANAGERS:
            return f"{name}-{pin}*"
        if manager == "apt-get":
            return f"{name}={pin}*"
        return f"{name}~{pin}"

    @staticmethod
    def _install_argv(manager: str, specs: list[str]) -> list[str]:
        if manager in _RPM_MANAGERS:
            return [manager, "install", "-y", *specs]
        if manager == "apt-get":
            return ["apt-get", "install", "-y", *specs]
        if manager == "apk":
            return ["apk", "add", "--no-cache", *specs]
        raise ActionFailed(ErrorKind.OPERATION_FAILED, f"unsupported package manager: {manager}")
