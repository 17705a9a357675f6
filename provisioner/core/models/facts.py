"""
HostFacts — what the planner knows about the target host.

Facts are gathered once per invocation (see ``core.services.facts``)
and passed explicitly into plan building, so nothing downstream reads
``/etc/os-release`` or checks the effective uid on its own.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class OsFamily(StrEnum):
    """Distribution family, as far as package management is concerned."""

    RHEL = "rhel"
    DEBIAN = "debian"
    ALPINE = "alpine"
    SUSE = "suse"
    ARCH = "arch"
    UNKNOWN = "unknown"


class HostFacts(BaseModel):
    """OS, architecture, privilege and installed-software facts."""

    os_family: OsFamily = OsFamily.UNKNOWN
    os_id: str = ""                 # e.g. "rhel", "rocky", "ubuntu"
    os_version: str = ""            # e.g. "9.3"
    os_major: int | None = None
    arch: str = ""                  # normalized: amd64, arm64, ...
    is_root: bool = False
    home: str = ""
    installed: dict[str, str] = Field(default_factory=dict)  # package → version

    @property
    def prefix(self) -> str:
        """Install prefix: system-wide for root, per-user otherwise."""
        if self.is_root:
            return "/usr/local"
        return f"{self.home}/.local" if self.home else "~/.local"

    @property
    def default_package_manager(self) -> str | None:
        if self.os_family == OsFamily.RHEL:
            if self.os_major is not None and self.os_major < 8:
                return "yum"
            return "dnf"
        if self.os_family == OsFamily.DEBIAN:
            return "apt-get"
        if self.os_family == OsFamily.ALPINE:
            return "apk"
        return None

    def substitutions(self) -> dict[str, str]:
        """Values available as ``${name}`` in component parameters."""
        return {
            "os_family": self.os_family.value,
            "os_id": self.os_id,
            "os_version": self.os_version,
            "os_major": "" if self.os_major is None else str(self.os_major),
            "arch": self.arch,
            "home": self.home,
            "prefix": self.prefix,
        }
