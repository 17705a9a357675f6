"""
Host fact gathering — OS family, version, architecture, privilege.

Runs once per invocation; everything downstream receives the
resulting HostFacts instead of probing the host itself.
"""

from __future__ import annotations

import logging
import os
import platform
from pathlib import Path

import distro

from provisioner.core.models.facts import HostFacts, OsFamily
from provisioner.handlers.runner import run_command

logger = logging.getLogger(__name__)

ARCH_MAP: dict[str, str] = {
    "x86_64": "amd64",
    "AMD64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "i686": "i386",
    "i386": "i386",
}

_FAMILY_IDS: dict[OsFamily, set[str]] = {
    OsFamily.RHEL: {"rhel", "centos", "rocky", "almalinux", "fedora", "ol", "amzn", "scientific"},
    OsFamily.DEBIAN: {"debian", "ubuntu", "linuxmint", "raspbian", "pop", "elementary"},
    OsFamily.ALPINE: {"alpine"},
    OsFamily.SUSE: {"opensuse", "opensuse-leap", "opensuse-tumbleweed", "sles", "suse"},
    OsFamily.ARCH: {"arch", "manjaro", "endeavouros"},
}

# One "name version" line per installed package.
_PACKAGE_QUERIES: dict[OsFamily, list[str]] = {
    OsFamily.RHEL: ["rpm", "-qa", "--queryformat", "%{NAME} %{VERSION}\n"],
    OsFamily.SUSE: ["rpm", "-qa", "--queryformat", "%{NAME} %{VERSION}\n"],
    OsFamily.DEBIAN: ["dpkg-query", "-W", "-f=${Package} ${Version}\n"],
    OsFamily.ARCH: ["pacman", "-Q"],
}


def normalize_arch(machine: str) -> str:
    return ARCH_MAP.get(machine, machine.lower())


def detect_family(os_id: str, like: str = "") -> OsFamily:
    """Map a distro id (and its ID_LIKE list) to a family."""
    candidates = [os_id.lower(), *like.lower().split()]
    for candidate in candidates:
        for family, ids in _FAMILY_IDS.items():
            if candidate in ids:
                return family
    return OsFamily.UNKNOWN


def installed_packages(family: OsFamily, timeout: int = 60) -> dict[str, str]:
    """Installed package → version, or empty if the family has no query."""
    if family == OsFamily.ALPINE:
        return _apk_packages(timeout)
    argv = _PACKAGE_QUERIES.get(family)
    if argv is None:
        return {}
    result = run_command(argv, timeout=timeout, max_output=None)
    if not result.ok:
        logger.debug("Package query %s failed: %s", argv[0], result.stderr.strip())
        return {}
    packages = {}
    for line in result.stdout.splitlines():
        name, _, version = line.strip().partition(" ")
        if name:
            packages[name] = version.split(":", 1)[-1]
    return packages


def _apk_packages(timeout: int) -> dict[str, str]:
    result = run_command(["apk", "info", "-v"], timeout=timeout, max_output=None)
    if not result.ok:
        return {}
    packages = {}
    for line in result.stdout.splitlines():
        # e.g. "redis-7.2.4-r0": name, then version, then release
        parts = line.strip().rsplit("-", 2)
        if len(parts) == 3:
            packages[parts[0]] = parts[1]
    return packages


def gather_facts(include_packages: bool = False) -> HostFacts:
    """Inspect the running host.

    Args:
        include_packages: Also list installed packages (slower).
    """
    os_id = distro.id()
    major = distro.major_version()
    facts = HostFacts(
        os_family=detect_family(os_id, distro.like()),
        os_id=os_id,
        os_version=distro.version(),
        os_major=int(major) if major.isdigit() else None,
        arch=normalize_arch(platform.machine()),
        is_root=os.geteuid() == 0,
        home=str(Path.home()),
    )
    if include_packages:
        facts.installed = installed_packages(facts.os_family)
    logger.debug(
        "Host facts: %s %s (%s), arch=%s, root=%s",
        facts.os_id, facts.os_version, facts.os_family.value, facts.arch, facts.is_root,
    )
    return facts
