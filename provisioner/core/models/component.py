"""
Component model — the install recipe for one piece of software.

Components are loaded from ``components/<name>/component.yml``. A
component has common nodes that apply on every host plus variants,
each guarded by a ``when`` selector over host facts (OS family, major
version, architecture, privilege and installed packages). The first
matching variant wins.

Example::

    name: redis
    version: "7"
    nodes:
      - id: healthy
        probe: command
        parameters: {command: "redis-cli -p 6379 ping", expect: PONG}
        depends_on: [start]
    variants:
      - name: el7
        when: {os_family: rhel, os_major: [7]}
        nodes:
          - id: install
            action: package
            parameters: {packages: [epel-release, redis]}
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from provisioner.core.models.facts import HostFacts, OsFamily


def _as_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (str, int)):
        return [value]
    return value


class HostSelector(BaseModel):
    """Which hosts a variant applies to. Empty fields match anything."""

    os_family: list[OsFamily] = Field(default_factory=list)
    os_major: list[int] = Field(default_factory=list)
    arch: list[str] = Field(default_factory=list)
    root: bool | None = None
    installed: list[str] = Field(default_factory=list)  # every one must be installed

    @field_validator("os_family", "os_major", "arch", "installed", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        return _as_list(value)

    def matches(self, facts: HostFacts) -> bool:
        if self.os_family and facts.os_family not in self.os_family:
            return False
        if self.os_major and facts.os_major not in self.os_major:
            return False
        if self.arch and facts.arch not in self.arch:
            return False
        if self.root is not None and facts.is_root != self.root:
            return False
        if any(name not in facts.installed for name in self.installed):
            return False
        return True


class ComponentVariant(BaseModel):
    """A host-specific slice of a component's nodes."""

    name: str = ""
    when: HostSelector = Field(default_factory=HostSelector)
    nodes: list[dict[str, Any]] = Field(default_factory=list)


class ComponentSpec(BaseModel):
    """A software component and how to install it."""

    name: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_.-]+$")
    description: str = ""
    version: str | None = None      # pinned default; "latest" = unpinned
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    variants: list[ComponentVariant] = Field(default_factory=list)

    def select_variant(self, facts: HostFacts) -> ComponentVariant | None:
        """First variant whose selector matches, or None."""
        for variant in self.variants:
            if variant.when.matches(facts):
                return variant
        return None

    @property
    def needs_packages(self) -> bool:
        """Whether variant selection looks at installed packages."""
        return any(v.when.installed for v in self.variants)

    def supports(self, facts: HostFacts) -> bool:
        return not self.variants or self.select_variant(facts) is not None

    def all_raw_nodes(self) -> list[dict[str, Any]]:
        """Common nodes plus every variant's nodes (for static checks)."""
        raw = list(self.nodes)
        for variant in self.variants:
            raw.extend(variant.nodes)
        return raw
