"""
Parameter schemas — one pydantic model per action and probe kind.

Action and Probe validate their ``parameters`` mapping against these
at construction time, so a Plan never carries a node whose handler
would reject its inputs.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ActionKind(StrEnum):
    """What kind of host change an action performs."""

    PACKAGE = "package"
    FILE = "file"
    SERVICE = "service"
    SHELL = "shell"
    DOWNLOAD = "download"


class ProbeKind(StrEnum):
    """What kind of read-only check a probe performs."""

    COMMAND = "command"
    SERVICE = "service"
    TCP = "tcp"
    HTTP = "http"


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# ── Action parameters ───────────────────────────────────────────────


class PackageParams(_Params):
    """Install one or more OS packages."""

    packages: list[str] = Field(min_length=1)
    version: str | None = None      # "latest" or None = unpinned
    manager: Literal["dnf", "yum", "apt-get", "apk"] | None = None
    enable_module: str | None = None  # dnf module stream, e.g. "redis:7"
    sources: dict[str, str] = Field(default_factory=dict)  # package → URL/path to install from

    @property
    def pinned_version(self) -> str | None:
        if self.version in (None, "", "latest"):
            return None
        return self.version


_OCTAL = re.compile(r"^0?[0-7]{3,4}$")


class FileParams(_Params):
    """Write a file with exact content."""

    path: str
    content: str
    mode: str | None = None
    owner: str | None = None
    group: str | None = None

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, value: str | None) -> str | None:
        if value is not None and not _OCTAL.match(value):
            raise ValueError(f"mode must be an octal string like '0644', got {value!r}")
        return value


class ServiceParams(_Params):
    """Bring a service unit to a state."""

    name: str
    state: Literal["started", "stopped"] = "started"
    enabled: bool | None = None
    port: int | None = Field(default=None, ge=1, le=65535)


class ShellParams(_Params):
    """Run a command, guarded so that re-running is a no-op."""

    command: str
    creates: str | None = None
    unless: str | None = None
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_guard(self) -> ShellParams:
        if not self.creates and not self.unless:
            raise ValueError(
                "shell actions need a 'creates' path or an 'unless' command "
                "so that re-running them is a no-op"
            )
        return self


_CHECKSUM = re.compile(r"^(sha256|sha1|md5|sha512):[0-9a-fA-F]+$")


class DownloadParams(_Params):
    """Fetch a URL to a local path."""

    url: str
    dest: str
    checksum: str | None = None     # "algo:hex"
    mode: str | None = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://", "file://")):
            raise ValueError(f"unsupported URL scheme: {value!r}")
        return value

    @field_validator("checksum")
    @classmethod
    def _check_checksum(cls, value: str | None) -> str | None:
        if value is not None and not _CHECKSUM.match(value):
            raise ValueError(f"checksum must look like 'sha256:<hex>', got {value!r}")
        return value

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, value: str | None) -> str | None:
        if value is not None and not _OCTAL.match(value):
            raise ValueError(f"mode must be an octal string like '0755', got {value!r}")
        return value


# ── Probe parameters ────────────────────────────────────────────────


class CommandProbeParams(_Params):
    """Healthy when the command exits 0 (and its output matches ``expect``)."""

    command: str
    expect: str | None = None       # regex searched in stdout+stderr


class ServiceProbeParams(_Params):
    """Healthy when the unit is active."""

    name: str


class TcpProbeParams(_Params):
    """Healthy when a TCP connection succeeds."""

    host: str = "127.0.0.1"
    port: int = Field(ge=1, le=65535)


class HttpProbeParams(_Params):
    """Healthy when the URL answers with the expected status."""

    url: str
    expect_status: int = 200
    expect_body: str | None = None


ACTION_PARAMS: dict[ActionKind, type[_Params]] = {
    ActionKind.PACKAGE: PackageParams,
    ActionKind.FILE: FileParams,
    ActionKind.SERVICE: ServiceParams,
    ActionKind.SHELL: ShellParams,
    ActionKind.DOWNLOAD: DownloadParams,
}

PROBE_PARAMS: dict[ProbeKind, type[_Params]] = {
    ProbeKind.COMMAND: CommandProbeParams,
    ProbeKind.SERVICE: ServiceProbeParams,
    ProbeKind.TCP: TcpProbeParams,
    ProbeKind.HTTP: HttpProbeParams,
}
