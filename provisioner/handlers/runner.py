"""
Subprocess runner — the single place handlers call ``subprocess.run``.

Also owns failure classification: stderr from package managers,
systemctl and shell commands is matched against ``FAILURE_PATTERNS``
to decide which ``ErrorKind`` a non-zero exit maps to.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import time
from dataclasses import dataclass

from provisioner.core.models.action import ActionFailed, ErrorKind

logger = logging.getLogger(__name__)

_TAIL = 4000  # chars of stdout/stderr kept per command

# First match wins, so the more specific permission patterns come before
# the generic network ones ("Permission denied (publickey)" is auth, not network).
FAILURE_PATTERNS: list[dict] = [
    # ── Permissions / sudo ──
    {
        "pattern": (
            r"is not in the sudoers file|a password is required|"
            r"incorrect password|sorry, try again"
        ),
        "kind": ErrorKind.PERMISSION_DENIED,
        "label": "No usable sudo",
    },
    {
        "pattern": (
            r"Permission denied|Operation not permitted|"
            r"you need to be root|are you root|must be run as root|"
            r"superuser privileges|EACCES"
        ),
        "kind": ErrorKind.PERMISSION_DENIED,
        "label": "Permission denied",
    },
    # ── Conflicts ──
    {
        "pattern": r"Address already in use|address in use|bind\(\) to .* failed",
        "kind": ErrorKind.CONFLICT,
        "label": "Port already bound",
    },
    {
        "pattern": r"conflicts with file from package|file .* conflicts with|Conflicts with",
        "kind": ErrorKind.CONFLICT,
        "label": "Package conflict",
    },
    # ── Network / repositories ──
    {
        "pattern": (
            r"Could not resolve|Connection timed out|Failed to fetch|"
            r"Network is unreachable|Temporary failure in name resolution|"
            r"Failed to connect|Connection refused|Curl error|"
            r"Cannot find a valid baseurl|Failed to download metadata|"
            r"Errors during downloading metadata|Unable to connect"
        ),
        "kind": ErrorKind.DEPENDENCY_UNAVAILABLE,
        "label": "Repository unreachable",
    },
    {
        "pattern": r"Could not get lock|dpkg was interrupted|another app is currently holding the yum lock|Waiting for process with pid",
        "kind": ErrorKind.DEPENDENCY_UNAVAILABLE,
        "label": "Package manager locked",
    },
]

_COMPILED = [(re.compile(h["pattern"], re.IGNORECASE), h) for h in FAILURE_PATTERNS]


@dataclass
class CommandResult:
    """What a command did."""

    argv: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def command(self) -> str:
        return " ".join(self.argv)


def classify_failure(result: CommandResult) -> ErrorKind:
    """Map a failed command to an ErrorKind."""
    if result.timed_out:
        return ErrorKind.TIMEOUT
    text = f"{result.stderr}\n{result.stdout}"
    for regex, handler in _COMPILED:
        if regex.search(text):
            logger.debug("Classified failure of %r as %s", result.command, handler["label"])
            return handler["kind"]
    return ErrorKind.OPERATION_FAILED


def privileged(argv: list[str], is_root: bool) -> list[str]:
    """Prefix ``argv`` with non-interactive sudo when not running as root.

    Raises:
        ActionFailed: PERMISSION_DENIED when root is needed and sudo is absent.
    """
    if is_root:
        return argv
    if shutil.which("sudo") is None:
        raise ActionFailed(
            ErrorKind.PERMISSION_DENIED,
            f"{argv[0]} needs root and sudo is not available",
        )
    return ["sudo", "-n", *argv]


def run_command(
    cmd: list[str] | str,
    *,
    timeout: float = 120,
    cwd: str | None = None,
    env_overrides: dict[str, str] | None = None,
    shell: bool = False,
    max_output: int | None = _TAIL,
) -> CommandResult:
    """Run a command and capture its output. Never raises for command failure.

    A missing executable is reported as exit code 127, the way a shell would.
    Only the last ``max_output`` characters of stdout and stderr are kept;
    pass None for listings that must be read in full.
    """
    argv = ["sh", "-c", cmd] if shell else list(cmd)

    env = os.environ.copy()
    if env_overrides:
        for key, value in env_overrides.items():
            env[key] = os.path.expandvars(value)

    logger.debug("Running: %s", " ".join(argv))
    start = time.monotonic()
    try:
        proc = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
            cwd=cwd,
            # Own session: a terminal Ctrl-C cancels the run, not the command.
            start_new_session=True,
        )
    except subprocess.TimeoutExpired as e:
        return CommandResult(
            argv=argv,
            exit_code=-1,
            stdout=_decode(e.stdout),
            stderr=_decode(e.stderr) or f"timed out after {timeout}s",
            elapsed_ms=int((time.monotonic() - start) * 1000),
            timed_out=True,
        )
    except FileNotFoundError:
        return CommandResult(argv=argv, exit_code=127, stderr=f"{argv[0]}: command not found")
    except PermissionError as e:
        return CommandResult(argv=argv, exit_code=126, stderr=f"{argv[0]}: Permission denied ({e})")

    return CommandResult(
        argv=argv,
        exit_code=proc.returncode,
        stdout=_tail(proc.stdout, max_output),
        stderr=_tail(proc.stderr, max_output),
        elapsed_ms=int((time.monotonic() - start) * 1000),
    )


def require_success(result: CommandResult, what: str) -> CommandResult:
    """Return ``result`` if it succeeded, else raise a classified ActionFailed."""
    if result.ok:
        return result
    kind = classify_failure(result)
    detail = (result.stderr or result.stdout).strip().splitlines()
    message = f"{what} failed (exit {result.exit_code})"
    if result.timed_out:
        message = f"{what} timed out"
    if detail:
        message = f"{message}: {detail[-1]}"
    raise ActionFailed(
        kind,
        message,
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.exit_code,
    )


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")[-_TAIL:]
    return data[-_TAIL:]


def _tail(text: str | None, limit: int | None) -> str:
    if not text:
        return ""
    return text if limit is None else text[-limit:]
