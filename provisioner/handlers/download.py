"""
Download handler — fetch a URL to a local path, verifying its checksum.

The body is streamed into a temp file next to the destination and only
renamed into place once the checksum matches, so a failed or corrupted
download never replaces a good file.
"""

from __future__ import annotations

import hashlib
import logging
import os
import socket
import tempfile
import time
import urllib.error
import urllib.request
from pathlib import Path

from provisioner import __version__
from provisioner.core.models.action import ActionFailed, ActionResult, ErrorKind
from provisioner.core.models.params import ActionKind, DownloadParams
from provisioner.handlers.base import ExecutionContext, Handler

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024
_TRANSIENT_HTTP = {408, 425, 429, 500, 502, 503, 504}


def file_digest(path: Path, algo: str) -> str:
    h = hashlib.new(algo)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def verify_checksum(path: Path, expected: str) -> bool:
    """Verify file checksum. Format: ``algo:hex``."""
    algo, expected_hash = expected.split(":", 1)
    return file_digest(path, algo) == expected_hash.lower()


class DownloadHandler(Handler):
    """Downloads release artifacts and installer files."""

    @property
    def kind(self) -> ActionKind:
        return ActionKind.DOWNLOAD

    def check(self, context: ExecutionContext) -> bool:
        params: DownloadParams = context.params
        dest = Path(params.dest).expanduser()
        if not dest.is_file():
            return True
        if params.checksum and not verify_checksum(dest, params.checksum):
            logger.info("%s exists but its checksum differs", dest)
            return True
        if params.mode is not None and (dest.stat().st_mode & 0o7777) != int(params.mode, 8):
            return True
        return False

    def change(self, context: ExecutionContext) -> ActionResult:
        params: DownloadParams = context.params
        dest = Path(params.dest).expanduser()
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise ActionFailed(ErrorKind.PERMISSION_DENIED, f"cannot create {dest.parent}: {e}") from e

        fd, tmp_name = tempfile.mkstemp(dir=str(dest.parent), prefix=f".{dest.name}.", suffix=".part")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                size = self._fetch(params.url, out, context)
            if params.checksum and not verify_checksum(tmp_path, params.checksum):
                algo = params.checksum.split(":", 1)[0]
                raise ActionFailed(
                    ErrorKind.CONFLICT,
                    f"checksum mismatch for {params.url}: expected {params.checksum}, "
                    f"got {algo}:{file_digest(tmp_path, algo)}",
                )
            os.chmod(tmp_path, int(params.mode, 8) if params.mode else 0o644)
            os.replace(tmp_path, dest)
        except PermissionError as e:
            raise ActionFailed(ErrorKind.PERMISSION_DENIED, f"cannot write {dest}: {e}") from e
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        logger.info("Downloaded %s → %s (%d bytes)", params.url, dest, size)
        return ActionResult.success(
            changed=True,
            output=f"downloaded {params.url} to {dest}",
            metadata={"dest": str(dest), "size_bytes": size},
        )

    @staticmethod
    def _fetch(url: str, out, context: ExecutionContext) -> int:
        """Stream ``url`` into ``out``; returns the byte count.

        The socket timeout only bounds a single read, so the attempt's
        deadline is checked between chunks as well.
        """
        req = urllib.request.Request(url, headers={"User-Agent": f"host-provisioner/{__version__}"})
        size = 0
        try:
            with urllib.request.urlopen(req, timeout=context.timeout) as resp:
                for chunk in iter(lambda: resp.read1(_CHUNK), b""):
                    out.write(chunk)
                    size += len(chunk)
                    if time.monotonic() >= context.deadline:
                        raise ActionFailed(
                            ErrorKind.TIMEOUT,
                            f"timed out fetching {url} after {size} bytes",
                        )
        except urllib.error.HTTPError as e:
            kind = ErrorKind.DEPENDENCY_UNAVAILABLE if e.code in _TRANSIENT_HTTP else ErrorKind.OPERATION_FAILED
            raise ActionFailed(kind, f"HTTP {e.code} fetching {url}: {e.reason}") from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                raise ActionFailed(ErrorKind.TIMEOUT, f"timed out fetching {url}") from e
            if isinstance(e.reason, PermissionError):
                raise ActionFailed(ErrorKind.PERMISSION_DENIED, f"cannot read {url}: {e.reason}") from e
            if isinstance(e.reason, FileNotFoundError):
                raise ActionFailed(ErrorKind.OPERATION_FAILED, f"{url} does not exist") from e
            raise ActionFailed(ErrorKind.DEPENDENCY_UNAVAILABLE, f"cannot reach {url}: {e.reason}") from e
        except (socket.timeout, TimeoutError) as e:
            raise ActionFailed(ErrorKind.TIMEOUT, f"timed out fetching {url}") from e
        except ConnectionError as e:
            raise ActionFailed(ErrorKind.DEPENDENCY_UNAVAILABLE, f"connection to {url} failed: {e}") from e
        return size
