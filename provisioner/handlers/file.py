"""
File handler — write a file with exact content, mode and ownership.

Writes are atomic: content goes to a temp file in the same directory
which is then renamed over the target, so readers never see a partial
file.
"""

from __future__ import annotations

import grp
import logging
import os
import pwd
import shutil
import tempfile
from pathlib import Path

from provisioner.core.models.action import ActionFailed, ActionResult, ErrorKind
from provisioner.core.models.params import ActionKind, FileParams
from provisioner.handlers.base import ExecutionContext, Handler

logger = logging.getLogger(__name__)


class FileHandler(Handler):
    """Ensures a file exists with the given content."""

    @property
    def kind(self) -> ActionKind:
        return ActionKind.FILE

    def check(self, context: ExecutionContext) -> bool:
        return bool(self.differences(context.params))

    def change(self, context: ExecutionContext) -> ActionResult:
        params: FileParams = context.params
        path = Path(params.path).expanduser()
        diffs = self.differences(params)

        try:
            if "content" in diffs:
                self._write_atomic(path, params.content, params.mode)
            elif "mode" in diffs:
                os.chmod(path, int(params.mode, 8))
            if params.owner or params.group:
                shutil.chown(path, user=params.owner, group=params.group)
        except PermissionError as e:
            raise ActionFailed(ErrorKind.PERMISSION_DENIED, f"cannot write {path}: {e}") from e
        except LookupError as e:
            raise ActionFailed(ErrorKind.OPERATION_FAILED, f"cannot chown {path}: {e}") from e
        except OSError as e:
            raise ActionFailed(ErrorKind.OPERATION_FAILED, f"cannot write {path}: {e}") from e

        logger.info("Wrote %s (%s)", path, ", ".join(diffs))
        return ActionResult.success(
            changed=True,
            output=f"updated {path}: {', '.join(diffs)}",
            metadata={"path": str(path), "changed_fields": diffs},
        )

    @staticmethod
    def differences(params: FileParams) -> list[str]:
        """What differs between the file on disk and the desired state."""
        path = Path(params.path).expanduser()
        if not path.is_file():
            return ["content"]
        diffs = []
        try:
            if path.read_text(encoding="utf-8") != params.content:
                diffs.append("content")
        except (UnicodeDecodeError, PermissionError):
            diffs.append("content")
        st = path.stat()
        if params.mode is not None and (st.st_mode & 0o7777) != int(params.mode, 8):
            diffs.append("mode")
        if params.owner is not None and _user_name(st.st_uid) != params.owner:
            diffs.append("owner")
        if params.group is not None and _group_name(st.st_gid) != params.group:
            diffs.append("group")
        return diffs

    @staticmethod
    def _write_atomic(path: Path, content: str, mode: str | None) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            if mode is not None:
                os.chmod(tmp_path, int(mode, 8))
            elif path.exists():
                os.chmod(tmp_path, path.stat().st_mode & 0o7777)
            else:
                os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)
