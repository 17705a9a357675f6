"""
Shell handler — run a guarded command.

A shell action must say how to tell it has already run: a ``creates``
path that the command produces, or an ``unless`` command that exits 0
once the work is done. Either guard turns a re-run into a no-op.
"""

from __future__ import annotations

import logging
from pathlib import Path

from provisioner.core.models.action import ActionFailed, ActionResult, ErrorKind
from provisioner.core.models.params import ActionKind, ShellParams
from provisioner.handlers.base import ExecutionContext, Handler
from provisioner.handlers.runner import require_success, run_command

logger = logging.getLogger(__name__)


class ShellHandler(Handler):
    """Runs commands through ``sh -c``."""

    @property
    def kind(self) -> ActionKind:
        return ActionKind.SHELL

    def check(self, context: ExecutionContext) -> bool:
        params: ShellParams = context.params
        if params.creates and Path(params.creates).expanduser().exists():
            logger.debug("%s exists, skipping %s", params.creates, context.action.id)
            return False
        if params.unless:
            guard = run_command(
                params.unless,
                shell=True,
                timeout=context.timeout,
                cwd=params.cwd,
                env_overrides=params.env,
            )
            if guard.timed_out:
                raise ActionFailed(ErrorKind.TIMEOUT, f"guard {params.unless!r} timed out")
            if guard.ok:
                logger.debug("Guard %r passed, skipping %s", params.unless, context.action.id)
                return False
        return True

    def change(self, context: ExecutionContext) -> ActionResult:
        params: ShellParams = context.params
        result = require_success(
            run_command(
                params.command,
                shell=True,
                timeout=context.timeout,
                cwd=params.cwd,
                env_overrides=params.env,
            ),
            f"command {params.command!r}",
        )
        return ActionResult.success(
            changed=True,
            output=f"ran {params.command}",
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
        )
