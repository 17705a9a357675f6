"""
Audit ledger — append-only history of apply runs.

One NDJSON line per run in ``.state/audit.ndjson``. Entries are never
rewritten; ``status`` reads the tail to show recent history.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from provisioner.core.engine.report import Report

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """One apply (or dry-run) in the ledger."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    operation_type: str = "apply"   # apply, dry-run
    plan: str = ""
    components: list[str] = Field(default_factory=list)

    status: str = ""                # success, partial_failure, failure
    cancelled: bool = False
    nodes_total: int = 0
    nodes_succeeded: int = 0
    nodes_failed: int = 0
    nodes_skipped: int = 0
    nodes_changed: int = 0
    duration_ms: int = 0

    errors: list[str] = Field(default_factory=list)   # "node: kind: message"
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: Report, components: list[str], **context: Any) -> AuditEntry:
        errors = [
            f"{r.node_id}: {r.error.kind.value}: {r.error.message}"
            for r in report.node_results
            if r.error is not None
        ]
        return cls(
            operation_id=report.operation_id,
            operation_type="dry-run" if report.dry_run else "apply",
            plan=report.plan_name,
            components=components,
            status=report.overall_status.value,
            cancelled=report.cancelled,
            nodes_total=report.total,
            nodes_succeeded=report.succeeded,
            nodes_failed=report.failed,
            nodes_skipped=report.skipped,
            nodes_changed=report.changed,
            duration_ms=report.duration_ms,
            errors=errors,
            context=context,
        )


class AuditWriter:
    """Appends entries to, and reads entries from, the ledger file."""

    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        if path is not None:
            self._path = path
        elif state_dir is not None:
            self._path = state_dir / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(".state") / DEFAULT_AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append one entry. A write failure is logged, not raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s/%s", entry.operation_type, entry.operation_id)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def read_recent(self, n: int = 20, component: str | None = None) -> list[AuditEntry]:
        """Last ``n`` entries, oldest first, optionally for one component."""
        if not self._path.is_file():
            return []
        recent: deque[AuditEntry] = deque(maxlen=n)
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = AuditEntry.model_validate(json.loads(line))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
                        continue
                    if component and component not in entry.components:
                        continue
                    recent.append(entry)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)
        return list(recent)

    def entry_count(self) -> int:
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
