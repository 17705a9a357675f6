"""
Tests for persistence — state file and audit ledger.
"""

import json
from pathlib import Path

from provisioner.core.engine.executor import execute
from provisioner.core.engine.plan import build_plan
from provisioner.core.models.action import ErrorKind
from provisioner.core.models.state import ProvisionState
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.state_file import load_state, save_state, state_path


class TestStateFile:
    """Tests for state file persistence."""

    def test_save_and_load(self, tmp_state_dir: Path):
        path = state_path(tmp_state_dir)
        state = ProvisionState(host={"os_id": "rocky"})
        state.set_component_state("redis", version="7.2", last_status="success", nodes_changed=4)
        state.last_operation.operation_id = "op-1"

        save_state(state, path)
        assert path.name == "current.json"

        loaded = load_state(path)
        assert loaded.host["os_id"] == "rocky"
        assert loaded.components["redis"].nodes_changed == 4
        assert loaded.last_operation.operation_id == "op-1"

    def test_load_missing_returns_fresh(self, tmp_path: Path):
        state = load_state(tmp_path / "nonexistent.json")
        assert state.components == {}

    def test_load_corrupt_returns_fresh(self, tmp_path: Path):
        path = tmp_path / "corrupt.json"
        path.write_text("not json at all {{{")
        assert load_state(path).components == {}

    def test_save_creates_directories_and_no_temp_files(self, tmp_path: Path):
        path = tmp_path / "deep" / "nested" / "current.json"
        save_state(ProvisionState(), path)
        assert [p.name for p in path.parent.iterdir()] == ["current.json"]
        data = json.loads(path.read_text())
        assert data["schema_version"] == 1


class TestAuditLedger:
    def _report(self, action, mock_registry, mock_handler):
        mock_handler.set_failure("redis/start", ErrorKind.CONFLICT, "port busy")
        plan = build_plan([action("redis/install"), action("redis/start", "redis/install")], name="redis")
        return execute(plan, mock_registry)

    def test_entry_from_report(self, action, mock_registry, mock_handler):
        report = self._report(action, mock_registry, mock_handler)
        entry = AuditEntry.from_report(report, ["redis"], mock=True)
        assert entry.operation_id == report.operation_id
        assert entry.operation_type == "apply"
        assert entry.status == "failure"
        assert entry.nodes_succeeded == 1
        assert entry.nodes_failed == 1
        assert entry.errors == ["redis/start: conflict: port busy"]
        assert entry.context == {"mock": True}

    def test_write_and_read(self, tmp_state_dir: Path):
        writer = AuditWriter(state_dir=tmp_state_dir)
        for i in range(5):
            writer.write(AuditEntry(operation_id=f"op-{i}", components=["redis"] if i % 2 else ["nginx"]))

        assert writer.path == tmp_state_dir / "audit.ndjson"
        assert writer.entry_count() == 5
        assert [e.operation_id for e in writer.read_recent(2)] == ["op-3", "op-4"]
        assert [e.operation_id for e in writer.read_recent(10, component="redis")] == ["op-1", "op-3"]

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        path = tmp_path / "audit.ndjson"
        path.write_text('{"operation_id": "op-1"}\nnot json\n\n{"operation_id": "op-2"}\n')
        entries = AuditWriter(path=path).read_recent()
        assert [e.operation_id for e in entries] == ["op-1", "op-2"]

    def test_missing_ledger(self, tmp_path: Path):
        writer = AuditWriter(state_dir=tmp_path)
        assert writer.read_recent() == []
        assert writer.entry_count() == 0
