"""
Tests for CLI commands — plan, apply, status, check and global options.
"""

import json
from pathlib import Path

from click.testing import CliRunner

from provisioner.main import cli


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Host provisioner" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_facts_json(self):
        result = CliRunner().invoke(cli, ["facts", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert "os_family" in data
        assert "arch" in data


class TestPlanCommand:
    def test_plan(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "plan", "cache"])
        assert result.exit_code == 0
        assert "cache/install" in result.output
        assert "cache/ping" in result.output

    def test_plan_json(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "plan", "cache", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [n["id"] for n in data["nodes"]] == ["cache/install", "cache/ping"]
        assert data["goals"] == ["cache/ping"]

    def test_plan_unknown_component(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "plan", "mysql"])
        assert result.exit_code == 1
        assert "Unknown component" in result.output

    def test_plan_version_with_several_components(self, config_file: Path):
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "plan", "cache", "web", "--version", "2"],
        )
        assert result.exit_code == 1
        assert "single component" in result.output


class TestApplyCommand:
    def test_apply_mock(self, project_dir: Path, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "apply", "cache", "--mock"])
        assert result.exit_code == 0, result.output
        assert "[mock] cache" in result.output
        assert "success" in result.output
        assert (project_dir / ".state" / "current.json").is_file()

    def test_apply_json(self, config_file: Path):
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "apply", "cache", "--mock", "--json", "--no-save"],
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["report"]["overallStatus"] == "success"
        assert data["versions"] == {"cache": "latest"}
        assert data["stateSaved"] is False

    def test_dry_run(self, project_dir: Path, config_file: Path):
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "apply", "cache", "--mock", "--dry-run"],
        )
        assert result.exit_code == 0
        assert "[dry-run]" in result.output
        assert "would change" in result.output
        assert not (project_dir / ".state").exists()

    def test_apply_unknown(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "apply", "mysql", "--mock"])
        assert result.exit_code == 1

    def test_apply_needs_names(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "apply"])
        assert result.exit_code == 2


class TestStatusCommand:
    def test_status_empty(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "status"])
        assert result.exit_code == 0
        assert "Nothing has been applied" in result.output

    def test_status_after_apply(self, config_file: Path):
        runner = CliRunner()
        runner.invoke(cli, ["--config", str(config_file), "apply", "cache", "--mock"])
        result = runner.invoke(cli, ["--config", str(config_file), "status"])
        assert result.exit_code == 0
        assert "cache" in result.output
        assert "success" in result.output

    def test_status_json(self, config_file: Path):
        runner = CliRunner()
        runner.invoke(cli, ["--config", str(config_file), "apply", "cache", "--mock"])
        result = runner.invoke(cli, ["--config", str(config_file), "status", "--json"])
        data = json.loads(result.output)
        assert data["state"]["components"]["cache"]["last_status"] == "success"
        assert len(data["history"]) == 1

    def test_status_missing_config(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["--config", str(tmp_path / "nope.yml"), "status"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestCheckAndComponents:
    def test_check_json(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "check", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["valid"] is True
        assert {c["name"] for c in data["components"]} == {"web", "cache"}
        assert "package" in data["handlers"]

    def test_check_invalid(self, project_dir: Path, config_file: Path):
        bad = project_dir / "components" / "bad"
        bad.mkdir()
        (bad / "component.yml").write_text("name: bad\nnodes:\n  - id: x\n    action: teleport\n")
        result = CliRunner().invoke(cli, ["--config", str(config_file), "check"])
        assert result.exit_code == 1
        assert "bad" in result.output

    def test_components_json(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "components", "--json"])
        assert result.exit_code == 0
        names = [c["name"] for c in json.loads(result.output)]
        assert names == ["cache", "web"]
