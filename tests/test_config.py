"""
Tests for configuration loading — settings, component discovery, config check.
"""

import textwrap
from pathlib import Path

import pytest

from provisioner.core.config.component_loader import (
    discover_components,
    load_component,
    select_components,
)
from provisioner.core.config.loader import ConfigError, find_config_file, load_settings
from provisioner.core.use_cases.config_check import check_components


class TestSettings:
    def test_defaults_without_file(self, tmp_path: Path):
        settings = load_settings(start_dir=tmp_path)
        assert settings.concurrency == 1
        assert settings.components_path == (tmp_path / "components").resolve()
        assert settings.state_path == (tmp_path / ".state").resolve()
        assert settings.action_defaults() == {}

    def test_paths_relative_to_config(self, tmp_path: Path):
        config = tmp_path / "provisioner.yml"
        config.write_text("components_dir: recipes\nstate_dir: var/state\nconcurrency: 4\n")
        settings = load_settings(config)
        assert settings.components_path == (tmp_path / "recipes").resolve()
        assert settings.state_path == (tmp_path / "var" / "state").resolve()
        assert settings.concurrency == 4

    def test_action_defaults(self, tmp_path: Path):
        config = tmp_path / "provisioner.yml"
        config.write_text(textwrap.dedent("""\
            default_timeout: 120
            default_retry:
              max_retries: 2
              base_delay: 3
        """))
        defaults = load_settings(config).action_defaults()
        assert defaults["timeout"] == 120
        assert defaults["retry"]["max_retries"] == 2

    def test_find_config_walks_up(self, tmp_path: Path):
        (tmp_path / "provisioner.yml").write_text("")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == tmp_path / "provisioner.yml"

    def test_empty_file_is_defaults(self, tmp_path: Path):
        config = tmp_path / "provisioner.yml"
        config.write_text("")
        assert load_settings(config).concurrency == 1

    def test_missing_explicit_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yml")

    def test_unknown_key(self, tmp_path: Path):
        config = tmp_path / "provisioner.yml"
        config.write_text("concurency: 2\n")
        with pytest.raises(ConfigError, match="Invalid settings"):
            load_settings(config)

    def test_invalid_yaml(self, tmp_path: Path):
        config = tmp_path / "provisioner.yml"
        config.write_text("concurrency: [1,\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(config)

    def test_not_a_mapping(self, tmp_path: Path):
        config = tmp_path / "provisioner.yml"
        config.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(config)


class TestComponentLoader:
    def test_discover(self, project_dir: Path):
        components = discover_components(project_dir / "components")
        assert sorted(components) == ["cache", "web"]
        assert components["web"].version == "1.2"

    def test_discover_skips_broken(self, project_dir: Path):
        broken = project_dir / "components" / "broken"
        broken.mkdir()
        (broken / "component.yml").write_text("name: [not, a, name]\n")
        components = discover_components(project_dir / "components")
        assert "broken" not in components
        assert len(components) == 2

    def test_missing_dir(self, tmp_path: Path):
        assert discover_components(tmp_path / "nothing") == {}

    def test_load_component_error(self, tmp_path: Path):
        path = tmp_path / "component.yml"
        path.write_text("description: no name\n")
        with pytest.raises(ConfigError, match="Invalid component"):
            load_component(path)

    def test_select_in_given_order(self, project_dir: Path):
        available = discover_components(project_dir / "components")
        selected = select_components(available, ["web", "cache", "web"])
        assert [c.name for c in selected] == ["web", "cache"]

    def test_select_unknown(self, project_dir: Path):
        available = discover_components(project_dir / "components")
        with pytest.raises(ConfigError, match="Unknown component"):
            select_components(available, ["web", "mysql"])


class TestConfigCheck:
    def test_valid_project(self, config_file: Path, rhel9):
        result = check_components(config_file, facts=rhel9)
        assert result.valid, result.to_dict()
        checks = {c.name: c for c in result.components}
        assert checks["web"].supported is True
        assert checks["web"].variants == ["el"]
        assert checks["cache"].node_count == 2

    def test_reports_cycle(self, project_dir: Path, config_file: Path):
        d = project_dir / "components" / "loop"
        d.mkdir()
        (d / "component.yml").write_text(textwrap.dedent("""\
            name: loop
            nodes:
              - id: a
                action: package
                depends_on: [b]
                parameters: {packages: [a]}
              - id: b
                action: package
                depends_on: [a]
                parameters: {packages: [b]}
        """))
        result = check_components(config_file)
        assert not result.valid
        loop = next(c for c in result.components if c.name == "loop")
        assert any("cycle" in e for e in loop.errors)

    def test_reports_bad_parameters(self, project_dir: Path, config_file: Path):
        d = project_dir / "components" / "bad"
        d.mkdir()
        (d / "component.yml").write_text(textwrap.dedent("""\
            name: bad
            nodes:
              - id: run
                action: shell
                parameters: {command: make install}
        """))
        result = check_components(config_file)
        bad = next(c for c in result.components if c.name == "bad")
        assert not bad.valid
        assert "bad/run" in bad.errors[0]

    def test_cross_component_dependency(self, project_dir: Path, config_file: Path):
        d = project_dir / "components" / "dash"
        d.mkdir()
        (d / "component.yml").write_text(textwrap.dedent("""\
            name: dash
            nodes:
              - id: install
                action: package
                depends_on: [web/healthy]
                parameters: {packages: [dash]}
              - id: wire
                action: package
                depends_on: [ghost/install]
                parameters: {packages: [wire]}
        """))
        result = check_components(config_file)
        dash = next(c for c in result.components if c.name == "dash")
        assert dash.errors == ["dash/wire depends on unknown component 'ghost'"]

    def test_missing_components_dir(self, tmp_path: Path):
        config = tmp_path / "provisioner.yml"
        config.write_text("components_dir: nowhere\n")
        result = check_components(config)
        assert not result.valid
        assert "not found" in result.errors[0]

    def test_shipped_components_are_valid(self, project_root: Path):
        result = check_components(project_root / "provisioner.yml")
        assert result.valid, [c.errors for c in result.components if c.errors]
        names = {c.name for c in result.components}
        assert {"redis", "nginx", "prometheus", "grafana", "terraform", "apache"} <= names
