"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from provisioner.core.models.action import Action
from provisioner.core.models.facts import HostFacts, OsFamily
from provisioner.core.models.probe import Probe
from provisioner.handlers.mock import MockHandler, MockProbe
from provisioner.handlers.registry import HandlerRegistry


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def rhel9() -> HostFacts:
    return HostFacts(
        os_family=OsFamily.RHEL,
        os_id="rocky",
        os_version="9.3",
        os_major=9,
        arch="amd64",
        is_root=True,
        home="/root",
    )


@pytest.fixture
def mock_handler() -> MockHandler:
    return MockHandler()


@pytest.fixture
def mock_probe() -> MockProbe:
    return MockProbe()


@pytest.fixture
def mock_registry(mock_handler: MockHandler, mock_probe: MockProbe) -> HandlerRegistry:
    """Registry that routes every action and probe to the mocks."""
    registry = HandlerRegistry()
    registry.set_mock_mode(True, mock_handler=mock_handler, mock_checker=mock_probe)
    return registry


@pytest.fixture
def sleeps() -> list[float]:
    """Collects delays instead of sleeping; pass ``sleeps.append`` as the executor's sleep."""
    return []


def make_action(node_id: str, *depends_on: str, **fields) -> Action:
    """Shell action whose parameters are unique to its id."""
    parameters = fields.pop("parameters", None) or {
        "command": f"install {node_id}",
        "unless": f"installed {node_id}",
    }
    return Action(
        id=node_id,
        kind=fields.pop("kind", "shell"),
        parameters=parameters,
        depends_on=depends_on,
        **fields,
    )


def make_probe(node_id: str, *depends_on: str, **fields) -> Probe:
    parameters = fields.pop("parameters", None) or {"command": f"check {node_id}"}
    return Probe(
        id=node_id,
        kind=fields.pop("kind", "command"),
        parameters=parameters,
        depends_on=depends_on,
        **fields,
    )


@pytest.fixture
def action():
    return make_action


@pytest.fixture
def probe():
    return make_probe


# ── Project on disk ─────────────────────────────────────────────────

WEB_COMPONENT = textwrap.dedent("""\
    name: web
    description: Test web server
    version: "1.2"
    nodes:
      - id: install
        action: package
        parameters: {packages: [web-server], version: "${version}"}
      - id: start
        action: service
        depends_on: [install]
        parameters: {name: web, port: 8080}
      - id: healthy
        probe: tcp
        depends_on: [start]
        parameters: {port: 8080}
    variants:
      - name: el
        when: {os_family: rhel}
        nodes: []
""")

CACHE_COMPONENT = textwrap.dedent("""\
    name: cache
    nodes:
      - id: install
        action: package
        parameters: {packages: [cache-server]}
      - id: ping
        probe: command
        depends_on: [install]
        parameters: {command: cache-cli ping, expect: PONG}
""")


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A provisioner.yml plus two components (web, cache)."""
    (tmp_path / "provisioner.yml").write_text(
        "components_dir: components\nstate_dir: .state\n"
    )
    for name, content in (("web", WEB_COMPONENT), ("cache", CACHE_COMPONENT)):
        d = tmp_path / "components" / name
        d.mkdir(parents=True)
        (d / "component.yml").write_text(content)
    return tmp_path


@pytest.fixture
def config_file(project_dir: Path) -> Path:
    return project_dir / "provisioner.yml"
