"""
Host provisioner — CLI entrypoint.

Usage:
    provisioner --help
    provisioner facts
    provisioner plan redis
    provisioner apply prometheus grafana --dry-run
"""

from __future__ import annotations

import json
import signal
import sys
from pathlib import Path

import click

from provisioner import __version__
from provisioner.core.observability.logging_config import resolve_level, setup_logging

_STATUS_COLORS = {"success": "green", "partial_failure": "yellow", "failure": "red"}
_NODE_MARKS = {
    "succeeded": ("✓", "green"),
    "failed": ("✗", "red"),
    "skipped": ("⊘", "yellow"),
}


@click.group()
@click.version_option(version=__version__, prog_name="provisioner")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to provisioner.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Host provisioner: bring software on this host to a declared state."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    setup_logging(level=resolve_level(debug, verbose, quiet), quiet_third_party=not debug)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--packages", is_flag=True, help="Also list installed packages.")
def facts(as_json: bool, packages: bool) -> None:
    """Show what the provisioner knows about this host."""
    from provisioner.core.services.facts import gather_facts

    host = gather_facts(include_packages=packages)

    if as_json:
        click.echo(json.dumps(host.model_dump(mode="json"), indent=2))
        return

    click.secho("\n🖥  Host facts", fg="cyan", bold=True)
    click.echo(f"   OS:       {host.os_id or 'unknown'} {host.os_version} ({host.os_family.value})")
    click.echo(f"   Arch:     {host.arch}")
    click.echo(f"   Root:     {'yes' if host.is_root else 'no'}")
    click.echo(f"   Prefix:   {host.prefix}")
    click.echo(f"   Packages: {host.default_package_manager or 'no supported manager'}")
    if packages:
        click.echo(f"   Installed: {len(host.installed)} packages")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def components(ctx: click.Context, as_json: bool) -> None:
    """List available components and whether they support this host."""
    from provisioner.core.use_cases.plan import list_components

    infos, error = list_components(config_path=ctx.obj.get("config_path"))

    if as_json:
        if error:
            click.echo(json.dumps({"error": error}, indent=2))
            sys.exit(1)
        click.echo(json.dumps([vars(i) for i in infos], indent=2))
        return

    if error:
        click.secho(f"❌ {error}", fg="red")
        sys.exit(1)

    if not infos:
        click.echo("No components found.")
        return

    click.secho(f"\n📦 Components: {len(infos)}", fg="cyan", bold=True)
    for info in infos:
        mark, color = ("✓", "green") if info.supported else ("✗", "red")
        click.secho(f"   {mark} ", fg=color, nl=False)
        variant = f" [{info.variant}]" if info.variant else ""
        click.echo(f"{info.name} {info.version}{variant}  {info.description}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def check(ctx: click.Context, as_json: bool) -> None:
    """Validate provisioner.yml and every component file."""
    from provisioner.core.services.facts import gather_facts
    from provisioner.core.use_cases.config_check import check_components
    from provisioner.handlers.registry import default_registry

    result = check_components(
        config_path=ctx.obj.get("config_path"),
        facts=gather_facts(),
        handler_status=default_registry().handler_status(),
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        click.secho("✅ Configuration is valid", fg="green", bold=True)
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    for comp in result.components:
        mark, color = ("✓", "green") if comp.valid else ("✗", "red")
        host = "" if comp.supported is None else (" (this host)" if comp.supported else " (not this host)")
        click.secho(f"   {mark} {comp.name}", fg=color, nl=False)
        click.echo(f"  {comp.node_count} nodes{host}")
        for err in comp.errors:
            click.echo(f"     │ {err}")
        for warn in comp.warnings:
            click.secho(f"     │ {warn}", fg="yellow")

    unavailable = [k for k, s in result.handlers.items() if not s["available"]]
    if unavailable and not ctx.obj.get("quiet"):
        click.secho(f"   Tools missing for: {', '.join(unavailable)}", fg="yellow")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(1)


@cli.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--version", "version", default=None, help="Version to install (single component).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, names: tuple[str, ...], version: str | None, as_json: bool) -> None:
    """Show the plan for one or more components without running it."""
    from provisioner.core.use_cases.plan import build_plan_for

    result = build_plan_for(list(names), config_path=ctx.obj.get("config_path"), version=version)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    assert result.plan is not None
    versions = ", ".join(f"{n} {v}" for n, v in result.versions.items())
    click.secho(f"\n📋 {result.plan.name}  ({versions})", fg="cyan", bold=True)
    goals = set(result.plan.goals())
    for index, row in enumerate(result.plan.describe(), start=1):
        deps = f"  ← {', '.join(row['depends_on'])}" if row["depends_on"] else ""
        optional = "" if row["required"] else " (optional)"
        goal = " ★" if row["id"] in goals else ""
        click.echo(f"   {index:>2}. {row['id']}  [{row['type']}:{row['kind']}]{optional}{goal}{deps}")
        if ctx.obj.get("verbose") and row["description"]:
            click.echo(f"       {row['description']}")
    click.echo()


@cli.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--dry-run", is_flag=True, help="Report what would change without changing it.")
@click.option("--concurrency", "-j", type=int, default=None, help="Nodes to run at once.")
@click.option("--version", "version", default=None, help="Version to install (single component).")
@click.option("--mock", is_flag=True, help="Use mock handlers (no real execution).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--no-save", is_flag=True, help="Don't record the run in state or the audit ledger.")
@click.pass_context
def apply(
    ctx: click.Context,
    names: tuple[str, ...],
    dry_run: bool,
    concurrency: int | None,
    version: str | None,
    mock: bool,
    as_json: bool,
    no_save: bool,
) -> None:
    """Provision components on this host.

    Examples:

        provisioner apply redis

        provisioner apply prometheus grafana -j 2

        provisioner apply terraform --version 1.7.5 --dry-run
    """
    from provisioner.core.engine.executor import CancellationToken
    from provisioner.core.use_cases.apply import run_apply

    token = CancellationToken()

    def _on_sigint(signum, frame):
        if not as_json:
            click.secho("\n⚠️  Cancelling: running nodes will finish, nothing new starts.", fg="yellow", err=True)
        token.cancel()
        signal.signal(signal.SIGINT, previous)

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        result = run_apply(
            list(names),
            config_path=ctx.obj.get("config_path"),
            dry_run=dry_run,
            concurrency=concurrency,
            version=version,
            mock_mode=mock,
            save=not no_save,
            cancellation=token,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None

    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    click.secho(f"\n⚡ {mode_label}{report.plan_name}", fg="cyan", bold=True)
    click.echo(f"   Operation: {report.operation_id} | Nodes: {report.total}")
    click.echo()

    for node in report.node_results:
        mark, color = _NODE_MARKS.get(node.status.value, ("?", "white"))
        click.secho(f"   {mark} {node.node_id}", fg=color, nl=False)
        if node.skipped:
            reason = node.skip_reason.value if node.skip_reason else "skipped"
            blocked = f" by {node.blocked_by}" if node.blocked_by else ""
            click.echo(f"  ({reason}{blocked})")
            continue
        detail = " changed" if node.changed else ""
        if dry_run and node.node_type == "action":
            detail = " would change" if node.changed else " no change"
        if node.attempts > 1:
            detail += f", {node.attempts} attempts"
        click.echo(f"{detail} ({node.duration_ms}ms)")
        if node.error:
            click.echo(f"     │ {node.error.kind.value}: {node.error.message}")
        elif ctx.obj.get("verbose") and node.output.get("message"):
            click.echo(f"     │ {node.output['message']}")

    click.echo()
    status = report.overall_status.value
    click.secho(
        f"   Result: {status} ({report.succeeded} succeeded, {report.failed} failed, "
        f"{report.skipped} skipped, {report.changed} changed)",
        fg=_STATUS_COLORS.get(status, "white"),
        bold=True,
    )
    if report.cancelled:
        click.secho("   Run was cancelled.", fg="yellow")
    click.echo()

    if not report.ok:
        sys.exit(1)


@cli.command()
@click.option("--component", default=None, help="Only history for this component.")
@click.option("--history", "-n", default=10, type=int, help="Ledger entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, component: str | None, history: int, as_json: bool) -> None:
    """Show recorded state and recent runs."""
    from provisioner.core.use_cases.status import get_status

    result = get_status(config_path=ctx.obj.get("config_path"), component=component, history=history)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    state = result.state
    assert state is not None

    if not state.components:
        click.echo("Nothing has been applied on this host yet.")
        return

    click.secho("\n📋 Components", fg="cyan", bold=True)
    for name, cs in sorted(state.components.items()):
        click.echo(f"   • {name} {cs.version or ''}  ", nl=False)
        click.secho(cs.last_status or "unknown", fg=_STATUS_COLORS.get(cs.last_status or "", "white"), nl=False)
        click.echo(f"  at {cs.last_applied_at}")

    op = state.last_operation
    if op.operation_id:
        click.echo()
        click.secho("   Last operation:", fg="white", bold=True)
        click.echo(f"     {op.plan_name} ({op.operation_id}): ", nl=False)
        click.secho(op.status, fg=_STATUS_COLORS.get(op.status, "white"))

    if result.history and not ctx.obj.get("quiet"):
        click.echo()
        click.secho("   History:", fg="white", bold=True)
        for entry in reversed(result.history):
            click.echo(
                f"     {entry.timestamp[:19]}  {entry.operation_type:<7} {entry.plan:<24} {entry.status}"
            )
    click.echo()


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
