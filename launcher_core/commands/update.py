"""Update commands: check, plan, install and discover game builds."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click
import structlog
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from launcher_core.core.config import AppConfig
from launcher_core.core.deploy import DeploymentError
from launcher_core.core.download import NetworkError
from launcher_core.core.integrity import IntegrityError
from launcher_core.core.resolver import plan_update
from launcher_core.core.state import ConfigPersistenceError, LauncherState
from launcher_core.core.types import Branch, ProgressCallback
from launcher_core.core.updater import UpdateOrchestrator
from launcher_core.core.utils import platform_key
from launcher_core.core.version_info import VersionInfoClient

logger = structlog.get_logger()

UPDATE_ERRORS = (NetworkError, IntegrityError, DeploymentError, ConfigPersistenceError)

BRANCH_CHOICE = click.Choice([b.value for b in Branch], case_sensitive=False)


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    debug: bool = ctx.obj["debug"]
    return config, console, verbose, debug


def _output_json(data: dict[str, Any], console: Console) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2, default=str))


def _fail(console: Console, error: Exception, debug: bool) -> None:
    console.print(f"[red]Error: {error}[/red]")
    if isinstance(error, DeploymentError) and error.stderr:
        console.print(f"[dim]{error.stderr}[/dim]")
    if debug:
        import traceback
        console.print(traceback.format_exc())
    raise click.Abort() from error


def _resolve_branch(state: LauncherState, branch: str | None) -> Branch:
    return Branch(branch.lower()) if branch else state.load_branch()


@contextmanager
def _progress_reporter(console: Console, enabled: bool) -> Iterator[ProgressCallback | None]:
    """Yield a progress callback that drives a rich progress bar."""
    if not enabled:
        yield None
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Starting...", total=100)

        def report(message: str, percent: float | None = None, *extra: object) -> None:
            if percent is None:
                progress.update(task, description=message)
            else:
                progress.update(task, description=message, completed=percent)

        yield report


@click.group("update", short_help="Check and install game builds.")
def update_group() -> None:
    """Check, plan and install game builds.

    Builds are installed from full archives or chained differential
    archives. The installed build is recorded after every applied step,
    so an interrupted install resumes where it stopped.
    """
    pass


@update_group.command("check")
@click.option("--branch", "-b", type=BRANCH_CHOICE, help="Release channel (default: saved branch)")
@click.pass_context
def check(ctx: click.Context, branch: str | None) -> None:
    """Compare the installed build with the newest published build."""
    config, console, verbose, debug = _get_context_objects(ctx)
    state = LauncherState(config.data_dir)

    try:
        selected = _resolve_branch(state, branch)
        installed = state.load_installed_version()
        with VersionInfoClient(config) as client:
            latest = client.get_latest_version(selected)
    except UPDATE_ERRORS as e:
        _fail(console, e, debug)
        return

    up_to_date = installed is not None and installed >= latest
    if config.output_format == "json":
        _output_json(
            {
                "platform": platform_key(),
                "branch": selected.value,
                "installed": installed,
                "latest": latest,
                "up_to_date": up_to_date,
            },
            console,
        )
        return

    table = Table(title="Game Version", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Platform", platform_key())
    table.add_row("Branch", selected.value)
    table.add_row("Installed", str(installed) if installed is not None else "none")
    table.add_row("Latest", str(latest))
    console.print(table)

    if up_to_date:
        console.print("[green]Game is up to date[/green]")
    else:
        console.print(f"[yellow]Update available: {installed or 'none'} -> {latest}[/yellow]")


@update_group.command("plan")
@click.option("--target", "-t", type=int, help="Target build (default: latest)")
@click.option("--branch", "-b", type=BRANCH_CHOICE, help="Release channel (default: saved branch)")
@click.pass_context
def plan(ctx: click.Context, target: int | None, branch: str | None) -> None:
    """Show the steps an update would apply."""
    config, console, verbose, debug = _get_context_objects(ctx)
    state = LauncherState(config.data_dir)

    try:
        selected = _resolve_branch(state, branch)
        current = state.load_installed_version()
        with VersionInfoClient(config) as client:
            if target is None:
                target = client.get_latest_version(selected)
            update_plan = plan_update(current, target, selected)
            rows = []
            for step in update_plan.steps:
                if step.force_full:
                    rows.append((step.version, "full", None))
                    continue
                details = client.get_version_details(step.version, selected)
                if details.differential_url and details.is_differential:
                    rows.append((step.version, "differential", details.source_version))
                else:
                    rows.append((step.version, "full", None))
    except UPDATE_ERRORS as e:
        _fail(console, e, debug)
        return

    if config.output_format == "json":
        _output_json(
            {
                "current": current,
                "target": target,
                "branch": selected.value,
                "steps": [
                    {"version": version, "mode": mode, "source": source}
                    for version, mode, source in rows
                ],
            },
            console,
        )
        return

    if update_plan.is_empty:
        console.print(f"[green]Nothing to do: installed build {current} is current[/green]")
        return

    table = Table(title=f"Update Plan ({current or 'none'} -> {target}, {selected.value})")
    table.add_column("Step", justify="right", style="dim")
    table.add_column("Build", justify="right", style="cyan")
    table.add_column("Archive", style="green")
    table.add_column("From", justify="right", style="yellow")
    for index, (version, mode, source) in enumerate(rows, start=1):
        table.add_row(str(index), str(version), mode, str(source) if source is not None else "-")
    console.print(table)


@update_group.command("install")
@click.option("--target", "-t", type=int, help="Target build (default: latest)")
@click.option("--branch", "-b", type=BRANCH_CHOICE, help="Release channel (default: saved branch)")
@click.pass_context
def install(ctx: click.Context, target: int | None, branch: str | None) -> None:
    """Install or update the game to a build."""
    config, console, verbose, debug = _get_context_objects(ctx)
    state = LauncherState(config.data_dir)

    try:
        selected = _resolve_branch(state, branch)
        with VersionInfoClient(config) as client:
            if target is None:
                target = client.get_latest_version(selected)
            orchestrator = UpdateOrchestrator(config, state, version_client=client)
            with _progress_reporter(console, config.output_format == "rich") as progress:
                report = orchestrator.ensure_game_installed(target, selected, progress)
        state.save_branch(selected)
    except UPDATE_ERRORS as e:
        _fail(console, e, debug)
        return

    if config.output_format == "json":
        _output_json(
            {
                "previous": report.previous,
                "installed": report.installed,
                "branch": report.branch.value,
                "skipped": report.skipped,
                "steps": [
                    {
                        "version": step.version,
                        "mode": step.mode.value,
                        "fell_back_to_full": step.fell_back_to_full,
                    }
                    for step in report.steps
                ],
            },
            console,
        )
        return

    if report.skipped or not report.steps:
        console.print(f"[green]Build {target} is already installed[/green]")
        return

    if verbose:
        for step in report.steps:
            note = " (full fallback)" if step.fell_back_to_full else ""
            console.print(f"  {step.version}: {step.mode.value}{note}")
    console.print(f"[green]Installed build {report.installed} ({len(report.steps)} step(s))[/green]")


@update_group.command("discover")
@click.option("--branch", "-b", type=BRANCH_CHOICE, help="Release channel (default: saved branch)")
@click.option("--max-probe", type=click.IntRange(min=1), default=50, show_default=True,
              help="How many builds below the latest to probe")
@click.pass_context
def discover(ctx: click.Context, branch: str | None, max_probe: int) -> None:
    """List builds that have a published full archive."""
    config, console, verbose, debug = _get_context_objects(ctx)
    state = LauncherState(config.data_dir)

    try:
        selected = _resolve_branch(state, branch)
        with VersionInfoClient(config) as client:
            latest = client.get_latest_version(selected)
            available = client.discover_available_versions(latest, selected, max_probe=max_probe)
    except UPDATE_ERRORS as e:
        _fail(console, e, debug)
        return

    if config.output_format == "json":
        _output_json({"branch": selected.value, "latest": latest, "available": available}, console)
        return

    if not available:
        console.print("[yellow]No published builds found[/yellow]")
        return

    table = Table(title=f"Available Builds ({selected.value})")
    table.add_column("Build", justify="right", style="cyan")
    for version in available:
        table.add_row(str(version))
    console.print(table)
    console.print(f"\n[green]Total builds: {len(available)}[/green]")
