"""Patch commands: rewrite the client's auth domain and fetch the server agent."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console
from rich.table import Table

from launcher_core.core.agent import ensure_agent_available
from launcher_core.core.backup import backup_path_for
from launcher_core.core.config import AppConfig
from launcher_core.core.download import Downloader, NetworkError
from launcher_core.core.paths import find_client_path, server_dir
from launcher_core.core.patcher import (
    ClientPatcher,
    PatchError,
    domain_strategy,
    read_patch_record,
)
from launcher_core.core.state import ConfigPersistenceError, LauncherState

logger = structlog.get_logger()

PATCH_ERRORS = (PatchError, NetworkError, ConfigPersistenceError, OSError)


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
    if debug:
        import traceback
        console.print(traceback.format_exc())
    raise click.Abort() from error


def _make_patcher(config: AppConfig, downloader: Downloader | None = None, domain: str | None = None) -> ClientPatcher:
    patcher_config = config.patcher
    if domain:
        patcher_config = patcher_config.model_copy(update={"auth_domain": domain})
    return ClientPatcher(patcher_config, LauncherState(config.data_dir), downloader)


def _require_client(game_dir: Path) -> Path:
    binary = find_client_path(game_dir)
    if binary is None:
        raise PatchError(f"Client binary not found under {game_dir}", path=game_dir)
    return binary


@click.group("patch", short_help="Patch the client for a custom auth domain.")
def patch_group() -> None:
    """Patch the client binary for a custom auth domain.

    The vendor domain embedded in the client is overwritten in place.
    The untouched binary is kept as a sibling .original backup, and a
    .patched_custom record notes the domain the binary was patched for.
    """
    pass


@patch_group.command("status")
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show whether the client is patched for the configured domain."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        binary = _require_client(config.game_dir)
        patcher = _make_patcher(config)
        target = patcher.target_domain
        patch_status = patcher.get_patch_status(binary)
        record = read_patch_record(binary)
    except PATCH_ERRORS as e:
        _fail(console, e, debug)
        return

    strategy = domain_strategy(target)
    backup = backup_path_for(binary)

    if config.output_format == "json":
        _output_json(
            {
                "binary": str(binary),
                "target_domain": target,
                "mode": strategy.mode.value,
                "patched": patch_status.patched,
                "patched_for": patch_status.current_domain,
                "needs_restore": patch_status.needs_restore,
                "backup": str(backup) if backup.exists() else None,
                "patched_at": record.patched_at if record else None,
            },
            console,
        )
        return

    table = Table(title="Client Patch Status", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Binary", str(binary))
    table.add_row("Target domain", target)
    table.add_row("Mode", strategy.mode.value)
    if strategy.subdomain_prefix:
        table.add_row("Subdomain prefix", strategy.subdomain_prefix)
    table.add_row("Main domain", strategy.main_domain)
    table.add_row("Patched", "[green]yes[/green]" if patch_status.patched else "[yellow]no[/yellow]")
    if patch_status.current_domain and patch_status.needs_restore:
        table.add_row("Patched for", patch_status.current_domain)
    if record:
        table.add_row("Patched at", record.patched_at)
    table.add_row("Backup", str(backup) if backup.exists() else "none")
    console.print(table)


@patch_group.command("apply")
@click.option("--domain", help="Auth domain to patch for (overrides configuration)")
@click.pass_context
def apply(ctx: click.Context, domain: str | None) -> None:
    """Patch the client binary."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        binary = _require_client(config.game_dir)
        patcher = _make_patcher(config, domain=domain)
        result = patcher.patch_client(binary)
    except PATCH_ERRORS as e:
        _fail(console, e, debug)
        return

    if config.output_format == "json":
        _output_json(
            {
                "binary": str(binary),
                "domain": result.domain,
                "mode": result.mode.value if result.mode else None,
                "already_patched": result.already_patched,
                "patch_count": result.patch_count,
                "encoding": result.encoding,
                "warning": result.warning,
            },
            console,
        )
        return

    if result.already_patched:
        console.print(f"[green]Client already patched for {result.domain}[/green]")
    elif result.warning:
        console.print(f"[yellow]Warning: {result.warning}[/yellow]")
    else:
        console.print(
            f"[green]Patched {result.patch_count} occurrence(s) for {result.domain} "
            f"({result.encoding})[/green]"
        )


@patch_group.command("restore")
@click.pass_context
def restore(ctx: click.Context) -> None:
    """Restore the original client binary from its backup."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        binary = _require_client(config.game_dir)
        _make_patcher(config).restore_client(binary)
    except PATCH_ERRORS as e:
        _fail(console, e, debug)
        return

    if config.output_format == "json":
        _output_json({"binary": str(binary), "restored": True}, console)
    else:
        console.print(f"[green]Restored {binary} from backup[/green]")


@patch_group.command("agent")
@click.pass_context
def agent(ctx: click.Context) -> None:
    """Download the server agent if it is missing."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        with Downloader(config.network) as downloader:
            result = ensure_agent_available(server_dir(config.game_dir), config.patcher, downloader)
    except PATCH_ERRORS as e:
        _fail(console, e, debug)
        return

    if config.output_format == "json":
        _output_json({"agent": str(result.agent_path), "already_exists": result.already_exists}, console)
    elif result.already_exists:
        console.print(f"[green]Agent present at {result.agent_path}[/green]")
    else:
        console.print(f"[green]Agent downloaded to {result.agent_path}[/green]")


@patch_group.command("ensure")
@click.pass_context
def ensure(ctx: click.Context) -> None:
    """Patch the client and fetch the agent ahead of a launch."""
    config, console, verbose, debug = _get_context_objects(ctx)

    with Downloader(config.network) as downloader:
        report = _make_patcher(config, downloader).ensure_client_patched(config.game_dir)

    if config.output_format == "json":
        _output_json(
            {
                "success": report.success,
                "already_patched": report.already_patched,
                "patch_count": report.patch_count,
                "client_error": report.client_error,
                "agent_error": report.agent_error,
                "agent_skipped": report.agent.skipped if report.agent else None,
            },
            console,
        )
    else:
        table = Table(title="Launch Preparation")
        table.add_column("Component", style="cyan")
        table.add_column("Result", style="white")
        if report.client_error:
            table.add_row("Client", f"[red]{report.client_error}[/red]")
        elif report.client and report.client.already_patched:
            table.add_row("Client", "[green]already patched[/green]")
        elif report.client:
            table.add_row("Client", f"[green]{report.client.patch_count} occurrence(s) patched[/green]")
        if report.agent_error:
            table.add_row("Agent", f"[red]{report.agent_error}[/red]")
        elif report.agent and report.agent.skipped:
            table.add_row("Agent", "[yellow]skipped (no server directory)[/yellow]")
        elif report.agent:
            table.add_row("Agent", "[green]ready[/green]")
        console.print(table)

    if not report.success:
        raise click.Abort()
