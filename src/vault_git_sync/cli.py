"""CLI entry point for vault-git-sync."""

import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.traceback import install as install_traceback

from . import __version__
from .doctor import Doctor
from .engine import SyncEngine
from .errors import SyncError
from .log import configure_logging, mask_secrets
from .models import SyncOutcome, SyncResult, SyncState
from .repository import VaultRepository
from .scheduler import AutoSyncScheduler
from .settings import (
    TOKEN_ENV_VAR,
    SettingsError,
    SyncSettings,
    default_settings_path,
    load_settings,
    save_settings,
)
from .transport import GitTransport

install_traceback()
console = Console()


class ConsoleReporter:
    """Prints engine state transitions to the terminal."""

    LABELS = {
        SyncState.INITIALIZING: "Initializing repository...",
        SyncState.PULLING: "Pulling changes...",
        SyncState.STAGING: "Adding changes...",
        SyncState.COMMITTING: "Committing changes...",
        SyncState.PUSHING: "Pushing changes...",
    }

    def state_changed(self, state: SyncState, detail: str) -> None:
        label = self.LABELS.get(state)
        if label:
            console.print(f"[blue]{label}[/blue] [dim]{escape(detail)}[/dim]")

    def sync_finished(self, result: SyncResult) -> None:
        if result.outcome is SyncOutcome.SUCCESS:
            console.print(f"[green]✓ {escape(str(result))}[/green]")
        elif result.outcome is SyncOutcome.NO_CHANGES:
            console.print("[blue]No changes to commit[/blue]")
        else:
            console.print(f"[red]✗ {escape(str(result))}[/red]")


def get_vault_path(vault_path: Optional[str]) -> Path:
    """Resolve vault path from argument or the current directory."""
    path = Path(vault_path or ".").expanduser().resolve()
    if path.exists() and not path.is_dir():
        console.print(f"[red]Error: Vault path is not a directory: {path}[/red]")
        sys.exit(1)
    return path


def sync_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Per-run overrides of the stored settings."""
    options = [
        click.option("--remote-url", "-r", help="Remote repository URL"),
        click.option("--branch", "-b", help="Branch to sync"),
        click.option("--username", "-u", help="Git username"),
        click.option("--token", envvar=TOKEN_ENV_VAR, help=f"Password or access token (env: {TOKEN_ENV_VAR})"),
        click.option("--author-name", help="Commit author name"),
        click.option("--author-email", help="Commit author email"),
        click.option("--message", "-m", "commit_message", help="Commit message template ({{date}} is replaced)"),
        click.option("--proxy-url", help="Route Git HTTP traffic through this transport proxy"),
        click.option("--timeout", "network_timeout", type=float, help="Seconds allowed per network step"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def resolve_settings(ctx: click.Context, **overrides: Any) -> SyncSettings:
    """Stored settings with command-line overrides applied."""
    try:
        settings = load_settings(ctx.obj["config_path"])
        changes = {k: v for k, v in overrides.items() if v is not None and k != "token"}
        settings = replace(settings, **changes)
        settings.validate()
    except SettingsError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    if not settings.remote_url:
        console.print("[red]Error: No remote URL. Use --remote-url or run 'configure'.[/red]")
        sys.exit(1)
    return settings


def build_engine(vault: Path, settings: SyncSettings, token: Optional[str]) -> SyncEngine:
    transport = GitTransport(proxy_url=settings.proxy_url, timeout=settings.network_timeout)
    return SyncEngine(
        vault,
        settings.credentials(token or ""),
        transport=transport,
        reporter=ConsoleReporter(),
    )


@click.group()
@click.version_option(version=__version__, prog_name="vault-git-sync")
@click.option("--vault-path", "-v", type=str, help="Path to the vault (default: current directory)")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Settings file")
@click.option("--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, vault_path: Optional[str], config_path: Optional[Path], verbose: bool) -> None:
    """Sync a notes vault with a Git remote."""
    ctx.ensure_object(dict)
    ctx.obj["vault_path"] = vault_path
    ctx.obj["config_path"] = config_path or default_settings_path()
    ctx.obj["verbose"] = verbose
    configure_logging(verbose)


@cli.command()
@click.option("--remote-url", "-r", prompt="Remote repository URL", help="Remote repository URL")
@click.option("--branch", "-b", default="main", show_default=True, help="Branch to sync")
@click.option("--username", "-u", default="", help="Git username")
@click.option("--author-name", help="Commit author name")
@click.option("--author-email", help="Commit author email")
@click.option("--interval", type=float, default=0, show_default=True, help="Auto-sync interval in minutes (0 = off)")
@click.option("--message", "-m", "commit_message", default=SyncSettings.commit_message, show_default=True,
              help="Commit message template")
@click.option("--proxy-url", help="Transport proxy URL")
@click.pass_context
def configure(
    ctx: click.Context,
    remote_url: str,
    branch: str,
    username: str,
    author_name: Optional[str],
    author_email: Optional[str],
    interval: float,
    commit_message: str,
    proxy_url: Optional[str],
) -> None:
    """Store sync settings (the token is never stored)."""
    settings = SyncSettings(
        remote_url=remote_url,
        branch=branch,
        username=username,
        author_name=author_name,
        author_email=author_email,
        auto_sync_interval=interval,
        commit_message=commit_message,
        proxy_url=proxy_url,
    )
    try:
        path = save_settings(settings, ctx.obj["config_path"])
    except SettingsError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)
    console.print(f"[green]Saved settings to: {path}[/green]")
    console.print(f"[yellow]Note: provide the token with --token or {TOKEN_ENV_VAR}[/yellow]")


@cli.command()
@sync_options
@click.pass_context
def sync(ctx: click.Context, token: Optional[str], **overrides: Any) -> None:
    """Pull, commit and push the vault once."""
    vault = get_vault_path(ctx.obj["vault_path"])
    settings = resolve_settings(ctx, **overrides)
    engine = build_engine(vault, settings, token)

    result = engine.sync(settings.remote_url, settings.branch, settings.commit_message)
    if not result.ok:
        sys.exit(1)


@cli.command(name="test-connection")
@sync_options
@click.pass_context
def test_connection(ctx: click.Context, token: Optional[str], **overrides: Any) -> None:
    """Check that the remote is reachable with the configured credentials."""
    vault = get_vault_path(ctx.obj["vault_path"])
    settings = resolve_settings(ctx, **overrides)
    engine = build_engine(vault, settings, token)

    console.print("[blue]Testing connection...[/blue]")
    try:
        engine.test_connection(settings.remote_url)
    except SyncError as e:
        console.print(f"[red]Connection test failed: {escape(e.message)}[/red]")
        if e.details and ctx.obj["verbose"]:
            console.print(f"[dim]{escape(e.details)}[/dim]")
        sys.exit(1)
    console.print("[green]Connection successful![/green]")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show branch position and pending changes."""
    vault = get_vault_path(ctx.obj["vault_path"])
    repository = VaultRepository(vault)

    if not repository.is_repository():
        console.print("[red]Error: Not a Git repository. Run 'sync' first.[/red]")
        sys.exit(1)

    branch = repository.current_branch()
    ahead, behind = repository.ahead_behind(branch) if branch else (0, 0)

    console.print(f"\n[bold]Vault:[/bold] {vault}")
    console.print(f"[bold]Branch:[/bold] {branch or '(detached)'}")
    origin = repository.origin_url()
    console.print(f"[bold]Remote:[/bold] {escape(mask_secrets(origin)) if origin else 'Not configured'}")

    if ahead:
        console.print(f"[yellow]Ahead by {ahead} commit(s)[/yellow]")
    if behind:
        console.print(f"[yellow]Behind by {behind} commit(s)[/yellow]")

    changes = repository.changed_paths()
    if changes:
        console.print(f"\n[bold]Changed files ({len(changes)}):[/bold]")
        for change in list(changes)[:10]:
            console.print(f"  • {escape(str(change))}")
        if len(changes) > 10:
            console.print(f"  ... and {len(changes) - 10} more")
    else:
        console.print("\n[green]No uncommitted changes[/green]")


@cli.command()
@click.option("--limit", "-n", type=int, default=20, show_default=True, help="Number of commits to show")
@click.pass_context
def log(ctx: click.Context, limit: int) -> None:
    """Show recent commits as 'date - message (author)'."""
    vault = get_vault_path(ctx.obj["vault_path"])
    repository = VaultRepository(vault)

    if not repository.is_repository():
        console.print("[red]Error: Not a Git repository. Run 'sync' first.[/red]")
        sys.exit(1)

    entries = repository.log(limit)
    if not entries:
        console.print("[blue]No commits yet[/blue]")
        return
    for entry in entries:
        console.print(escape(str(entry)))


@cli.command()
@sync_options
@click.option("--interval", type=float, help="Minutes between syncs (default: from settings)")
@click.pass_context
def watch(ctx: click.Context, token: Optional[str], interval: Optional[float], **overrides: Any) -> None:
    """Sync now, then every INTERVAL minutes until interrupted."""
    vault = get_vault_path(ctx.obj["vault_path"])
    settings = resolve_settings(ctx, **overrides)
    minutes = interval if interval is not None else settings.auto_sync_interval
    if minutes <= 0:
        console.print("[red]Error: Auto-sync interval must be greater than 0[/red]")
        sys.exit(1)

    engine = build_engine(vault, settings, token)
    scheduler = AutoSyncScheduler(
        engine,
        settings.remote_url,
        settings.branch,
        settings.commit_message,
        interval_minutes=minutes,
    )
    console.print(f"[blue]Auto-sync every {minutes:g} minute(s). Press Ctrl+C to stop.[/blue]")
    scheduler.run_once()
    scheduler.start()
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping auto-sync...[/yellow]")
    finally:
        scheduler.stop(cancel=True)


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind")
@click.option("--port", "-p", default=3001, show_default=True, type=int, help="Port to listen on")
@click.option("--timeout", type=float, default=60.0, show_default=True, help="Upstream timeout in seconds")
@click.pass_context
def proxy(ctx: click.Context, host: str, port: int, timeout: float) -> None:
    """Run the credential-forwarding Git proxy."""
    import uvicorn

    from .proxy import create_app

    console.print(f"[green]Git proxy listening on http://{host}:{port}/proxy[/green]")
    uvicorn.run(
        create_app(timeout=timeout),
        host=host,
        port=port,
        log_level="debug" if ctx.obj["verbose"] else "warning",
    )


@cli.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Diagnose common issues with the vault sync setup."""
    vault = get_vault_path(ctx.obj["vault_path"])
    verbose = ctx.obj["verbose"]
    try:
        settings = load_settings(ctx.obj["config_path"])
    except SettingsError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    doc = Doctor(vault, settings, verbose=verbose)
    issues = doc.run_checks()

    if not issues:
        console.print("[green]✓ All checks passed![/green]")
        return

    console.print(f"\n[yellow]Found {len(issues)} issue(s):[/yellow]")
    styles = {"error": "[red]✗[/red]", "warning": "[yellow]![/yellow]", "info": "[blue]i[/blue]"}
    for issue in issues:
        console.print(f"{styles.get(issue['severity'], '-')} {escape(issue['message'])}")
        if verbose and issue.get("details"):
            console.print(f"  [dim]{escape(issue['details'])}[/dim]")

    if any(issue["severity"] == "error" for issue in issues):
        sys.exit(1)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
