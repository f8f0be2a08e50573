"""Thin CLI wrapper for ohx_addon_cli.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import (
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)
from rich.table import Table

from ohx_addon_cli import __version__
from ohx_addon_cli.auth.device_flow import AuthError, DeviceAuthorization
from ohx_addon_cli.auth.session import FileSessionStore
from ohx_addon_cli.builds.models import BuildTarget
from ohx_addon_cli.builds.runner import BuildExecutionError
from ohx_addon_cli.config import get_settings, print_settings_json
from ohx_addon_cli.manifest.validator import ValidationError
from ohx_addon_cli.registry.catalog import RegistryError
from ohx_addon_cli.registry.publish import PublishError
from ohx_addon_cli.types import TargetState

app = typer.Typer(
    name="ohx-addon",
    help="OHX Addon CLI - validate, build and publish addons to the OHX registry",
    no_args_is_help=True,
)
console = Console()

def configure_logging(verbose: int, default_level: str = "WARNING") -> None:
    """Route log records through rich; -v for info, -vv for debug.

    Without -v the configured default level applies.
    """
    if verbose == 0:
        level = logging.getLevelName(default_level)
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ohx-addon-cli version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """OHX Addon CLI - validate, build and publish addons to the OHX registry."""


class RichProgressSink:
    """ProgressSink rendering a spinner line per step."""

    def __init__(self, console: Console) -> None:
        self.console = console
        self._progress: Progress | None = None
        self._task: TaskID | None = None

    def start(self, total: int, label: str) -> None:
        self._progress = Progress(
            TextColumn("[bold dim]{task.fields[prefix]}"),
            SpinnerColumn(),
            TextColumn("{task.description}"),
            MofNCompleteColumn(),
            console=self.console,
        )
        self._progress.start()
        self._task = self._progress.add_task("", total=total, prefix=label)

    def update(self, message: str) -> None:
        if self._progress is not None and self._task is not None:
            self._progress.update(self._task, description=escape(message[:120]))

    def advance(self) -> None:
        if self._progress is not None and self._task is not None:
            self._progress.advance(self._task)

    def finish(self) -> None:
        if self._progress is not None:
            self._progress.stop()
        self._progress = None
        self._task = None


def show_device_authorization(authorization: DeviceAuthorization) -> None:
    """Tell the user where to approve the login."""
    console.print(
        "[bold]Please authorize the CLI to publish Addons on your behalf.[/bold]"
    )
    console.print(f"  URL:  {authorization.verification_uri}")
    console.print(f"  Code: [green]{authorization.user_code}[/green]")


def _format_size(size: int) -> str:
    return f"{size / (1024 * 1024):.1f} MiB" if size else "-"


def print_targets_summary(targets: list[BuildTarget]) -> None:
    """Print the per-architecture build/push outcome."""
    table = Table(title="Build results")
    table.add_column("Arch")
    table.add_column("Build file")
    table.add_column("Built")
    table.add_column("Uploaded")
    table.add_column("Size", justify="right")
    table.add_column("Error")
    for t in targets:
        table.add_row(
            t.arch,
            t.filename,
            "[green]✓[/green]" if t.built else "[red]✗[/red]",
            "[green]✓[/green]" if t.uploaded else "[red]✗[/red]",
            _format_size(t.image_size),
            escape(t.error_message or ""),
        )
    console.print(table)


@app.command()
def publish(
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Verbose mode (-v, -vv)"),
    ] = 0,
    build_directory: Annotated[
        Path,
        typer.Option(
            "--build-directory",
            "-b",
            help="Directory for build logs. Delete it for a clean build.",
        ),
    ] = Path("out"),
    image_directory: Annotated[
        Path | None,
        typer.Option(
            "--image-directory",
            help="Directory with the build files (default: next to the input file)",
        ),
    ] = None,
    input_file: Annotated[
        Path,
        typer.Option("--input-file", "-i", help="The input addon description file"),
    ] = Path("addons.yml"),
    validate_only: Annotated[
        bool,
        typer.Option("--validate-only", help="Only validate the input file and exit"),
    ] = False,
    login_only: Annotated[
        bool,
        typer.Option(
            "--login-only", "-l", help="Only login, store the session and exit"
        ),
    ] = False,
    logout: Annotated[
        bool,
        typer.Option("--logout", help="Logout, remove the stored session and exit"),
    ] = False,
    username: Annotated[
        str | None,
        typer.Option(
            "--username",
            "-u",
            envvar="OHX_USERNAME",
            help="Account name suggested to the login page if not logged in yet",
        ),
    ] = None,
) -> None:
    """Validate, build, push and publish an addon."""
    from ohx_addon_cli.pipeline import PublishOptions, run_publish

    settings = get_settings()
    configure_logging(verbose, settings.log_level)

    if logout:
        if FileSessionStore(settings.session_file).clear():
            console.print("[green]Logged out[/green]")
        else:
            console.print("[yellow]You are not logged in[/yellow]")
        return

    options = PublishOptions(
        input_file=input_file,
        build_directory=build_directory,
        image_directory=image_directory,
        validate_only=validate_only,
        login_only=login_only,
        username=username,
    )

    with httpx.Client(timeout=settings.http_timeout) as client:
        try:
            outcome = run_publish(
                options,
                settings,
                client,
                progress=RichProgressSink(console),
                notify=show_device_authorization,
            )
        except FileNotFoundError:
            console.print(
                f"[red]Did not find the addon description file: {input_file}![/red]"
            )
            raise typer.Exit(code=1) from None
        except ValidationError as e:
            console.print(f"[red]Input file validation failed![/red]\n{escape(str(e))}")
            raise typer.Exit(code=1) from None
        except AuthError as e:
            console.print(f"[red]Login failed: {escape(str(e))}[/red]")
            raise typer.Exit(code=1) from None
        except RegistryError as e:
            console.print(
                f"[red]Failed to update registry cache: {escape(str(e))}[/red]"
            )
            raise typer.Exit(code=1) from None
        except (BuildExecutionError, PublishError) as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(code=1) from None

    if validate_only:
        console.print(f"[green]{input_file} is valid[/green]")
        return
    if login_only:
        session = outcome.session
        if session is None:
            console.print("[red]Login did not return a session[/red]")
            raise typer.Exit(code=1)
        who = session.user_display_name or session.user_email or session.user_id
        console.print(f"[green]Logged in as {escape(who)}[/green]")
        return

    if outcome.targets:
        print_targets_summary(outcome.targets)
    metadata = outcome.manifest.registry
    console.print(f"[green]Published {metadata.id} {metadata.version}[/green]")
    if any(t.state != TargetState.UPLOADED for t in outcome.targets):
        console.print("[yellow]Some architectures failed to build or upload[/yellow]")
        raise typer.Exit(code=1)


@app.command()
def registry(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the addons of the registry with their statistics."""
    from ohx_addon_cli.registry.cache import FileCacheStore, RegistryCache
    from ohx_addon_cli.registry.catalog import fetch_registry_stats

    settings = get_settings()
    cache = RegistryCache(
        FileCacheStore(settings.registry_cache_file),
        settings.registry_data_url,
        freshness_window=settings.registry_cache_ttl,
    )
    with httpx.Client(timeout=settings.http_timeout) as client:
        try:
            entries = cache.fetch(client)
            stats = fetch_registry_stats(client, settings.registry_stats_url)
        except RegistryError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(code=1) from None

    if json_output:
        output = [
            {
                "id": addon_id,
                "title": entry.title,
                "version": entry.version,
                "owner": entry.owner,
                "status": entry.status.code.value,
                "downloads": stats[addon_id].d if addon_id in stats else 0,
                "rating": stats[addon_id].rating if addon_id in stats else 0.0,
            }
            for addon_id, entry in entries.items()
        ]
        console.print(json.dumps(output, indent=2), soft_wrap=True, markup=False)
        return

    if not entries:
        console.print("[yellow]No addons found[/yellow]")
        return

    table = Table(title=f"{len(entries)} addon(s)")
    table.add_column("Id", style="green")
    table.add_column("Title")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Downloads", justify="right")
    table.add_column("Rating", justify="right")
    for addon_id, entry in entries.items():
        entry_stats = stats.get(addon_id)
        table.add_row(
            addon_id,
            escape(entry.title),
            entry.version,
            entry.status.code.value,
            str(entry_stats.d) if entry_stats else "-",
            f"{entry_stats.rating:.1f}" if entry_stats and entry_stats.v else "-",
        )
    console.print(table)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True, markup=False)
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Local state:[/bold]")
        console.print(f"  Session file:        {settings.session_file}")
        console.print(f"  Registry cache:      {settings.registry_cache_file}")
        console.print(f"  Cache window (s):    {settings.registry_cache_ttl}")
        console.print()
        console.print("[bold]Endpoints:[/bold]")
        console.print(f"  OAuth:               {settings.oauth_base_url}")
        console.print(f"  Vault:               {settings.vault_url}")
        console.print(f"  Registry data:       {settings.registry_data_url}")
        console.print(f"  Registry stats:      {settings.registry_stats_url}")
        console.print(f"  Publish:             {settings.publish_url}")
        console.print()
        console.print("[bold]Images:[/bold]")
        console.print(f"  Registry:            {settings.image_registry}")
        console.print(f"  Namespace:           {settings.image_namespace}")
        console.print(f"  Builder:             {settings.builder_executable}")
        console.print(f"  Max builds:          {settings.max_concurrent_builds}")


__all__ = ["app", "configure_logging"]
