"""Thin CLI wrapper for commitci.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from commitci import __version__
from commitci.config import get_settings, print_settings_json

app = typer.Typer(
    name="commitci",
    help="commitci - build a commit, record the outcome, look it up later",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    "SUCCESS": "green",
    "FAILURE": "red",
    "ERROR": "red",
    "PENDING": "yellow",
}


def setup_logging(level: str) -> None:
    """Configure the root logger to write through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"commitci version {__version__}")
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
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """commitci - build a commit, record the outcome, look it up later."""
    settings = get_settings()
    setup_logging("DEBUG" if verbose else settings.log_level)


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
        typer.echo(print_settings_json(settings))
        return

    step_timeout = (
        f"{settings.step_timeout}" if settings.step_timeout else "(no deadline)"
    )
    lock_timeout = (
        f"{settings.lock_timeout}" if settings.lock_timeout is not None else "(wait)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Work directory:      {settings.work_dir}")
    console.print(f"  Results directory:   {settings.results_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print()
    console.print("[bold]Pipeline:[/bold]")
    console.print(f"  Store backend:       {settings.store_backend}")
    console.print(f"  Clone base URL:      {settings.clone_base_url}")
    console.print(f"  Test command:        {' '.join(settings.test_command)}")
    console.print(f"  Package command:     {' '.join(settings.package_command)}")
    console.print(f"  Keep checkouts:      {settings.keep_workdir}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Concurrency:[/bold]")
    console.print(f"  Max builds:          {settings.max_concurrent_builds}")
    console.print(f"  Fetch retries:       {settings.fetch_retries}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Fetch timeout:       {settings.fetch_timeout}")
    console.print(f"  Step timeout:        {step_timeout}")
    console.print(f"  Lock timeout:        {lock_timeout}")


@app.command()
def build(
    owner: Annotated[str, typer.Argument(help="Repository owner")],
    name: Annotated[str, typer.Argument(help="Repository name")],
    commit: Annotated[str, typer.Argument(help="Commit identifier")],
    branch: Annotated[str, typer.Argument(help="Branch the commit is on")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build a commit and record the outcome.

    Exits with code 0 only when the build succeeded.
    """
    from commitci.builds.service import build_info, build_project
    from commitci.types import BuildStatus, Revision

    revision = Revision(owner=owner, name=name, commit=commit, branch=branch)
    if not json_output:
        console.print(f"[blue]Building {owner}/{name}@{commit} ({branch})...[/blue]")

    result = build_project(revision, settings=get_settings())

    if json_output:
        typer.echo(json.dumps(build_info(result), indent=2))
    else:
        status = result.status.name
        color = STATUS_COLORS.get(status, "white")
        console.print(f"[{color}]{status}[/{color}] in {result.duration:.1f}s")

    if result.status != BuildStatus.SUCCESS:
        raise typer.Exit(code=1)


@app.command()
def show(
    commit: Annotated[str, typer.Argument(help="Commit identifier")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
    no_logs: Annotated[
        bool,
        typer.Option("--no-logs", help="Omit the build log"),
    ] = False,
) -> None:
    """Show the recorded build result for a commit."""
    from commitci.builds.service import build_info, get_result

    result = get_result(commit, settings=get_settings())
    if result is None:
        if json_output:
            typer.echo(json.dumps({"code": "build_not_found", "commit": commit}))
        else:
            console.print(f"[red]Build not found: {commit}[/red]")
        raise typer.Exit(code=1)

    info = build_info(result)
    if no_logs:
        info.pop("logs")

    if json_output:
        typer.echo(json.dumps(info, indent=2))
        return

    color = STATUS_COLORS.get(info["status"], "white")
    console.print(f"[bold]Build {info['hash']}[/bold]")
    console.print(f"  Repository: {info['owner']}/{info['repository']}")
    console.print(f"  Branch:     {info['branch']}")
    console.print(f"  Status:     [{color}]{info['status']}[/{color}]")
    console.print(f"  Started:    {info['date']}")
    console.print(f"  Duration:   {result.duration:.1f}s")
    if not no_logs:
        console.print()
        console.print("[bold]Log:[/bold]")
        for line in info["logs"]:
            console.print(line, markup=False, highlight=False)


if __name__ == "__main__":
    app()
