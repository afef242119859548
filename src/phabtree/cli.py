"""Command-line interface for phab."""

import logging
from pathlib import Path
from typing import Dict, Optional

import typer
from rich.console import Console
from rich.markup import escape

from .builder import TreeBuilder
from .client import PhabricatorClient
from .config import SAMPLE_CONFIG, ClientConfig, ConfigLoader, Settings
from .errors import CertificateIdentityError, ConfigError, FetchError
from .logging_setup import setup_logging
from .models import TaskTree, User
from .render import render_json, render_text
from .repository import TaskRepository
from .types import parse_host, parse_task_id

app = typer.Typer()
task_app = typer.Typer(help="Inspect Maniphest tasks.")
app.add_typer(task_app, name="task")
console = Console()
log = logging.getLogger(__name__)


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".phab"


def load_settings(config_file: Optional[Path], overrides: Dict) -> Settings:
    """Load configuration, exiting with an error message if it is invalid."""
    try:
        return ConfigLoader().load(config_file, overrides)
    except ConfigError as e:
        console.print(f"[red]Error loading config:[/red] {escape(str(e))}")
        raise typer.Exit(1)


def create_client(config: ClientConfig) -> PhabricatorClient:
    """Create the Conduit client."""
    return PhabricatorClient(config)


@task_app.command()
def detail(
    task_id: str = typer.Argument(..., callback=parse_task_id, help="Task id, e.g. T1234"),
    print_json: bool = typer.Option(False, "--print-json", help="Print the tree as JSON."),
    strict: bool = typer.Option(False, "--strict", help="Fail if any subtask cannot be fetched."),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Concurrent fetches."),
    show_invalid: bool = typer.Option(False, "--show-invalid", help="Show tasks closed as invalid."),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file (default ~/.phab)."),
    host: Optional[str] = typer.Option(None, "--host", envvar="PHAB_HOST", callback=parse_host),
    token: Optional[str] = typer.Option(None, "--token", envvar="PHAB_API_TOKEN"),
    pkcs12_path: Optional[str] = typer.Option(None, "--pkcs12-path", help="TLS client certificate."),
    pkcs12_password: Optional[str] = typer.Option(
        None, "--pkcs12-password", envvar="PHAB_PKCS12_PASSWORD"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log API calls."),
):
    """View a task and all of its subtasks."""
    setup_logging(verbose)
    settings = load_settings(
        config,
        {
            "host": host,
            "api_token": token,
            "pkcs12_path": pkcs12_path,
            "pkcs12_password": pkcs12_password,
            "max_workers": workers,
            "failure_policy": "strict" if strict else None,
        },
    )
    show_task_detail(task_id, settings, print_json=print_json, show_invalid=show_invalid)


@app.command()
def init(
    path: Optional[Path] = typer.Option(None, "--path", help="Where to write the config."),
):
    """Create a sample ~/.phab config file."""
    create_sample_config(path or get_config_path())


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """phab - Phabricator task trees from the command line."""
    if not ctx.invoked_subcommand:
        show_brief_help()


def show_brief_help():
    """Show brief help information."""
    console.print("[bold]phab[/bold] - Phabricator task trees from the command line")
    console.print()
    console.print("Use [bold]phab task detail T1234[/bold] to show a task and its subtasks,")
    console.print("or [bold]phab init[/bold] to create a config file at ~/.phab")


def create_sample_config(config_file: Path):
    """Write a sample configuration file."""
    if config_file.exists():
        console.print(f"[yellow]Config already exists at {config_file}[/yellow]")
        return

    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(SAMPLE_CONFIG)
    config_file.chmod(0o600)
    console.print(f"[green]Created sample config at {config_file}[/green]")


def show_task_detail(task_id: str, settings: Settings, print_json: bool = False, show_invalid: bool = False):
    """
    Fetch a task tree and print it.

    Exits with 1 when the root task (or, under the strict policy, any task)
    cannot be fetched. Subtask failures in partial mode are shown inline and
    the exit code stays 0.
    """
    try:
        client = create_client(settings.client)
    except CertificateIdentityError as e:
        console.print(f"[red]Error loading client certificate:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    with client:
        repository = TaskRepository(client, retry_delay=settings.build.retry_delay)
        builder = TreeBuilder(
            repository,
            failure_policy=settings.build.failure_policy,
            max_workers=settings.build.max_workers,
        )

        try:
            tree = builder.build(task_id)
        except FetchError as e:
            failed_id = e.task_id or task_id
            console.print(f"[red]Could not fetch task T{failed_id}:[/red] {e.kind}: {escape(str(e))}")
            raise typer.Exit(1)

        if print_json:
            typer.echo(render_json(tree))
            return

        users = lookup_assignees(client, tree)

    for line in render_text(tree, users, show_invalid, settings.build.done_statuses):
        console.print(line, soft_wrap=True)


def lookup_assignees(client: PhabricatorClient, tree: TaskTree) -> Dict[str, User]:
    """Resolve assignee PHIDs to users. Failures only cost the names."""
    phids = [task.assignee for task in tree.tasks() if task.assignee]
    if not phids:
        return {}
    try:
        return client.get_users(phids)
    except FetchError as e:
        log.warning("Could not look up assignees: %s", e)
        return {}


if __name__ == "__main__":
    app()
