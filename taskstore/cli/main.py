"""Main CLI entry point and application setup."""

import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

import click
import msgspec
from click.exceptions import Exit
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from taskstore import __version__
from taskstore.core.models import Task, utcnow
from taskstore.storage.backends.base import TaskQueries, TaskStore
from taskstore.storage.config import (
    StorageConfig,
    load_config,
    supported_storage_types,
)
from taskstore.storage.exceptions import StorageError
from taskstore.storage.factory import check_health, create_store


@dataclass
class Context:
    """CLI context that holds the configuration and the open store."""

    config: StorageConfig
    console: Console
    debug: bool = False
    store: TaskStore | None = field(default=None, repr=False)

    def open_store(self) -> TaskStore:
        """Create the configured store on first use."""
        if self.store is None:
            self.store = create_store(self.config)
        return self.store

    def close(self) -> None:
        if self.store is not None:
            self.store.close()
            self.store = None


def setup_logging(
    verbose: bool = False, quiet: bool = False, debug: bool = False
) -> None:
    """Configure logging based on CLI flags."""
    if quiet:
        level = logging.WARNING
    elif verbose or debug:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
        if not debug
        else "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_console(width: int | None = None) -> Console:
    """Create Rich console with appropriate settings."""
    return Console(width=width or 120)


def format_timestamp(value) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


class TaskStoreGroup(click.Group):
    """Custom group that turns storage errors into a clean exit."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except KeyboardInterrupt:
            console = getattr(ctx.obj, "console", None) if ctx.obj else None
            if console:
                console.print("[yellow]Interrupted[/yellow]")
            ctx.exit(130)
        except (click.ClickException, click.Abort, Exit, SystemExit):
            raise
        except StorageError as e:
            debug = getattr(ctx.obj, "debug", False) if ctx.obj else False
            if debug:
                raise
            console = getattr(ctx.obj, "console", None) if ctx.obj else None
            if console:
                console.print(f"[red]Error:[/red] {e}")
            else:
                click.echo(f"Error: {e}", err=True)
            ctx.exit(1)
        finally:
            if isinstance(ctx.obj, Context):
                ctx.obj.close()


@click.group(cls=TaskStoreGroup)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to a YAML configuration file",
)
@click.option(
    "--storage-type",
    "-t",
    type=click.Choice([t.value for t in supported_storage_types()]),
    help="Override the configured storage type",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-error output")
@click.option("--debug", is_flag=True, help="Enable debug mode with full tracebacks")
@click.version_option(
    version=__version__, prog_name="taskstore", message="taskstore version %(version)s"
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    storage_type: str | None,
    verbose: bool,
    quiet: bool,
    debug: bool,
) -> None:
    """Manage a task store.

    The store is configured from environment variables and, optionally, a
    YAML file. Environment variables win over the file.
    """
    setup_logging(verbose=verbose, quiet=quiet, debug=debug)
    console = create_console()

    try:
        config = load_config(config_path)
    except StorageError as e:
        if debug:
            raise
        console.print(f"[red]Error loading configuration:[/red] {e}")
        ctx.exit(1)

    if storage_type:
        config = msgspec.structs.replace(config, type=storage_type)

    ctx.obj = Context(config=config, console=console, debug=debug)


@cli.command()
@click.pass_context
def types(ctx: click.Context) -> None:
    """List the supported storage types."""
    console = ctx.obj.console
    current = ctx.obj.config.type
    for storage_type in supported_storage_types():
        marker = " [green](configured)[/green]" if storage_type == current else ""
        console.print(f"{storage_type.value}{marker}")


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Connect to the configured store and run its health check."""
    console = ctx.obj.console
    store = ctx.obj.open_store()

    if check_health(store) is None:
        console.print(
            f"[yellow]Storage '{store.kind}' does not support health checks[/yellow]"
        )
    else:
        console.print(f"[green]✓[/green] Storage '{store.kind}' is healthy")


@cli.command()
@click.argument("title")
@click.option(
    "--due",
    "-d",
    "due_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Due date (YYYY-MM-DD, UTC)",
)
@click.pass_context
def add(ctx: click.Context, title: str, due_date) -> None:
    """Add a new task."""
    if not title.strip():
        raise click.BadParameter("task title cannot be empty", param_hint="TITLE")

    console = ctx.obj.console
    task = Task(id=f"task_{time.time_ns()}", title=title, due_date=due_date)
    ctx.obj.open_store().create(task)
    console.print(f"[green]✓[/green] Created task {task.id}: {escape(task.title)}")


@cli.command(name="list")
@click.option(
    "--status",
    type=click.Choice(["all", "done", "pending"]),
    default="all",
    help="Filter by completion status",
)
@click.option("--overdue", is_flag=True, help="Show only overdue tasks")
@click.pass_context
def list_cmd(ctx: click.Context, status: str, overdue: bool) -> None:
    """List stored tasks."""
    console = ctx.obj.console
    store = ctx.obj.open_store()

    if status != "all" and isinstance(store, TaskQueries):
        tasks = store.get_by_status(status == "done")
    else:
        tasks = store.get_all()
        if status != "all":
            tasks = [t for t in tasks if t.done == (status == "done")]

    if overdue:
        now = utcnow()
        tasks = [t for t in tasks if t.is_overdue(now)]

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    _display_tasks_table(console, tasks)


@cli.command()
@click.argument("task_id")
@click.pass_context
def show(ctx: click.Context, task_id: str) -> None:
    """Show a single task."""
    console = ctx.obj.console
    task = ctx.obj.open_store().get_by_id(task_id)

    console.print(f"\n[bold]{escape(task.title)}[/bold]\n")
    console.print(f"ID:      {task.id}")
    console.print(f"Status:  {'done' if task.done else 'pending'}")
    console.print(f"Created: {format_timestamp(task.created_at)}")
    console.print(f"Due:     {format_timestamp(task.due_date)}")
    if task.is_overdue():
        console.print("[red]Overdue[/red]")


@cli.command()
@click.argument("task_id")
@click.option("--undo", is_flag=True, help="Mark the task as pending again")
@click.pass_context
def done(ctx: click.Context, task_id: str, undo: bool) -> None:
    """Mark a task as done."""
    console = ctx.obj.console
    store = ctx.obj.open_store()
    task = store.get_by_id(task_id)

    store.update(task.replace(done=not undo))
    state = "pending" if undo else "done"
    console.print(f"[green]✓[/green] Marked task {task_id} as {state}")


@cli.command()
@click.option(
    "--days",
    "-d",
    type=click.IntRange(min=0),
    default=7,
    show_default=True,
    help="Number of days to look ahead",
)
@click.pass_context
def due(ctx: click.Context, days: int) -> None:
    """List tasks due within the next DAYS days, including overdue ones."""
    console = ctx.obj.console
    store = ctx.obj.open_store()
    deadline = utcnow() + timedelta(days=days)

    if isinstance(store, TaskQueries):
        tasks = store.get_due_before(deadline)
    else:
        tasks = sorted(
            (t for t in store.get_all() if t.due_date and t.due_date <= deadline),
            key=lambda t: (t.due_date, t.id),
        )

    if not tasks:
        console.print(f"[yellow]No tasks due in the next {days} days[/yellow]")
        return

    _display_tasks_table(console, tasks)


@cli.command()
@click.argument("task_id")
@click.option("--force", "-f", is_flag=True, help="Delete without confirmation")
@click.pass_context
def delete(ctx: click.Context, task_id: str, force: bool) -> None:
    """Delete a task."""
    console = ctx.obj.console
    store = ctx.obj.open_store()
    task = store.get_by_id(task_id)

    if not force and not Confirm.ask(
        f"Delete task '{escape(task.title)}'?", console=console
    ):
        console.print("[yellow]Cancelled[/yellow]")
        return

    store.delete(task_id)
    console.print(f"[green]✓[/green] Deleted task {task_id}")


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show task counts computed by the storage engine."""
    console = ctx.obj.console
    store = ctx.obj.open_store()

    if not isinstance(store, TaskQueries):
        console.print(
            f"[yellow]Storage '{store.kind}' does not support statistics[/yellow]"
        )
        ctx.exit(1)

    summary = store.statistics()
    table = Table(title="Task statistics", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Total", str(summary.total))
    table.add_row("Completed", str(summary.completed))
    table.add_row("Pending", str(summary.pending))
    table.add_row("Overdue", str(summary.overdue))
    console.print(table)


def _display_tasks_table(console: Console, tasks: list[Task]) -> None:
    now = utcnow()
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Done", justify="center")
    table.add_column("Created")
    table.add_column("Due")

    for task in tasks:
        due = format_timestamp(task.due_date)
        if task.is_overdue(now):
            due = f"[red]{due}[/red]"
        table.add_row(
            task.id,
            escape(task.title),
            "✓" if task.done else "",
            format_timestamp(task.created_at),
            due,
        )

    console.print(table)
    console.print(f"\n{len(tasks)} task(s)")


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
