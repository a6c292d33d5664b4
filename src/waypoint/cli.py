# src/waypoint/cli.py
"""Waypoint Command Line Interface.

Entry point for the waypoint CLI tool.
"""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from waypoint import __version__
from waypoint.contracts.enums import TaskStatus, TaskType
from waypoint.contracts.errors import WaypointError
from waypoint.contracts.events import (
    CancelledEvent,
    DoneEvent,
    ErrorEvent,
    PausedEvent,
    ProgressEvent,
    StepCompleteEvent,
    TaskEvent,
)
from waypoint.contracts.task import Task
from waypoint.core.config import WaypointSettings, load_settings, render_settings
from waypoint.core.events import EventBus
from waypoint.engine.service import TaskService

__all__ = [
    "app",
]

app = typer.Typer(
    name="waypoint",
    help="Waypoint: resumable, checkpointed summary pipelines.",
    no_args_is_help=True,
)

config_app = typer.Typer(help="Configuration commands.")
app.add_typer(config_app, name="config")

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to settings YAML file (WAYPOINT_* environment variables still apply).",
    ),
]

OutputFormat = Annotated[
    Literal["console", "json"],
    typer.Option(
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"waypoint version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # Existence is checked in _load_dotenv for a better message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """Waypoint: resumable, checkpointed summary pipelines."""
    from waypoint.core.logging import configure_logging

    log_level = "DEBUG" if verbose else "INFO"
    configure_logging(json_output=json_logs, level=log_level)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


def _load_settings(config: Path | None) -> WaypointSettings:
    """Load settings, turning configuration problems into a clean exit."""
    config_path = config.expanduser() if config is not None else None
    try:
        return load_settings(config_path)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {config}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {config}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


@contextmanager
def _service(config: Path | None) -> Iterator[TaskService]:
    service = TaskService.from_settings(_load_settings(config))
    try:
        yield service
    except WaypointError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    finally:
        service.shutdown()


def _echo_task(task: Task, output_format: str) -> None:
    if output_format == "json":
        typer.echo(json.dumps(task.to_wire()))
        return
    typer.echo(f"{task.task_id}  {task.task_type}  {task.status}  {task.progress}%")
    if task.current_step is not None:
        typer.echo(f"  Current step: {task.current_step}")
    if task.completed_steps:
        typer.echo(f"  Completed: {', '.join(str(s) for s in task.completed_steps)}")
    if task.error:
        typer.echo(f"  Error: {task.error}")
    if task.result:
        typer.echo(f"  Result: {json.dumps(task.result)}")


def _event_printer(output_format: str) -> EventBus:
    """EventBus that prints every event of a run as it happens."""
    bus = EventBus()

    def print_json(event: TaskEvent) -> None:
        typer.echo(json.dumps(event.to_wire()))

    if output_format == "json":
        for event_type in (ProgressEvent, StepCompleteEvent, PausedEvent, DoneEvent, ErrorEvent, CancelledEvent):
            bus.subscribe(event_type, print_json)
        return bus

    def on_progress(event: ProgressEvent) -> None:
        typer.echo(f"[{event.progress:3d}%] {event.step}: {event.message}")

    def on_step_complete(event: StepCompleteEvent) -> None:
        typer.echo(f"       {event.step} checkpointed")

    def on_paused(event: PausedEvent) -> None:
        typer.secho(f"Paused: {event.message}", fg=typer.colors.YELLOW)

    def on_done(event: DoneEvent) -> None:
        typer.secho(f"Done: {event.task_id}", fg=typer.colors.GREEN)

    def on_error(event: ErrorEvent) -> None:
        hint = " (retry with 'waypoint retry')" if event.recoverable else ""
        typer.secho(f"Error: {event.message}{hint}", fg=typer.colors.RED, err=True)

    def on_cancelled(event: CancelledEvent) -> None:
        typer.secho("Cancelled", fg=typer.colors.YELLOW)

    bus.subscribe(ProgressEvent, on_progress)
    bus.subscribe(StepCompleteEvent, on_step_complete)
    bus.subscribe(PausedEvent, on_paused)
    bus.subscribe(DoneEvent, on_done)
    bus.subscribe(ErrorEvent, on_error)
    bus.subscribe(CancelledEvent, on_cancelled)
    return bus


def _exit_for(status: TaskStatus | None) -> None:
    if status in (None, TaskStatus.FAILED):
        raise typer.Exit(1)


@app.command()
def serve(
    config: ConfigOption = None,
    host: Annotated[str | None, typer.Option("--host", help="Bind address (overrides server.host).")] = None,
    port: Annotated[int | None, typer.Option("--port", help="Bind port (overrides server.port).")] = None,
) -> None:
    """Start the HTTP API server."""
    import uvicorn

    from waypoint.api.server import WaypointServer

    settings = _load_settings(config)
    bind_host = host or settings.server.host
    bind_port = port or settings.server.port
    server = WaypointServer(TaskService.from_settings(settings))

    typer.secho(f"Starting waypoint API on {bind_host}:{bind_port}", fg=typer.colors.GREEN)
    typer.echo(f"  Database: {settings.database.url}")
    typer.echo(f"  Workers: {settings.concurrency.max_workers}")
    try:
        uvicorn.run(server.app, host=bind_host, port=bind_port, log_config=None)
    finally:
        server.service.shutdown(wait=False)


@app.command()
def start(
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner the task runs for.")],
    task_type: Annotated[TaskType, typer.Option("--type", "-t", help="Task type.")] = TaskType.SUMMARY,
    params: Annotated[str, typer.Option("--params", "-p", help="Task parameters as a JSON object.")] = "{}",
    execute: Annotated[bool, typer.Option("--run", help="Run the task right away.")] = False,
    config: ConfigOption = None,
    output_format: OutputFormat = "console",
) -> None:
    """Create a task, or show the owner's active task of the same type."""
    try:
        parameters = json.loads(params)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: --params is not valid JSON: {e}", err=True)
        raise typer.Exit(1) from None
    if not isinstance(parameters, dict):
        typer.echo("Error: --params must be a JSON object", err=True)
        raise typer.Exit(1)

    with _service(config) as service:
        task, created = service.start(task_type, owner, parameters)
        if output_format == "json":
            typer.echo(json.dumps({"taskId": task.task_id, "status": str(task.status), "existing": not created}))
        elif created:
            typer.echo(f"Created task: {task.task_id}")
        else:
            typer.echo(f"Active task already exists: {task.task_id} ({task.status})")
        if execute:
            _exit_for(service.run(task.task_id, _event_printer(output_format)))


@app.command()
def refresh(
    summary_id: Annotated[str, typer.Argument(help="Summary to bring up to date.")],
    execute: Annotated[bool, typer.Option("--run", help="Run the refresh task right away.")] = False,
    config: ConfigOption = None,
    output_format: OutputFormat = "console",
) -> None:
    """Start an incremental refresh for the units that changed since a summary was saved."""
    with _service(config) as service:
        changes, task = service.start_refresh(summary_id)
        if task is None:
            typer.echo(f"Summary {summary_id} is up to date.")
            return
        typer.echo(
            f"Refresh task: {task.task_id} "
            f"({len(changes.changed)} changed, {len(changes.unchanged)} unchanged)"
        )
        if execute:
            _exit_for(service.run(task.task_id, _event_printer(output_format)))


@app.command()
def run(
    task_id: Annotated[str, typer.Argument(help="Task to run or continue.")],
    config: ConfigOption = None,
    output_format: OutputFormat = "console",
) -> None:
    """Run a task in this process, printing its events."""
    with _service(config) as service:
        status = service.run(task_id, _event_printer(output_format))
    _exit_for(status)


@app.command()
def status(
    task_id: Annotated[str, typer.Argument(help="Task to show.")],
    config: ConfigOption = None,
    output_format: OutputFormat = "console",
) -> None:
    """Show a task's current state."""
    with _service(config) as service:
        _echo_task(service.get(task_id), output_format)


@app.command()
def tasks(
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner whose tasks to list.")],
    task_type: Annotated[TaskType | None, typer.Option("--type", "-t", help="Only this task type.")] = None,
    config: ConfigOption = None,
    output_format: OutputFormat = "console",
) -> None:
    """List an owner's tasks, newest first."""
    with _service(config) as service:
        found = service.list_tasks(owner, task_type)
    if output_format == "json":
        typer.echo(json.dumps({"tasks": [task.to_wire() for task in found]}))
        return
    if not found:
        typer.echo("No tasks found.")
        return
    for task in found:
        _echo_task(task, output_format)


@app.command()
def pause(
    task_id: Annotated[str, typer.Argument(help="Task to pause.")],
    config: ConfigOption = None,
) -> None:
    """Request a pause; the running loop stops at its next check."""
    with _service(config) as service:
        task = service.pause(task_id)
    typer.echo(f"{task.task_id}: {task.status}")


@app.command()
def resume(
    task_id: Annotated[str, typer.Argument(help="Paused or failed task to resume.")],
    config: ConfigOption = None,
    output_format: OutputFormat = "console",
) -> None:
    """Resume a task in this process. A FAILED task is retried as a new task."""
    with _service(config) as service:
        task, final = service.resume(task_id, _event_printer(output_format))
    if task.task_id != task_id and output_format == "console":
        typer.echo(f"Resumed as retry task {task.task_id}")
    _exit_for(final)


@app.command()
def cancel(
    task_id: Annotated[str, typer.Argument(help="Task to cancel.")],
    config: ConfigOption = None,
) -> None:
    """Cancel a running, paused, or failed task."""
    with _service(config) as service:
        task = service.cancel(task_id)
    typer.echo(f"{task.task_id}: {task.status}")


@app.command()
def retry(
    task_id: Annotated[str, typer.Argument(help="Failed task to retry.")],
    config: ConfigOption = None,
    execute: Annotated[bool, typer.Option("--run", help="Run the retry task right away.")] = False,
    output_format: OutputFormat = "console",
) -> None:
    """Create a new task from a failed task's last checkpoint."""
    with _service(config) as service:
        task = service.retry(task_id)
        typer.echo(f"Retry task: {task.task_id}")
        if execute:
            _exit_for(service.run(task.task_id, _event_printer(output_format)))


@app.command()
def sweep(config: ConfigOption = None) -> None:
    """Fail RUNNING tasks whose heartbeat went stale."""
    with _service(config) as service:
        failed = service.sweep()
    typer.echo(f"Timed out {len(failed)} task(s).")
    for task_id in failed:
        typer.echo(f"  {task_id}")


@app.command()
def purge(
    config: ConfigOption = None,
    days: Annotated[
        int | None,
        typer.Option("--days", help="Age in days (defaults to retention.finished_task_days).", min=1),
    ] = None,
) -> None:
    """Delete finished tasks older than the retention period."""
    settings = _load_settings(config)
    older_than = days if days is not None else settings.retention.finished_task_days
    with _service(config) as service:
        deleted = service.purge(older_than)
    typer.echo(f"Purged {deleted} finished task(s) older than {older_than} day(s).")


@config_app.command("show")
def config_show(config: ConfigOption = None) -> None:
    """Print the resolved settings as YAML (secrets masked)."""
    typer.echo(render_settings(_load_settings(config)), nl=False)


if __name__ == "__main__":
    app()
