"""CLI entrypoint for quest-helper."""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from quest_helper import __version__
from quest_helper.backends.local import LocalBackend
from quest_helper.core.config import Config
from quest_helper.core.errors import QuestError
from quest_helper.core.logger import configure_logging
from quest_helper.core.orchestrator import Orchestrator
from quest_helper.core.types import SessionPhase, StopReason, Task, TeardownReport

# Rich console for formatted output
console = Console()

# Seconds between progress display refreshes
REFRESH_INTERVAL = 0.25


@dataclass
class CLIContext:
    """Context object passed between CLI commands."""

    config: Config
    verbose: bool
    quiet: bool
    tasks_file: Path | None = None
    catalog_file: Path | None = None
    time_scale: float = 1.0


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output (DEBUG level logging).",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    default=False,
    help="Minimal output (only errors and results).",
)
@click.option(
    "--tasks-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="QUEST_HELPER_TASKS_FILE",
    default=None,
    help="JSON task list served by the local backend.",
)
@click.option(
    "--catalog-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="QUEST_HELPER_CATALOG_FILE",
    default=None,
    help="JSON detectable-applications catalog served by the local backend.",
)
@click.option(
    "--time-scale",
    type=click.FloatRange(min=0.0, min_open=True),
    default=1.0,
    show_default=True,
    help="Factor applied to the local backend's waits (0.1 runs ten times faster).",
)
@click.pass_context
def main(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    tasks_file: Path | None,
    catalog_file: Path | None,
    time_scale: float,
) -> None:
    """Quest Helper - Drive quest tasks to completion one at a time.

    Watches videos, streams and plays games against a task backend while
    showing smoothed progress, and can process whole queues unattended.
    """
    config = Config.load()

    if verbose:
        configure_logging(level=logging.DEBUG, console_output=True)
    elif quiet:
        configure_logging(level=logging.ERROR, console_output=True)
    else:
        configure_logging(level=logging.WARNING, console_output=True)

    ctx.ensure_object(dict)
    ctx.obj = CLIContext(
        config=config,
        verbose=verbose,
        quiet=quiet,
        tasks_file=tasks_file,
        catalog_file=catalog_file,
        time_scale=time_scale,
    )


def _build_orchestrator(cli_ctx: CLIContext) -> Orchestrator:
    """Create the orchestrator over the local backend.

    Exits with status 1 when no task source is configured.
    """
    if cli_ctx.tasks_file is None:
        console.print("[red]✗ No task source configured[/red]")
        console.print("[dim]Pass --tasks-file or set QUEST_HELPER_TASKS_FILE.[/dim]")
        sys.exit(1)

    backend = LocalBackend.from_files(
        cli_ctx.tasks_file, cli_ctx.catalog_file, time_scale=cli_ctx.time_scale
    )
    return Orchestrator(backend, cli_ctx.config)


def _task_status(task: Task) -> str:
    if task.is_completed:
        return "[green]Completed[/green]"
    if task.is_enrolled:
        return "[cyan]Enrolled[/cyan]"
    return "[dim]Available[/dim]"


def _task_progress(task: Task) -> str:
    if task.target_seconds <= 0:
        return "-"
    pct = min(100.0, task.progress_seconds / task.target_seconds * 100.0)
    return f"{pct:.0f}%"


def generate_stream_key() -> str:
    """Generate a random stream key like ``stream_<32 alphanumerics>``."""
    alphabet = string.ascii_letters + string.digits
    return "stream_" + "".join(secrets.choice(alphabet) for _ in range(32))


def _format_duration(seconds: float) -> str:
    """Format duration like "10 min 0 sec"."""
    if seconds < 60:
        return f"{int(seconds)} sec"
    mins = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{mins} min {secs} sec"


def _display_report(task: Task, report: TeardownReport | None, error: str | None) -> None:
    if report is None:
        console.print(f"[yellow]Task {task.id} did not finish[/yellow]")
        return

    reason = report.reason.value.replace("_", " ")
    if report.reason in (StopReason.COMPLETED, StopReason.AUTO_DETECTED):
        console.print(f"[green]✓ {task.name or task.id} finished ({reason})[/green]")
    else:
        console.print(f"[yellow]{task.name or task.id} stopped ({reason})[/yellow]")

    if error:
        console.print(f"[red]  Error: {error}[/red]")
    if report.submitted_seconds is not None:
        console.print(f"  Submitted: {_format_duration(report.submitted_seconds)}")
    for failure in report.failures:
        console.print(f"[dim]  Teardown: {failure}[/dim]")


async def _follow_session(orchestrator: Orchestrator, task: Task, quiet: bool) -> None:
    """Render progress until the session of ``task`` ends."""
    machine = orchestrator.machine

    if quiet:
        while machine.phase is not SessionPhase.IDLE and orchestrator.session.task_id == task.id:
            await asyncio.sleep(REFRESH_INTERVAL)
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        bar = progress.add_task(task.name or task.id, total=100)
        while machine.phase is not SessionPhase.IDLE and orchestrator.session.task_id == task.id:
            progress.update(bar, completed=orchestrator.session.local_progress_pct)
            await asyncio.sleep(REFRESH_INTERVAL)
        progress.update(bar, completed=100)


async def _run_single(
    cli_ctx: CLIContext,
    task_id: str,
    start: Callable[[Orchestrator, Task], Awaitable[None]],
) -> int:
    orchestrator = _build_orchestrator(cli_ctx)
    try:
        await orchestrator.recover_interrupted()
        await orchestrator.refresh_tasks()
        task = orchestrator.find_task(task_id)
        if task is None:
            console.print(f"[red]✗ Unknown task: {task_id}[/red]")
            return 1
        if task.is_completed:
            console.print(f"[green]✓ Task {task_id} is already completed[/green]")
            return 0

        try:
            await start(orchestrator, task)
        except QuestError as e:
            console.print(f"[red]✗ Failed to start task: {e}[/red]")
            return 1

        await _follow_session(orchestrator, task, cli_ctx.quiet)
        _display_report(task, orchestrator.machine.last_report, orchestrator.error)
        return 0 if orchestrator.error is None else 1
    finally:
        await orchestrator.close()


@main.command()
@click.option("--all", "show_all", is_flag=True, default=False, help="Include completed tasks.")
@click.pass_context
def tasks(ctx: click.Context, show_all: bool) -> None:
    """List tasks with their progress.

    Examples:

        quest-helper --tasks-file tasks.json tasks
    """
    cli_ctx: CLIContext = ctx.obj

    async def fetch() -> tuple[Task, ...]:
        orchestrator = _build_orchestrator(cli_ctx)
        try:
            return await orchestrator.refresh_tasks()
        finally:
            await orchestrator.close()

    snapshot = asyncio.run(fetch())
    shown = [t for t in snapshot if show_all or not t.is_completed]

    if not shown:
        console.print("[dim]No tasks.[/dim]")
        return

    table = Table(title="Tasks")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Target", justify="right")
    table.add_column("Progress", justify="right")
    table.add_column("Status")
    for task in shown:
        table.add_row(
            task.id,
            task.name,
            task.task_type or "-",
            _format_duration(task.target_seconds) if task.target_seconds else "-",
            _task_progress(task),
            _task_status(task),
        )
    console.print(table)


@main.command()
@click.argument("task_id")
@click.pass_context
def watch(ctx: click.Context, task_id: str) -> None:
    """Complete a video task.

    Examples:

        quest-helper --tasks-file tasks.json watch 1234
    """
    cli_ctx: CLIContext = ctx.obj
    code = asyncio.run(_run_single(cli_ctx, task_id, lambda o, t: o.start_video(t)))
    sys.exit(code)


@main.command()
@click.argument("task_id")
@click.option(
    "--stream-key",
    default=None,
    help="Stream key to heartbeat with. Generated when omitted.",
)
@click.pass_context
def stream(ctx: click.Context, task_id: str, stream_key: str | None) -> None:
    """Complete a stream task."""
    cli_ctx: CLIContext = ctx.obj
    key = stream_key or generate_stream_key()
    code = asyncio.run(_run_single(cli_ctx, task_id, lambda o, t: o.start_stream(t, key)))
    sys.exit(code)


@main.command()
@click.argument("task_id")
@click.option(
    "--mode",
    type=click.Choice(["simulate", "heartbeat"]),
    default=None,
    help="Override the configured game mode for this run.",
)
@click.pass_context
def play(ctx: click.Context, task_id: str, mode: str | None) -> None:
    """Complete a game task.

    Examples:

        # Launch a fake executable and open an activity presence
        quest-helper --tasks-file tasks.json --catalog-file catalog.json play 5678

        # Heartbeat directly without a process
        quest-helper --tasks-file tasks.json play 5678 --mode heartbeat
    """
    cli_ctx: CLIContext = ctx.obj
    if mode is not None:
        cli_ctx.config.game.mode = mode  # type: ignore[assignment]
    code = asyncio.run(_run_single(cli_ctx, task_id, lambda o, t: o.start_play(t)))
    sys.exit(code)


async def _run_queue(cli_ctx: CLIContext, kind: str, task_ids: tuple[str, ...]) -> int:
    orchestrator = _build_orchestrator(cli_ctx)
    driver = orchestrator.video_queue if kind == "video" else orchestrator.play_queue
    try:
        await orchestrator.recover_interrupted()
        await orchestrator.refresh_tasks()

        if task_ids:
            selected = [t for t in (orchestrator.find_task(i) for i in task_ids) if t is not None]
        elif kind == "video":
            selected = [t for t in orchestrator.tasks if t.is_video and not t.is_completed]
        else:
            selected = [t for t in orchestrator.tasks if t.is_play and not t.is_completed]

        if not selected:
            console.print("[dim]Nothing to queue.[/dim]")
            return 0

        for task in selected:
            driver.enqueue(task)
        console.print(f"Processing {len(selected)} {kind} task(s)")

        finished: list[tuple[str, str]] = []
        orchestrator.machine.add_end_listener(
            lambda task_id, reason: finished.append((task_id, reason.value))
        )

        await driver.start()
        while driver.running or orchestrator.machine.phase is not SessionPhase.IDLE:
            task_id = orchestrator.session.task_id
            current = orchestrator.find_task(task_id) if task_id else None
            if current is not None:
                await _follow_session(orchestrator, current, cli_ctx.quiet)
            else:
                await asyncio.sleep(REFRESH_INTERVAL)

        for task_id, reason in finished:
            console.print(f"  {task_id}: {reason.replace('_', ' ')}")
        console.print(f"[green]✓ {kind.capitalize()} queue done[/green]")
        return 0
    finally:
        await orchestrator.close()


@main.command()
@click.argument("task_ids", nargs=-1)
@click.option(
    "--kind",
    type=click.Choice(["video", "play"]),
    default="video",
    show_default=True,
    help="Which queue to run.",
)
@click.pass_context
def queue(ctx: click.Context, task_ids: tuple[str, ...], kind: str) -> None:
    """Process tasks one after another.

    Without TASK_IDS, every unfinished task of the chosen kind is queued.

    Examples:

        quest-helper --tasks-file tasks.json queue
        quest-helper --tasks-file tasks.json queue --kind play 5678 9012
    """
    cli_ctx: CLIContext = ctx.obj
    sys.exit(asyncio.run(_run_queue(cli_ctx, kind, task_ids)))


@main.command()
@click.argument("task_ids", nargs=-1, required=True)
@click.pass_context
def accept(ctx: click.Context, task_ids: tuple[str, ...]) -> None:
    """Enroll in one or more tasks."""
    cli_ctx: CLIContext = ctx.obj

    async def run() -> int:
        orchestrator = _build_orchestrator(cli_ctx)
        try:
            await orchestrator.refresh_tasks()
            summary = await orchestrator.accept_all(task_ids)
        finally:
            await orchestrator.close()

        for task_id in summary.accepted:
            console.print(f"[green]✓ Accepted {task_id}[/green]")
        for task_id in summary.failed:
            console.print(f"[red]✗ Failed to accept {task_id}[/red]")
        return 0 if summary.all_accepted else 1

    sys.exit(asyncio.run(run()))


@main.command()
@click.pass_context
def recover(ctx: click.Context) -> None:
    """Clean up a session interrupted by a previous run."""
    cli_ctx: CLIContext = ctx.obj

    async def run() -> TeardownReport | None:
        orchestrator = _build_orchestrator(cli_ctx)
        try:
            return await orchestrator.recover_interrupted()
        finally:
            await orchestrator.close()

    report = asyncio.run(run())
    if report is None:
        console.print("[dim]No interrupted session.[/dim]")
        return

    console.print(f"[green]✓ Recovered task {report.task_id}[/green]")
    if report.terminated_handle:
        console.print(f"  Terminated: {report.terminated_handle}")
    for failure in report.failures:
        console.print(f"[dim]  {failure}[/dim]")


@main.command()
@click.pass_context
def config(ctx: click.Context) -> None:
    """View current configuration."""
    cli_ctx: CLIContext = ctx.obj
    cfg = cli_ctx.config

    console.print()
    console.print("[bold]Quest Helper Configuration[/bold]")
    console.print("=" * 50)
    console.print()

    console.print("[bold cyan]Simulation[/bold cyan]")
    console.print(f"  Speed Multiplier:    {cfg.simulation.speed_multiplier}x")
    console.print(f"  Heartbeat Interval:  {cfg.simulation.heartbeat_interval} s")
    console.print(f"  Tick Interval:       {cfg.simulation.tick_interval} s")
    console.print()

    console.print("[bold cyan]Polling[/bold cyan]")
    console.print(f"  Interval:            {cfg.polling.interval_seconds} s")
    console.print(f"  Poll Push Sessions:  {cfg.polling.poll_push_sessions}")
    console.print()

    console.print("[bold cyan]Game[/bold cyan]")
    console.print(f"  Mode:         {cfg.game.mode}")
    console.print(f"  Platform:     {cfg.game.platform}")
    console.print(f"  Install Dir:  {cfg.game.install_dir}")
    console.print()

    console.print("[bold cyan]Queue[/bold cyan]")
    console.print(f"  Settle Delay:  {cfg.queue.settle_delay} s")
    console.print(f"  Enroll Delay:  {cfg.queue.enroll_delay} s")
    console.print()

    console.print("[bold cyan]Paths[/bold cyan]")
    console.print(f"  State Dir:  {cfg.paths.state_dir}")
    console.print()

    console.print("[bold cyan]Config File[/bold cyan]")
    console.print(f"  Location:  {Config.get_default_config_path()}")
    console.print()

    console.print("[dim]Edit the config file directly or use 'quest-helper config-set'.[/dim]")


@main.command("config-set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a configuration value.

    KEY is the configuration key in dot notation (e.g., game.mode).
    VALUE is the new value to set.

    Examples:

        # Play games by direct heartbeat
        quest-helper config-set game.mode heartbeat

        # Watch videos at 10x
        quest-helper config-set simulation.speed_multiplier 10

        # Poll every 30 seconds
        quest-helper config-set polling.interval_seconds 30
    """
    cli_ctx: CLIContext = ctx.obj
    cfg = cli_ctx.config

    parts = key.split(".")
    if len(parts) != 2:
        console.print(f"[red]✗ Invalid key format: {key}[/red]")
        console.print("[dim]Use format: section.key (e.g., game.mode)[/dim]")
        sys.exit(1)

    section, attr = parts

    section_map = {
        "simulation": cfg.simulation,
        "polling": cfg.polling,
        "game": cfg.game,
        "queue": cfg.queue,
        "paths": cfg.paths,
    }

    if section not in section_map:
        console.print(f"[red]✗ Unknown section: {section}[/red]")
        console.print(f"[dim]Available sections: {', '.join(section_map.keys())}[/dim]")
        sys.exit(1)

    section_obj = section_map[section]

    if attr not in type(section_obj).model_fields:
        console.print(f"[red]✗ Unknown attribute: {attr} in section {section}[/red]")
        sys.exit(1)

    try:
        updated = type(section_obj).model_validate({**section_obj.model_dump(), attr: value})
    except ValidationError as e:
        console.print(f"[red]✗ Invalid value: {e.errors()[0]['msg']}[/red]")
        sys.exit(1)

    setattr(cfg, section, updated)
    cfg.save()
    console.print(f"[green]✓ Set {key} = {getattr(updated, attr)}[/green]")


if __name__ == "__main__":
    main()
