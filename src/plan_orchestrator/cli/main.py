"""Command line entry point for the sandbox pool."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from docker.errors import DockerException
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from ..core.config import OrchestratorConfig, load_config
from ..core.errors import OrchestratorError
from ..core.models import RunResult, RunSummary
from ..core.naming import is_issue_key, parse_task_keys
from ..core.run_logger import format_duration
from ..core.scheduler import TaskScheduler
from ..utils.rich_logging import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config") / "orchestrator.yaml"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_KEYS = 2

console = Console()
err_console = Console(stderr=True)


def _stdout_is_tty() -> bool:
    return sys.stdout.isatty()


def is_task_selector(command: str) -> bool:
    """Comma-separated keys or a single bare key select the scheduler."""
    return "," in command or is_issue_key(command.upper())


def build_scheduler(config: OrchestratorConfig) -> TaskScheduler:
    return TaskScheduler(config)


def _print_summary(summary: RunSummary) -> None:
    table = Table(title="Run summary")
    table.add_column("Issue")
    table.add_column("Worker")
    table.add_column("Result")
    table.add_column("Exit")
    table.add_column("Duration")
    table.add_column("Log")

    for result in summary.results:
        status = "[green]SUCCESS[/]" if result.success else "[red]FAILED[/]"
        table.add_row(
            result.task_id,
            result.worker,
            status,
            "-" if result.exit_code is None else str(result.exit_code),
            format_duration(result.duration_ms),
            result.log_path or "-",
        )

    console.print(table)
    console.print(
        f"[bold]{summary.successful}[/] successful, [bold]{summary.failed}[/] failed "
        f"out of {summary.total} total in {format_duration(summary.duration_ms)}"
    )


def _print_single(label: str, result: RunResult) -> None:
    logger.info(f"{label}: {'SUCCESS' if result.success else 'FAILED'} (exit code: {result.exit_code})")
    if result.stdout:
        click.echo(result.stdout)
    if result.stderr:
        click.echo(result.stderr, err=True)


async def _dispatch(
    scheduler: TaskScheduler,
    args: Tuple[str, ...],
    json_mode: bool,
    verbose: bool,
    parallel: bool,
    dedicated: bool,
) -> int:
    keys: List[str] = []
    if args and is_task_selector(args[0]):
        keys = parse_task_keys(args[0])
        if not keys:
            err_console.print("[red]Error: No valid issue keys found[/]")
            return EXIT_NO_KEYS

    await scheduler.lifecycle.ensure_infrastructure()

    if not args or args[0] == "install":
        logger.info("Running install in container...")
        result = await scheduler.run_single(None, label="install")
        _print_single("Install", result)
        return EXIT_OK if result.success else EXIT_FAILED

    command = args[0]

    if command == "service":
        name = await scheduler.lifecycle.ensure_service_container()
        logger.info(f"Service container {name} is running.")
        return EXIT_OK

    if command == "recreate":
        await scheduler.recreate_pool()
        return EXIT_OK

    if keys:
        single = len(keys) == 1
        summary = await scheduler.run(
            keys,
            dedicated=True if dedicated else None,
            verbose=verbose or (single and not parallel),
        )
        if json_mode:
            click.echo(summary.model_dump_json(indent=2))
        elif single and summary.results:
            # One issue: show its output as if it ran in the foreground
            _print_single(keys[0], summary.results[0])
        else:
            _print_summary(summary)
        return EXIT_FAILED if summary.failed > 0 else EXIT_OK

    custom_command = " ".join(args)
    logger.info(f"Running custom command in container: {custom_command}")
    result = await scheduler.run_single(custom_command)
    _print_single("Command", result)
    return EXIT_OK if result.success else EXIT_FAILED


@click.command(context_settings={"ignore_unknown_options": True})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("--parallel", is_flag=True, help="Use the worker pool even for a single issue")
@click.option("--dedicated", is_flag=True, help="One throwaway container per issue instead of warm reuse")
@click.option("--json", "json_output", is_flag=True, help="Print the JSON summary (default when stdout is not a TTY)")
@click.option("--verbose", is_flag=True, help="Keep per-task stdout in the summary and log at DEBUG")
@click.option("--workers", type=int, default=None, help="Pool size (overrides DOCKER_WORKER_COUNT)")
@click.option(
    "--config", "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="YAML config file (default: config/orchestrator.yaml)",
)
def main(
    args: Tuple[str, ...],
    parallel: bool,
    dedicated: bool,
    json_output: bool,
    verbose: bool,
    workers: Optional[int],
    config_path: Optional[Path],
):
    """Run plan tasks in isolated Docker sandboxes.

    \b
    COMMAND is one of:
      KEY[,KEY...]      run the task commands for each issue on the pool
      install           run the installer only (default with no arguments)
      service           make sure the queue watcher container is running
      recreate          remove worker and service containers and rebuild them
      anything else     run it as a shell command in a warm sandbox
    """
    load_dotenv()
    json_mode = json_output or not _stdout_is_tty()

    try:
        config = load_config(
            config_path or DEFAULT_CONFIG_PATH,
            worker_count=workers,
            reuse_sandboxes=False if dedicated else None,
        )
    except ValueError as e:
        err_console.print(f"[red]Invalid configuration: {e}[/]")
        sys.exit(EXIT_FAILED)

    # Keep stdout clean for the JSON document
    setup_logging(log_file=config.log_file, log_to_stderr=json_mode, verbose=verbose)

    scheduler = build_scheduler(config)
    try:
        exit_code = asyncio.run(
            _dispatch(scheduler, args, json_mode, verbose, parallel, dedicated)
        )
    except (OrchestratorError, DockerException, OSError) as e:
        # OSError covers state and log writes and the SDK's requests transport
        logger.error(f"Error: {e}")
        err_console.print(f"[red]Error: {e}[/]")
        sys.exit(EXIT_FAILED)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
