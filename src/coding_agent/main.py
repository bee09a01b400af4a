"""CLI entrypoint for coding-agent."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from coding_agent import __version__
from coding_agent.controllers import (
    InspectTaskCommand,
    ListTasksCommand,
    PipelineCliController,
    PipelineRunReport,
    ResumePipelineCommand,
    RunPipelineCommand,
)
from coding_agent.pipeline.models import TaskStatus, WorkflowError

click.rich_click.USE_MARKDOWN = True
PIPELINE_CONTROLLER = PipelineCliController()

_T = TypeVar("_T")


@click.group()
@click.version_option(version=__version__, prog_name="coding-agent")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def coding_agent(log_level: str) -> None:
    """Plan → code → review agent pipeline with resumable state."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@coding_agent.command("run")
@click.argument("task")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--plan-only", is_flag=True, help="Run the planner only.")
@click.option("--skip-review", is_flag=True, help="Stop after the coder stage.")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Invoke agents but do not store plan, code changes or review.",
)
@click.option(
    "--working-directory",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=None,
    help="Directory agents work in. Defaults to CODING_AGENT_WORKING_DIRECTORY or cwd.",
)
@click.option(
    "--timeout-seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Per-stage agent timeout.",
)
def run_task(  # noqa: PLR0913
    task: str,
    db_path: Path | None,
    plan_only: bool,
    skip_review: bool,
    dry_run: bool,
    working_directory: Path | None,
    timeout_seconds: int | None,
) -> None:
    """Run the pipeline for a new TASK description."""

    report = _guarded(
        lambda: PIPELINE_CONTROLLER.run(
            RunPipelineCommand(
                db_path=db_path,
                description=task,
                plan_only=plan_only,
                skip_review=skip_review,
                dry_run=dry_run,
                working_directory=working_directory,
                timeout_seconds=timeout_seconds,
            ),
        ),
    )
    _emit_report(report)


@coding_agent.command("resume")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--plan-only", is_flag=True, help="Run the planner only.")
@click.option("--skip-review", is_flag=True, help="Stop after the coder stage.")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Invoke agents but do not store plan, code changes or review.",
)
@click.option(
    "--working-directory",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=None,
    help="Directory agents work in. Defaults to CODING_AGENT_WORKING_DIRECTORY or cwd.",
)
@click.option(
    "--timeout-seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Per-stage agent timeout.",
)
def resume_task(  # noqa: PLR0913
    db_path: Path | None,
    plan_only: bool,
    skip_review: bool,
    dry_run: bool,
    working_directory: Path | None,
    timeout_seconds: int | None,
) -> None:
    """Continue the most recent incomplete task from its last completed stage."""

    report = _guarded(
        lambda: PIPELINE_CONTROLLER.resume(
            ResumePipelineCommand(
                db_path=db_path,
                plan_only=plan_only,
                skip_review=skip_review,
                dry_run=dry_run,
                working_directory=working_directory,
                timeout_seconds=timeout_seconds,
            ),
        ),
    )
    _emit_report(report)


@coding_agent.command("tasks")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def list_tasks(
    db_path: Path | None,
    status: str | None,
    limit: int,
) -> None:
    """List pipeline tasks, newest first."""

    _emit_lines(
        PIPELINE_CONTROLLER.list_tasks(
            ListTasksCommand(
                db_path=db_path,
                status=status.lower() if status else None,
                limit=limit,
            ),
        ),
    )


@coding_agent.command("inspect")
@click.argument("task_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def inspect_task(task_id: str, db_path: Path | None) -> None:
    """Inspect one task with sessions, outputs and event history."""

    _emit_lines(
        PIPELINE_CONTROLLER.inspect_task(
            InspectTaskCommand(
                db_path=db_path,
                task_id=task_id,
            ),
        ),
    )


def _guarded(action: Callable[[], _T]) -> _T:
    try:
        return action()
    except (WorkflowError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_report(report: PipelineRunReport) -> None:
    _emit_lines(report.lines)
    if not report.success:
        raise click.ClickException("Pipeline failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    coding_agent()
