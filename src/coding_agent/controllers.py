"""Controllers for coding-agent CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from coding_agent.agents import build_cli_agents
from coding_agent.config import Settings
from coding_agent.pipeline.coordination import PipelineOptions, resume_pipeline, run_pipeline
from coding_agent.pipeline.models import (
    ExecutionOptions,
    PipelineResult,
    ProgressUpdate,
    TaskStatus,
)
from coding_agent.pipeline.repository import PipelineRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunPipelineCommand:
    """CLI input for a fresh pipeline run."""

    db_path: Path | None
    description: str
    plan_only: bool = False
    skip_review: bool = False
    dry_run: bool = False
    working_directory: Path | None = None
    timeout_seconds: int | None = None


@dataclass(slots=True)
class ResumePipelineCommand:
    """CLI input for resuming the latest incomplete task."""

    db_path: Path | None
    plan_only: bool = False
    skip_review: bool = False
    dry_run: bool = False
    working_directory: Path | None = None
    timeout_seconds: int | None = None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class PipelineRunReport:
    """Pipeline outcome to render in CLI."""

    lines: list[str]
    success: bool


class PipelineCliController:
    """Builds collaborators from settings and runs pipeline and inspection commands."""

    def run(self, command: RunPipelineCommand) -> PipelineRunReport:
        settings = _settings_for_run(
            db_path=command.db_path,
            working_directory=command.working_directory,
            timeout_seconds=command.timeout_seconds,
            dry_run=command.dry_run,
        )
        with _repository(settings) as repository:
            result = run_pipeline(
                command.description,
                _pipeline_options(
                    settings=settings,
                    repository=repository,
                    plan_only=command.plan_only,
                    skip_review=command.skip_review,
                ),
            )
        return _render_result(result, settings=settings)

    def resume(self, command: ResumePipelineCommand) -> PipelineRunReport:
        settings = _settings_for_run(
            db_path=command.db_path,
            working_directory=command.working_directory,
            timeout_seconds=command.timeout_seconds,
            dry_run=command.dry_run,
        )
        with _repository(settings) as repository:
            result = resume_pipeline(
                _pipeline_options(
                    settings=settings,
                    repository=repository,
                    plan_only=command.plan_only,
                    skip_review=command.skip_review,
                ),
            )
        return _render_result(result, settings=settings)

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = TaskStatus(command.status) if command.status else None
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} status={task.status.value} retries={task.retry_count} "
                f"created_at={task.created_at.isoformat()} "
                f"description={_shorten(task.description)}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        """Show one task with sessions, stage outputs and event history."""

        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Description: {task.description}",
            f"Status: {task.status.value}",
            f"Retries: {task.retry_count}",
            f"Error: {task.error or '-'}",
            f"Sessions: {len(details.sessions)}",
        ]
        for session in details.sessions:
            completed = session.completed_at.isoformat() if session.completed_at else "-"
            lines.append(
                f"  #{session.session_id} {session.agent_role.value} {session.status.value} "
                f"started_at={session.started_at.isoformat()} completed_at={completed}"
                + (f" error={session.error}" if session.error else ""),
            )
        lines.append(f"Plan: {_shorten(details.plan.content) if details.plan else '-'}")
        lines.append(f"Code changes: {len(details.code_changes)}")
        for change in details.code_changes:
            lines.append(
                f"  {change.change_type.value} {change.file_path} "
                f"session={change.agent_session_id}: {change.summary}",
            )
        if details.review is not None:
            lines.append(
                f"Review: {details.review.status.value} "
                f"criteria_met={details.review.criteria_met} "
                f"feedback={_shorten(details.review.feedback)}",
            )
        else:
            lines.append("Review: -")
        lines.append(f"Events: {len(details.events)}")
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines


def _settings_for_run(
    *,
    db_path: Path | None,
    working_directory: Path | None,
    timeout_seconds: int | None,
    dry_run: bool,
) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    if working_directory is not None:
        settings.agents.working_directory = working_directory
    if timeout_seconds is not None:
        settings.execution.timeout_seconds = timeout_seconds
    if dry_run:
        settings.execution.dry_run = True
    settings.validate_for_run()
    return settings


def _pipeline_options(
    *,
    settings: Settings,
    repository: PipelineRepository,
    plan_only: bool,
    skip_review: bool,
) -> PipelineOptions:
    return PipelineOptions(
        store=repository,
        agents=build_cli_agents(settings),
        execution_options=ExecutionOptions(
            dry_run=settings.execution.dry_run,
            timeout_seconds=settings.execution.timeout_seconds,
            on_progress=_log_progress,
        ),
        plan_only=plan_only,
        skip_review=skip_review,
    )


def _log_progress(update: ProgressUpdate) -> None:
    logger.info("[%s] %s", update.agent_role.value, update.activity)


def _render_result(result: PipelineResult, *, settings: Settings) -> PipelineRunReport:
    lines = [
        f"Task: {result.task_id or '-'}",
        f"Status: {result.status.value}",
        f"Stages: {len(result.agent_results)}",
    ]
    for stage in result.agent_results:
        role = stage.agent_role.value if stage.agent_role else "-"
        session = stage.session_id if stage.session_id is not None else "-"
        outcome = "ok" if stage.success else f"failed error={stage.error}"
        lines.append(f"  {role} session={session} {outcome}")
    if settings.execution.dry_run:
        lines.append("Dry run: plan, code changes and review were not stored.")

    success = result.status is TaskStatus.COMPLETED
    if not success:
        lines.append(f"Error: {result.error or '-'}")
        if result.task_id is not None:
            lines.append(f"Resume with: coding-agent resume --db-path {settings.db_path}")
    return PipelineRunReport(lines=lines, success=success)


def _shorten(text: str, limit: int = 80) -> str:
    flattened = " ".join(text.split())
    if len(flattened) <= limit:
        return flattened
    return flattened[: limit - 3] + "..."


@contextmanager
def _repository(settings: Settings) -> Iterator[PipelineRepository]:
    repository = PipelineRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
