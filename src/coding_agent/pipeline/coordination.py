"""Orchestrate planner → coder → reviewer runs and resume them from stored state."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from coding_agent.agents.base import AgentInvoker
from coding_agent.pipeline.models import (
    PIPELINE_ROLES,
    AgentRole,
    AgentSessionStatus,
    AgentSessionView,
    CodeChangeEntry,
    ConfigurationError,
    ExecutionOptions,
    NothingToResumeError,
    PipelineContext,
    PipelineResult,
    PlanContext,
    ReviewOutcome,
    StageMetadata,
    StageResult,
    TaskRef,
    TaskStatus,
)
from coding_agent.pipeline.session_executor import SessionExecutor
from coding_agent.pipeline.store import StateStore
from coding_agent.storage.common import utc_now

logger = logging.getLogger(__name__)

_STAGE_STATUS: dict[AgentRole, TaskStatus] = {
    AgentRole.PLANNER: TaskStatus.PLANNING,
    AgentRole.CODER: TaskStatus.CODING,
    AgentRole.REVIEWER: TaskStatus.REVIEWING,
}


@dataclass(slots=True)
class PipelineOptions:
    """Collaborators and flags for one pipeline call."""

    store: StateStore
    agents: Mapping[AgentRole, AgentInvoker]
    execution_options: ExecutionOptions | None = None
    plan_only: bool = False
    skip_review: bool = False


def run_pipeline(description: str, options: PipelineOptions) -> PipelineResult:
    """Create a task and run every required stage in order.

    Raises ``ConfigurationError`` before any write when an agent is missing.
    Every other failure is persisted on the task and returned as ``failed``.
    """

    _validate_options(options)
    task_id: str | None = None
    results: list[StageResult] = []
    try:
        task_id = options.store.create_task(description=description)
        logger.info("Created task %s: %s", task_id, description)
        context = PipelineContext(task=TaskRef(id=task_id, description=description))
        return _execute_stages(
            options=options,
            task_id=task_id,
            context=context,
            roles=_stages_to_run(options),
            results=results,
        )
    except Exception as error:  # noqa: BLE001
        return _contain_failure(options=options, task_id=task_id, error=error, results=results)


def resume_pipeline(options: PipelineOptions) -> PipelineResult:
    """Continue the most recent incomplete task from its completed sessions.

    Roles with a completed session are never re-run; their output is rebuilt
    from the store. Raises ``NothingToResumeError`` when every task is done.
    """

    _validate_options(options)
    task_id: str | None = None
    results: list[StageResult] = []
    try:
        task = options.store.get_latest_incomplete_task()
        if task is None:
            raise NothingToResumeError("No incomplete task to resume.")

        task_id = task.task_id
        logger.info("Resuming task %s (status=%s)", task_id, task.status.value)
        if task.error is not None or task.status is TaskStatus.FAILED:
            options.store.clear_task_error(task_id=task_id)

        sessions = _sorted_sessions(options.store.get_agent_sessions_by_task(task_id=task_id))
        context = PipelineContext(
            task=TaskRef(id=task_id, description=task.description),
            previous_sessions=_completed(sessions),
        )
        roles = _stages_to_run(options)
        completed_roles = _restore_completed_stages(
            store=options.store,
            task_id=task_id,
            sessions=sessions,
            roles=roles,
            context=context,
            results=results,
        )
        remaining = [role for role in roles if role not in completed_roles]
        if not remaining:
            logger.info("Task %s has no remaining stages", task_id)
            options.store.update_task_status(task_id=task_id, status=TaskStatus.COMPLETED)
            return PipelineResult(
                task_id=task_id,
                status=TaskStatus.COMPLETED,
                agent_results=list(results),
            )

        logger.info(
            "Task %s remaining stages: %s",
            task_id,
            ", ".join(role.value for role in remaining),
        )
        return _execute_stages(
            options=options,
            task_id=task_id,
            context=context,
            roles=remaining,
            results=results,
        )
    except NothingToResumeError:
        raise
    except Exception as error:  # noqa: BLE001
        return _contain_failure(options=options, task_id=task_id, error=error, results=results)


def _execute_stages(
    *,
    options: PipelineOptions,
    task_id: str,
    context: PipelineContext,
    roles: list[AgentRole],
    results: list[StageResult],
) -> PipelineResult:
    store = options.store
    execution_options = options.execution_options or ExecutionOptions()
    executor = SessionExecutor(store, options.agents)

    for role in roles:
        store.update_task_status(task_id=task_id, status=_STAGE_STATUS[role])
        context.previous_sessions = _completed(
            _sorted_sessions(store.get_agent_sessions_by_task(task_id=task_id)),
        )
        result = executor.run_stage(
            role=role,
            task_id=task_id,
            context=context,
            options=execution_options,
        )
        results.append(result)

        if not result.success:
            error = result.error or f"{role.value.capitalize()} agent failed"
            store.set_task_error(task_id=task_id, error=error)
            logger.warning("Task %s failed at %s stage: %s", task_id, role.value, error)
            return PipelineResult(
                task_id=task_id,
                status=TaskStatus.FAILED,
                agent_results=list(results),
                error=error,
            )

        _apply_stage_output(
            store=store,
            task_id=task_id,
            role=role,
            result=result,
            context=context,
            dry_run=execution_options.dry_run,
        )

    store.update_task_status(task_id=task_id, status=TaskStatus.COMPLETED)
    logger.info("Task %s completed", task_id)
    return PipelineResult(task_id=task_id, status=TaskStatus.COMPLETED, agent_results=list(results))


def _apply_stage_output(  # noqa: PLR0913
    *,
    store: StateStore,
    task_id: str,
    role: AgentRole,
    result: StageResult,
    context: PipelineContext,
    dry_run: bool,
) -> None:
    """Thread a successful stage into the context and persist its output."""

    metadata = result.metadata or StageMetadata()

    if role is AgentRole.PLANNER:
        context.plan = PlanContext(
            content=result.content,
            created_at=result.completed_at or utc_now(),
        )
        if not dry_run:
            _secondary_write(
                f"plan for task {task_id}",
                lambda: store.store_plan(task_id=task_id, content=result.content),
            )
        return

    if role is AgentRole.CODER:
        changes = list(metadata.code_changes or [])
        context.code_changes = changes
        if dry_run or result.session_id is None:
            return
        session_id = result.session_id
        for change in changes:
            _secondary_write(
                f"code change {change.file_path} for task {task_id}",
                lambda change=change: store.record_code_change(
                    task_id=task_id,
                    agent_session_id=session_id,
                    file_path=change.file_path,
                    change_type=change.change_type,
                    summary=change.summary,
                ),
            )
        return

    review = metadata.review
    if review is None:
        logger.warning("Reviewer for task %s reported no structured verdict", task_id)
        return
    if dry_run or result.session_id is None:
        return
    session_id = result.session_id
    _secondary_write(
        f"review for task {task_id}",
        lambda: store.store_review(
            task_id=task_id,
            agent_session_id=session_id,
            status=review.status,
            feedback=review.feedback,
            criteria_met=review.criteria_met,
        ),
    )


def _restore_completed_stages(
    *,
    store: StateStore,
    task_id: str,
    sessions: list[AgentSessionView],
    roles: list[AgentRole],
    context: PipelineContext,
    results: list[StageResult],
) -> set[AgentRole]:
    """Fold the latest completed session of each role in ``roles`` into ``context``."""

    latest: dict[AgentRole, AgentSessionView] = {}
    for session in _completed(sessions):
        if session.agent_role in roles and session.result is not None:
            latest[session.agent_role] = session

    for role in roles:
        session = latest.get(role)
        if session is None:
            continue
        content = session.result or ""
        completed_at = session.completed_at or session.started_at
        metadata: StageMetadata | None = None

        if role is AgentRole.PLANNER:
            context.plan = PlanContext(content=content, created_at=completed_at)
        elif role is AgentRole.CODER:
            changes = [
                CodeChangeEntry(
                    file_path=change.file_path,
                    change_type=change.change_type,
                    summary=change.summary,
                )
                for change in store.get_code_changes_for_task(task_id=task_id)
                if change.agent_session_id == session.session_id
            ]
            context.code_changes = changes
            metadata = StageMetadata(code_changes=changes)
        else:
            review = store.get_review_for_task(task_id=task_id)
            if review is not None and review.agent_session_id == session.session_id:
                metadata = StageMetadata(
                    review=ReviewOutcome(
                        status=review.status,
                        criteria_met=review.criteria_met,
                        feedback=review.feedback,
                    ),
                )

        results.append(
            StageResult(
                success=True,
                content=content,
                metadata=metadata,
                agent_role=role,
                session_id=session.session_id,
                completed_at=completed_at,
            ),
        )
        logger.info("Restored %s output from session %d", role.value, session.session_id)

    return set(latest)


def _contain_failure(
    *,
    options: PipelineOptions,
    task_id: str | None,
    error: Exception,
    results: list[StageResult],
) -> PipelineResult:
    message = str(error) or repr(error)
    logger.exception("Pipeline for task %s failed unexpectedly", task_id or "<not created>")
    if task_id is not None:
        try:
            options.store.set_task_error(task_id=task_id, error=message)
        except Exception:  # noqa: BLE001
            logger.warning("Could not record error for task %s", task_id, exc_info=True)
    return PipelineResult(
        task_id=task_id,
        status=TaskStatus.FAILED,
        agent_results=list(results),
        error=message,
    )


def _secondary_write(description: str, write: Callable[[], object]) -> None:
    try:
        write()
    except Exception:  # noqa: BLE001
        logger.warning("Failed to store %s", description, exc_info=True)


def _validate_options(options: PipelineOptions) -> None:
    if options.store is None:
        raise ConfigurationError("A state store is required.")
    required = [AgentRole.PLANNER, AgentRole.CODER]
    if not (options.skip_review or options.plan_only):
        required.append(AgentRole.REVIEWER)
    missing = [role.value for role in required if options.agents.get(role) is None]
    if missing:
        raise ConfigurationError(f"Missing agent for role(s): {', '.join(missing)}")


def _stages_to_run(options: PipelineOptions) -> list[AgentRole]:
    if options.plan_only:
        return [AgentRole.PLANNER]
    if options.skip_review:
        return [AgentRole.PLANNER, AgentRole.CODER]
    return list(PIPELINE_ROLES)


def _sorted_sessions(sessions: list[AgentSessionView]) -> list[AgentSessionView]:
    return sorted(sessions, key=lambda session: (session.started_at, session.session_id))


def _completed(sessions: list[AgentSessionView]) -> list[AgentSessionView]:
    return [session for session in sessions if session.status is AgentSessionStatus.COMPLETED]
