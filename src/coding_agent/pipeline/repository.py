"""Pipeline state repository backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from pathlib import Path
from uuid import uuid4

from sqlalchemy import literal_column
from sqlmodel import Session, col, select

from coding_agent.pipeline.models import (
    AgentRole,
    AgentSessionStatus,
    AgentSessionView,
    ChangeType,
    CodeChangeView,
    PlanView,
    ReviewStatus,
    ReviewView,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TaskView,
)
from coding_agent.storage.alembic_runner import upgrade_head
from coding_agent.storage.common import (
    build_sqlite_engine,
    to_utc_aware_datetime,
    utc_now,
)
from coding_agent.storage.sqlmodel_models import (
    AgentSessionRow,
    CodeChangeRow,
    PipelineTask,
    PipelineTaskEvent,
    PlanRow,
    ReviewRow,
)

_STARTABLE_SESSION_STATUSES = frozenset({AgentSessionStatus.PENDING.value})
_FINISHABLE_SESSION_STATUSES = frozenset(
    {AgentSessionStatus.PENDING.value, AgentSessionStatus.RUNNING.value},
)
# Tie-breaker for tasks created within the same clock tick.
_TASK_INSERT_ORDER = literal_column("tasks.rowid")


class PipelineRepository:
    """State store facade: one short transaction per call."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    # -- tasks ----------------------------------------------------------------

    def create_task(self, *, description: str) -> str:
        """Create a pending task."""

        now = utc_now()
        task_id = str(uuid4())
        with Session(self.engine) as session:
            session.add(
                PipelineTask(
                    task_id=task_id,
                    description=description,
                    status=TaskStatus.PENDING.value,
                    error=None,
                    retry_count=0,
                    created_at=now,
                    updated_at=now,
                ),
            )
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="created",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={},
            )
            session.commit()
        return task_id

    def update_task_status(self, *, task_id: str, status: TaskStatus) -> None:
        """Move task to a new status."""

        with Session(self.engine) as session:
            row = self._get_task_row(session=session, task_id=task_id)
            previous = TaskStatus(row.status)
            row.status = status.value
            row.updated_at = utc_now()
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="status_changed",
                status_from=previous,
                status_to=status,
                details={},
            )
            session.commit()

    def set_task_error(self, *, task_id: str, error: str) -> None:
        """Store error, mark task failed and increment retry count."""

        with Session(self.engine) as session:
            row = self._get_task_row(session=session, task_id=task_id)
            previous = TaskStatus(row.status)
            row.error = error
            row.status = TaskStatus.FAILED.value
            row.retry_count = row.retry_count + 1
            row.updated_at = utc_now()
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="error_set",
                status_from=previous,
                status_to=TaskStatus.FAILED,
                details={"error": error, "retry_count": row.retry_count},
            )
            session.commit()

    def clear_task_error(self, *, task_id: str) -> None:
        """Clear error and reset task to pending."""

        with Session(self.engine) as session:
            row = self._get_task_row(session=session, task_id=task_id)
            previous = TaskStatus(row.status)
            row.error = None
            row.status = TaskStatus.PENDING.value
            row.updated_at = utc_now()
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="error_cleared",
                status_from=previous,
                status_to=TaskStatus.PENDING,
                details={},
            )
            session.commit()

    def get_task(self, *, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(PipelineTask).where(PipelineTask.task_id == task_id),
            ).one_or_none()
        return _to_task_view(row) if row is not None else None

    def get_latest_incomplete_task(self) -> TaskView | None:
        """Return the most recently created task that is not completed."""

        with Session(self.engine) as session:
            row = session.exec(
                select(PipelineTask)
                .where(PipelineTask.status != TaskStatus.COMPLETED.value)
                .order_by(col(PipelineTask.created_at).desc(), _TASK_INSERT_ORDER.desc())
                .limit(1),
            ).one_or_none()
        return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(PipelineTask)
            if status is not None:
                statement = statement.where(PipelineTask.status == status.value)
            rows = session.exec(
                statement.order_by(
                    col(PipelineTask.created_at).desc(),
                    _TASK_INSERT_ORDER.desc(),
                ).limit(limit),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_task_events(self, *, task_id: str) -> list[TaskEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PipelineTaskEvent)
                .where(PipelineTaskEvent.task_id == task_id)
                .order_by(col(PipelineTaskEvent.created_at).asc(), col(PipelineTaskEvent.id).asc()),
            ).all()

        events: list[TaskEventView] = []
        for row in rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=int(row.id or 0),
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=TaskStatus(row.status_from) if row.status_from else None,
                    status_to=TaskStatus(row.status_to) if row.status_to else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return events

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task with events, sessions and stage outputs."""

        task = self.get_task(task_id=task_id)
        if task is None:
            return None
        return TaskDetails(
            task=task,
            events=self.list_task_events(task_id=task_id),
            sessions=self.get_agent_sessions_by_task(task_id=task_id),
            plan=self.get_plan_for_task(task_id=task_id),
            code_changes=self.get_code_changes_for_task(task_id=task_id),
            review=self.get_review_for_task(task_id=task_id),
        )

    # -- agent sessions -------------------------------------------------------

    def create_agent_session(self, *, task_id: str, agent_role: AgentRole) -> int:
        """Create a pending session stamped with its start time."""

        with Session(self.engine) as session:
            self._get_task_row(session=session, task_id=task_id)
            row = AgentSessionRow(
                task_id=task_id,
                agent_role=agent_role.value,
                status=AgentSessionStatus.PENDING.value,
                started_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return int(row.id or 0)

    def start_agent_session(self, *, session_id: int) -> None:
        with Session(self.engine) as session:
            row = self._get_session_row(
                session=session,
                session_id=session_id,
                allowed_statuses=_STARTABLE_SESSION_STATUSES,
            )
            row.status = AgentSessionStatus.RUNNING.value
            session.add(row)
            session.commit()

    def complete_agent_session(self, *, session_id: int, result: str) -> None:
        with Session(self.engine) as session:
            row = self._get_session_row(
                session=session,
                session_id=session_id,
                allowed_statuses=_FINISHABLE_SESSION_STATUSES,
            )
            row.status = AgentSessionStatus.COMPLETED.value
            row.result = result
            row.completed_at = utc_now()
            session.add(row)
            session.commit()

    def fail_agent_session(self, *, session_id: int, error: str) -> None:
        with Session(self.engine) as session:
            row = self._get_session_row(
                session=session,
                session_id=session_id,
                allowed_statuses=_FINISHABLE_SESSION_STATUSES,
            )
            row.status = AgentSessionStatus.FAILED.value
            row.error = error
            row.completed_at = utc_now()
            session.add(row)
            session.commit()

    def get_agent_sessions_by_task(self, *, task_id: str) -> list[AgentSessionView]:
        """Sessions for a task, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(AgentSessionRow)
                .where(AgentSessionRow.task_id == task_id)
                .order_by(col(AgentSessionRow.started_at).asc(), col(AgentSessionRow.id).asc()),
            ).all()
        return [_to_session_view(row) for row in rows]

    # -- stage outputs --------------------------------------------------------

    def store_plan(self, *, task_id: str, content: str) -> int:
        with Session(self.engine) as session:
            self._get_task_row(session=session, task_id=task_id)
            row = PlanRow(task_id=task_id, content=content, created_at=utc_now())
            session.add(row)
            session.commit()
            session.refresh(row)
            return int(row.id or 0)

    def get_plan_for_task(self, *, task_id: str) -> PlanView | None:
        """Most recent plan wins."""

        with Session(self.engine) as session:
            row = session.exec(
                select(PlanRow)
                .where(PlanRow.task_id == task_id)
                .order_by(col(PlanRow.created_at).desc(), col(PlanRow.id).desc())
                .limit(1),
            ).one_or_none()
        if row is None:
            return None
        return PlanView(
            plan_id=int(row.id or 0),
            task_id=row.task_id,
            content=row.content,
            created_at=to_utc_aware_datetime(row.created_at),
        )

    def record_code_change(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        agent_session_id: int,
        file_path: str,
        change_type: ChangeType,
        summary: str,
    ) -> int:
        with Session(self.engine) as session:
            self._get_task_row(session=session, task_id=task_id)
            row = CodeChangeRow(
                task_id=task_id,
                agent_session_id=agent_session_id,
                file_path=file_path,
                change_type=change_type.value,
                summary=summary,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return int(row.id or 0)

    def get_code_changes_for_task(self, *, task_id: str) -> list[CodeChangeView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(CodeChangeRow)
                .where(CodeChangeRow.task_id == task_id)
                .order_by(col(CodeChangeRow.created_at).asc(), col(CodeChangeRow.id).asc()),
            ).all()
        return [
            CodeChangeView(
                change_id=int(row.id or 0),
                task_id=row.task_id,
                agent_session_id=row.agent_session_id,
                file_path=row.file_path,
                change_type=ChangeType(row.change_type),
                summary=row.summary,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]

    def store_review(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        agent_session_id: int,
        status: ReviewStatus,
        feedback: str,
        criteria_met: bool,
    ) -> int:
        with Session(self.engine) as session:
            self._get_task_row(session=session, task_id=task_id)
            row = ReviewRow(
                task_id=task_id,
                agent_session_id=agent_session_id,
                status=status.value,
                feedback=feedback,
                criteria_met=criteria_met,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return int(row.id or 0)

    def get_review_for_task(self, *, task_id: str) -> ReviewView | None:
        """Most recent review wins."""

        with Session(self.engine) as session:
            row = session.exec(
                select(ReviewRow)
                .where(ReviewRow.task_id == task_id)
                .order_by(col(ReviewRow.created_at).desc(), col(ReviewRow.id).desc())
                .limit(1),
            ).one_or_none()
        if row is None:
            return None
        return ReviewView(
            review_id=int(row.id or 0),
            task_id=row.task_id,
            agent_session_id=row.agent_session_id,
            status=ReviewStatus(row.status),
            feedback=row.feedback,
            criteria_met=row.criteria_met,
            created_at=to_utc_aware_datetime(row.created_at),
        )

    # -- helpers --------------------------------------------------------------

    def _get_task_row(self, *, session: Session, task_id: str) -> PipelineTask:
        row = session.exec(
            select(PipelineTask).where(PipelineTask.task_id == task_id),
        ).one_or_none()
        if row is None:
            raise LookupError(f"Task not found: {task_id}")
        return row

    def _get_session_row(
        self,
        *,
        session: Session,
        session_id: int,
        allowed_statuses: frozenset[str],
    ) -> AgentSessionRow:
        row = session.exec(
            select(AgentSessionRow).where(AgentSessionRow.id == session_id),
        ).one_or_none()
        if row is None:
            raise LookupError(f"Agent session not found: {session_id}")
        if row.status not in allowed_statuses:
            raise ValueError(
                f"Agent session {session_id} is {row.status}; "
                f"expected one of: {', '.join(sorted(allowed_statuses))}",
            )
        return row

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            PipelineTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _to_task_view(row: PipelineTask) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        description=row.description,
        status=TaskStatus(row.status),
        error=row.error,
        retry_count=row.retry_count,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_session_view(row: AgentSessionRow) -> AgentSessionView:
    return AgentSessionView(
        session_id=int(row.id or 0),
        task_id=row.task_id,
        agent_role=AgentRole(row.agent_role),
        status=AgentSessionStatus(row.status),
        started_at=to_utc_aware_datetime(row.started_at),
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
        result=row.result,
        error=row.error,
    )
