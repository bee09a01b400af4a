"""State store interface consumed by the pipeline coordinator."""

from __future__ import annotations

from typing import Protocol

from coding_agent.pipeline.models import (
    AgentRole,
    AgentSessionView,
    ChangeType,
    CodeChangeView,
    PlanView,
    ReviewStatus,
    ReviewView,
    TaskStatus,
    TaskView,
)


class StateStore(Protocol):
    """Create/read/update operations on persisted pipeline entities.

    Every call is atomic for the single record it touches; there are no
    multi-record transactions, so callers sequence consistency by call order.
    """

    def create_task(self, *, description: str) -> str:
        """Insert a ``pending`` task and return its id."""

    def update_task_status(self, *, task_id: str, status: TaskStatus) -> None:
        """Move a task to ``status``."""

    def set_task_error(self, *, task_id: str, error: str) -> None:
        """Record an error, mark the task ``failed`` and bump its retry count."""

    def clear_task_error(self, *, task_id: str) -> None:
        """Drop the stored error and return the task to ``pending``."""

    def get_task(self, *, task_id: str) -> TaskView | None:
        """Load one task."""

    def get_latest_incomplete_task(self) -> TaskView | None:
        """Most recently created task whose status is not ``completed``."""

    def create_agent_session(self, *, task_id: str, agent_role: AgentRole) -> int:
        """Insert a ``pending`` session and return its id."""

    def start_agent_session(self, *, session_id: int) -> None:
        """Mark a session ``running``."""

    def complete_agent_session(self, *, session_id: int, result: str) -> None:
        """Mark a session ``completed`` with its result content."""

    def fail_agent_session(self, *, session_id: int, error: str) -> None:
        """Mark a session ``failed`` with an error message."""

    def get_agent_sessions_by_task(self, *, task_id: str) -> list[AgentSessionView]:
        """All sessions for a task, in no guaranteed order."""

    def store_plan(self, *, task_id: str, content: str) -> int:
        """Persist planner output."""

    def get_plan_for_task(self, *, task_id: str) -> PlanView | None:
        """Most recent plan for a task."""

    def record_code_change(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        agent_session_id: int,
        file_path: str,
        change_type: ChangeType,
        summary: str,
    ) -> int:
        """Persist one file change reported by a coder session."""

    def get_code_changes_for_task(self, *, task_id: str) -> list[CodeChangeView]:
        """All file changes for a task, oldest first."""

    def store_review(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        agent_session_id: int,
        status: ReviewStatus,
        feedback: str,
        criteria_met: bool,
    ) -> int:
        """Persist a reviewer verdict."""

    def get_review_for_task(self, *, task_id: str) -> ReviewView | None:
        """Most recent review for a task."""
