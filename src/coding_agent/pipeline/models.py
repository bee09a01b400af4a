"""Domain models for the plan → code → review pipeline."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AgentRole(str, Enum):
    """Agent roles, declared in pipeline execution order."""

    PLANNER = "planner"
    CODER = "coder"
    REVIEWER = "reviewer"


PIPELINE_ROLES: tuple[AgentRole, ...] = (AgentRole.PLANNER, AgentRole.CODER, AgentRole.REVIEWER)


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    PLANNING = "planning"
    CODING = "coding"
    REVIEWING = "reviewing"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentSessionStatus(str, Enum):
    """Agent session lifecycle: pending → running → completed | failed."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_SESSION_STATUSES = frozenset({AgentSessionStatus.COMPLETED, AgentSessionStatus.FAILED})


class ReviewStatus(str, Enum):
    """Reviewer verdict."""

    PASSED = "passed"
    FAILED = "failed"
    NEEDS_REVISION = "needs_revision"


class ChangeType(str, Enum):
    """File change kinds reported by the coder."""

    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


# Stored task views


@dataclass(slots=True)
class TaskView:
    """Readable task record."""

    task_id: str
    description: str
    status: TaskStatus
    error: str | None
    retry_count: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AgentSessionView:
    """One execution attempt of one agent role."""

    session_id: int
    task_id: str
    agent_role: AgentRole
    status: AgentSessionStatus
    started_at: datetime
    completed_at: datetime | None = None
    result: str | None = None
    error: str | None = None


@dataclass(slots=True)
class PlanView:
    """Stored planner output."""

    plan_id: int
    task_id: str
    content: str
    created_at: datetime


@dataclass(slots=True)
class CodeChangeView:
    """Stored file change reported by a coder session."""

    change_id: int
    task_id: str
    agent_session_id: int
    file_path: str
    change_type: ChangeType
    summary: str
    created_at: datetime


@dataclass(slots=True)
class ReviewView:
    """Stored reviewer verdict."""

    review_id: int
    task_id: str
    agent_session_id: int
    status: ReviewStatus
    feedback: str
    criteria_met: bool
    created_at: datetime


@dataclass(slots=True)
class TaskDetails:
    """Task with its full history, for inspection."""

    task: TaskView
    events: list[TaskEventView]
    sessions: list[AgentSessionView]
    plan: PlanView | None
    code_changes: list[CodeChangeView]
    review: ReviewView | None


# Stage metadata reported by agents


@dataclass(slots=True)
class PlanStep:
    """One planner step."""

    description: str
    files: list[str] = field(default_factory=list)
    estimated_complexity: str = "medium"


@dataclass(slots=True)
class PlanOutline:
    """Structured plan reported by the planner."""

    steps: list[PlanStep] = field(default_factory=list)


@dataclass(slots=True)
class CodeChangeEntry:
    """File change as reported by the coder and threaded to the reviewer."""

    file_path: str
    change_type: ChangeType
    summary: str


@dataclass(slots=True)
class ReviewIssue:
    """One reviewer finding."""

    severity: str
    message: str
    file: str | None = None


@dataclass(slots=True)
class ReviewOutcome:
    """Structured verdict reported by the reviewer."""

    status: ReviewStatus
    criteria_met: bool
    feedback: str = ""
    issues: list[ReviewIssue] = field(default_factory=list)


@dataclass(slots=True)
class StageMetadata:
    """Role-specific structured output. Each role fills its own field."""

    plan: PlanOutline | None = None
    code_changes: list[CodeChangeEntry] | None = None
    review: ReviewOutcome | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> StageMetadata:
        """Parse the JSON shape agents write (camelCase or snake_case keys)."""

        plan_raw = raw.get("plan")
        changes_raw = raw.get("codeChanges", raw.get("code_changes"))
        review_raw = raw.get("review")

        plan: PlanOutline | None = None
        if plan_raw is not None:
            if not isinstance(plan_raw, Mapping):
                raise TypeError("metadata.plan must be an object")
            steps_raw = plan_raw.get("steps", [])
            if not isinstance(steps_raw, list):
                raise TypeError("metadata.plan.steps must be an array")
            plan = PlanOutline(steps=[_parse_plan_step(item) for item in steps_raw])

        code_changes: list[CodeChangeEntry] | None = None
        if changes_raw is not None:
            if not isinstance(changes_raw, list):
                raise TypeError("metadata.codeChanges must be an array")
            code_changes = [_parse_code_change(item) for item in changes_raw]

        review: ReviewOutcome | None = None
        if review_raw is not None:
            review = _parse_review(review_raw)

        return cls(plan=plan, code_changes=code_changes, review=review)


# Pipeline context and execution


@dataclass(slots=True)
class TaskRef:
    """Task identity carried in the pipeline context."""

    id: str
    description: str


@dataclass(slots=True)
class PlanContext:
    """Plan text threaded from the planner into later stages."""

    content: str
    created_at: datetime


@dataclass(slots=True)
class PipelineContext:
    """Bundle passed into every stage."""

    task: TaskRef
    plan: PlanContext | None = None
    code_changes: list[CodeChangeEntry] | None = None
    previous_sessions: list[AgentSessionView] = field(default_factory=list)


@dataclass(slots=True)
class ProgressUpdate:
    """Progress notification emitted while a stage runs."""

    agent_role: AgentRole
    activity: str
    timestamp: datetime


@dataclass(slots=True)
class ExecutionOptions:
    """Per-stage execution knobs."""

    dry_run: bool = False
    timeout_seconds: int | None = None
    on_progress: Callable[[ProgressUpdate], None] | None = None


@dataclass(slots=True)
class StageResult:
    """Outcome of one stage, uniform for success, reported failure and crash."""

    success: bool
    content: str
    error: str | None = None
    metadata: StageMetadata | None = None
    agent_role: AgentRole | None = None
    session_id: int | None = None
    completed_at: datetime | None = None


@dataclass(slots=True)
class PipelineResult:
    """Result of one run_pipeline / resume_pipeline call."""

    task_id: str | None
    status: TaskStatus
    agent_results: list[StageResult] = field(default_factory=list)
    error: str | None = None


# Errors


class WorkflowError(RuntimeError):
    """Pipeline coordination error."""


class ConfigurationError(WorkflowError):
    """Required agent or collaborator missing; raised before any state is written."""


class NothingToResumeError(WorkflowError):
    """Resume requested but no incomplete task exists."""


class AgentExecutionError(RuntimeError):
    """Agent invoker could not produce a result."""

    def __init__(self, agent_role: AgentRole, message: str) -> None:
        super().__init__(f"[{agent_role.value}] {message}")
        self.agent_role = agent_role


def _parse_plan_step(item: object) -> PlanStep:
    if not isinstance(item, Mapping):
        raise TypeError("metadata.plan.steps entry must be an object")
    description = item.get("description")
    files = item.get("files", [])
    complexity = item.get("estimatedComplexity", item.get("estimated_complexity", "medium"))
    if not isinstance(description, str):
        raise TypeError("metadata.plan.steps.description must be a string")
    if not isinstance(files, list) or not all(isinstance(value, str) for value in files):
        raise TypeError("metadata.plan.steps.files must be an array of strings")
    return PlanStep(description=description, files=list(files), estimated_complexity=str(complexity))


def _parse_code_change(item: object) -> CodeChangeEntry:
    if not isinstance(item, Mapping):
        raise TypeError("metadata.codeChanges entry must be an object")
    file_path = item.get("filePath", item.get("file_path"))
    change_type = item.get("changeType", item.get("change_type"))
    summary = item.get("summary", "")
    if not isinstance(file_path, str) or not file_path.strip():
        raise ValueError("metadata.codeChanges.filePath must be a non-empty string")
    if not isinstance(summary, str):
        raise TypeError("metadata.codeChanges.summary must be a string")
    return CodeChangeEntry(
        file_path=file_path,
        change_type=ChangeType(change_type),
        summary=summary,
    )


def _parse_review(raw: object) -> ReviewOutcome:
    if not isinstance(raw, Mapping):
        raise TypeError("metadata.review must be an object")
    criteria_met = raw.get("criteriaMet", raw.get("criteria_met", False))
    feedback = raw.get("feedback", "")
    issues_raw = raw.get("issues", [])
    if not isinstance(criteria_met, bool):
        raise TypeError("metadata.review.criteriaMet must be a boolean")
    if not isinstance(feedback, str):
        raise TypeError("metadata.review.feedback must be a string")
    if not isinstance(issues_raw, list):
        raise TypeError("metadata.review.issues must be an array")
    issues: list[ReviewIssue] = []
    for issue in issues_raw:
        if not isinstance(issue, Mapping):
            raise TypeError("metadata.review.issues entry must be an object")
        file_value = issue.get("file")
        issues.append(
            ReviewIssue(
                severity=str(issue.get("severity", "info")),
                message=str(issue.get("message", "")),
                file=str(file_value) if file_value is not None else None,
            ),
        )
    return ReviewOutcome(
        status=ReviewStatus(raw.get("status")),
        criteria_met=criteria_met,
        feedback=feedback,
        issues=issues,
    )
