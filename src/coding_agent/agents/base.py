"""Agent invoker interface and prompt helpers shared by implementations."""

from __future__ import annotations

from typing import Protocol

from coding_agent.pipeline.models import (
    AgentRole,
    ExecutionOptions,
    PipelineContext,
    StageResult,
)

ROLE_ALLOWED_TOOLS: dict[AgentRole, tuple[str, ...]] = {
    AgentRole.PLANNER: ("Read", "Glob", "Grep", "WebFetch", "WebSearch"),
    AgentRole.CODER: ("Read", "Glob", "Grep", "Write", "Edit", "Bash", "WebFetch", "WebSearch"),
    AgentRole.REVIEWER: ("Read", "Glob", "Grep"),
}

ROLE_BRIEFS: dict[AgentRole, str] = {
    AgentRole.PLANNER: (
        "You are the planner. Analyze the task and the codebase without modifying files, "
        "then produce a step-by-step implementation plan. List the files each step touches "
        "and estimate its complexity (low, medium or high)."
    ),
    AgentRole.CODER: (
        "You are the coder. Implement the plan in the working directory. "
        "Report every file you created, edited or deleted with a one-line summary."
    ),
    AgentRole.REVIEWER: (
        "You are the reviewer. Check the code changes against the task and the plan "
        "without modifying files. Decide whether the acceptance criteria are met and "
        "return passed, failed or needs_revision with actionable feedback."
    ),
}

_SESSION_RESULT_PREVIEW_CHARS = 100


class AgentInvoker(Protocol):
    """Runs one agent session for a fixed role."""

    role: AgentRole

    def execute(
        self,
        context: PipelineContext,
        options: ExecutionOptions | None = None,
    ) -> StageResult:
        """Run the agent against ``context`` and report its outcome.

        Implementations may raise; the session executor contains the error.
        """


def build_user_prompt(role: AgentRole, context: PipelineContext) -> str:
    """Render the role brief plus everything earlier stages handed over."""

    parts: list[str] = [f"# Role\n{ROLE_BRIEFS[role]}\n", f"# Task\n{context.task.description}\n"]

    if context.plan is not None:
        parts.append(f"# Plan (from planner)\n{context.plan.content}\n")

    if context.code_changes:
        parts.append("# Code changes (from coder)")
        parts.extend(
            f"- {change.file_path} ({change.change_type.value}): {change.summary}"
            for change in context.code_changes
        )
        parts.append("")

    if context.previous_sessions:
        parts.append("# Previous agent sessions")
        for session in context.previous_sessions:
            parts.append(f"- {session.agent_role.value}: {session.status.value}")
            if session.result:
                parts.append(f"  Result: {session.result[:_SESSION_RESULT_PREVIEW_CHARS]}...")
        parts.append("")

    return "\n".join(parts)
