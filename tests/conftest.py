"""Shared test fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

from coding_agent.pipeline.models import (
    AgentRole,
    ChangeType,
    CodeChangeEntry,
    ExecutionOptions,
    PipelineContext,
    PlanOutline,
    PlanStep,
    ReviewOutcome,
    ReviewStatus,
    StageMetadata,
    StageResult,
)
from coding_agent.pipeline.repository import PipelineRepository

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m coding_agent.agents.echo_agent "
    "--stage-manifest {stage_manifest} --prompt-file {prompt_file}"
)


def default_stage_result(role: AgentRole) -> StageResult:
    """Successful result with role-appropriate structured metadata."""

    if role is AgentRole.PLANNER:
        return StageResult(
            success=True,
            content="1. Add GET /health returning 200",
            metadata=StageMetadata(
                plan=PlanOutline(
                    steps=[PlanStep(description="Add health route", files=["app/health.py"])],
                ),
            ),
        )
    if role is AgentRole.CODER:
        return StageResult(
            success=True,
            content="Added health endpoint",
            metadata=StageMetadata(
                code_changes=[
                    CodeChangeEntry(
                        file_path="app/health.py",
                        change_type=ChangeType.CREATE,
                        summary="GET /health handler",
                    ),
                    CodeChangeEntry(
                        file_path="app/routes.py",
                        change_type=ChangeType.EDIT,
                        summary="Register health route",
                    ),
                ],
            ),
        )
    return StageResult(
        success=True,
        content="Endpoint matches the plan",
        metadata=StageMetadata(
            review=ReviewOutcome(
                status=ReviewStatus.PASSED,
                criteria_met=True,
                feedback="Looks good",
            ),
        ),
    )


class ScriptedAgent:
    """In-process invoker replaying queued outcomes, then default successes."""

    def __init__(self, role: AgentRole) -> None:
        self.role = role
        self.outcomes: list[StageResult | Exception] = []
        self.contexts: list[PipelineContext] = []
        self.options: list[ExecutionOptions | None] = []

    def queue(self, *outcomes: StageResult | Exception) -> ScriptedAgent:
        self.outcomes.extend(outcomes)
        return self

    @property
    def call_count(self) -> int:
        return len(self.contexts)

    def execute(
        self,
        context: PipelineContext,
        options: ExecutionOptions | None = None,
    ) -> StageResult:
        self.contexts.append(
            replace(
                context,
                code_changes=list(context.code_changes)
                if context.code_changes is not None
                else None,
                previous_sessions=list(context.previous_sessions),
            ),
        )
        self.options.append(options)
        outcome = self.outcomes.pop(0) if self.outcomes else default_stage_result(self.role)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingStore:
    """Pass-through store wrapper that records calls and can inject failures."""

    def __init__(self, inner: PipelineRepository) -> None:
        self.inner = inner
        self.calls: list[str] = []
        self.fail_on: set[str] = set()

    def __getattr__(self, name: str) -> Any:
        attribute = getattr(self.inner, name)
        if not callable(attribute):
            return attribute

        def _recorded(*args: Any, **kwargs: Any) -> Any:
            self.calls.append(name)
            if name in self.fail_on:
                raise RuntimeError(f"{name} unavailable")
            return attribute(*args, **kwargs)

        return _recorded

    def count(self, name: str) -> int:
        return self.calls.count(name)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "pipeline.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[PipelineRepository]:
    repo = PipelineRepository(db_path)
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def store(repository: PipelineRepository) -> RecordingStore:
    return RecordingStore(repository)


@pytest.fixture()
def agents() -> dict[AgentRole, ScriptedAgent]:
    return {role: ScriptedAgent(role) for role in AgentRole}


@pytest.fixture()
def stage_result() -> Callable[[AgentRole], StageResult]:
    return default_stage_result


@pytest.fixture()
def echo_agent(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point every role at the echo agent and return the agents' working directory."""

    working_directory = tmp_path / "project"
    working_directory.mkdir()
    monkeypatch.setenv("CODING_AGENT_AGENT_COMMAND_TEMPLATE", ECHO_AGENT_COMMAND_TEMPLATE)
    monkeypatch.setenv("CODING_AGENT_WORKDIR_ROOT", str(tmp_path / "work"))
    monkeypatch.setenv("CODING_AGENT_WORKING_DIRECTORY", str(working_directory))
    for role in AgentRole:
        monkeypatch.delenv(f"CODING_AGENT_{role.value.upper()}_COMMAND_TEMPLATE", raising=False)
    monkeypatch.delenv("CODING_AGENT_DRY_RUN", raising=False)
    return working_directory
