from __future__ import annotations

import json
import sys
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from coding_agent.agents.base import ROLE_ALLOWED_TOOLS, build_user_prompt
from coding_agent.agents.cli_agent import CliAgentInvoker, _build_run_args, build_cli_agents
from coding_agent.agents.echo_agent import ECHO_CHANGE_FILE
from coding_agent.config import AgentCommandSettings, ExecutionSettings, Settings
from coding_agent.pipeline.models import (
    AgentExecutionError,
    AgentRole,
    AgentSessionStatus,
    AgentSessionView,
    ChangeType,
    CodeChangeEntry,
    ExecutionOptions,
    PipelineContext,
    PlanContext,
    ProgressUpdate,
    ReviewStatus,
    TaskRef,
)

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("CLI Agent Invoker"),
]

ECHO_TEMPLATE = (
    f"{sys.executable} -m coding_agent.agents.echo_agent "
    "--stage-manifest {stage_manifest} --prompt-file {prompt_file}"
)


def _context() -> PipelineContext:
    return PipelineContext(
        task=TaskRef(id="task-1", description="add a health check endpoint"),
        plan=PlanContext(
            content="1. Add GET /health",
            created_at=datetime(2026, 10, 18, 12, 0, tzinfo=UTC),
        ),
        code_changes=[
            CodeChangeEntry(
                file_path="app/health.py",
                change_type=ChangeType.CREATE,
                summary="GET /health handler",
            ),
        ],
    )


def _invoker(
    tmp_path: Path,
    role: AgentRole,
    template: str = ECHO_TEMPLATE,
    timeout: int = 60,
) -> CliAgentInvoker:
    working_directory = tmp_path / "project"
    working_directory.mkdir(exist_ok=True)
    return CliAgentInvoker(
        role=role,
        command_template=template,
        working_directory=working_directory,
        workdir_root=tmp_path / "work",
        model="sonnet",
        default_timeout_seconds=timeout,
    )


def test_echo_planner_returns_structured_plan(tmp_path: Path) -> None:
    result = _invoker(tmp_path, AgentRole.PLANNER).execute(_context())

    assert result.success is True, result.error
    assert result.agent_role is AgentRole.PLANNER
    assert "add a health check endpoint" in result.content
    assert result.metadata is not None
    assert result.metadata.plan is not None
    assert result.metadata.plan.steps[0].files == [ECHO_CHANGE_FILE]


def test_echo_coder_writes_into_working_directory(tmp_path: Path) -> None:
    result = _invoker(tmp_path, AgentRole.CODER).execute(_context())

    assert result.success is True, result.error
    assert (tmp_path / "project" / ECHO_CHANGE_FILE).exists()
    assert result.metadata is not None
    assert result.metadata.code_changes == [
        CodeChangeEntry(
            file_path=ECHO_CHANGE_FILE,
            change_type=ChangeType.CREATE,
            summary="Echo implementation of add a health check endpoint",
        ),
    ]


def test_echo_coder_dry_run_leaves_working_directory_untouched(tmp_path: Path) -> None:
    result = _invoker(tmp_path, AgentRole.CODER).execute(
        _context(),
        ExecutionOptions(dry_run=True),
    )

    assert result.success is True, result.error
    assert not (tmp_path / "project" / ECHO_CHANGE_FILE).exists()


def test_echo_reviewer_returns_verdict(tmp_path: Path) -> None:
    result = _invoker(tmp_path, AgentRole.REVIEWER).execute(_context())

    assert result.success is True, result.error
    assert result.content == "Reviewed 1 change(s)."
    assert result.metadata is not None
    assert result.metadata.review is not None
    assert result.metadata.review.status is ReviewStatus.PASSED
    assert result.metadata.review.criteria_met is True


def test_stage_workdir_contains_contract_files(tmp_path: Path) -> None:
    _invoker(tmp_path, AgentRole.REVIEWER).execute(_context())

    stage_dirs = list((tmp_path / "work" / "task-1").iterdir())
    assert len(stage_dirs) == 1
    stage_dir = stage_dirs[0]
    assert stage_dir.name.startswith("reviewer-")

    manifest = json.loads((stage_dir / "meta" / "stage_manifest.json").read_text("utf-8"))
    assert manifest["role"] == "reviewer"
    assert manifest["working_directory"] == str(tmp_path / "project")

    stage_input = json.loads((stage_dir / "input" / "stage_input.json").read_text("utf-8"))
    assert stage_input["allowed_tools"] == list(ROLE_ALLOWED_TOOLS[AgentRole.REVIEWER])
    assert stage_input["context"]["code_changes"][0]["file_path"] == "app/health.py"

    prompt = (stage_dir / "input" / "stage_prompt.txt").read_text("utf-8")
    assert str(stage_dir / "meta" / "stage_manifest.json") in prompt
    assert (stage_dir / "output" / "agent_result.json").exists()


def test_agent_reported_failure(tmp_path: Path) -> None:
    invoker = _invoker(tmp_path, AgentRole.CODER, template=f"{ECHO_TEMPLATE} --fail-role coder")

    result = invoker.execute(_context())

    assert result.success is False
    assert result.error == "echo agent configured to fail the coder stage"


def test_non_zero_exit_is_failure_with_stderr_tail(tmp_path: Path) -> None:
    template = (
        f"{sys.executable} -c \"import sys; sys.stderr.write('disk full'); sys.exit(3)\" "
        "{prompt_file}"
    )

    result = _invoker(tmp_path, AgentRole.CODER, template=template).execute(_context())

    assert result.success is False
    assert result.error == "Agent exited with code 3: disk full"


def test_missing_result_file_is_failure(tmp_path: Path) -> None:
    template = f"{sys.executable} -c pass {{prompt_file}}"

    result = _invoker(tmp_path, AgentRole.PLANNER, template=template).execute(_context())

    assert result.success is False
    assert result.error is not None
    assert result.error.startswith("Agent did not write a result file")


def test_invalid_result_file_is_failure(tmp_path: Path) -> None:
    template = (
        f"{sys.executable} -c \"import json, sys; "
        "m = json.load(open(sys.argv[1])); "
        "open(m['output_result_path'], 'w').write('[1, 2]')\" {stage_manifest} {prompt_file}"
    )

    result = _invoker(tmp_path, AgentRole.PLANNER, template=template).execute(_context())

    assert result.success is False
    assert result.error is not None
    assert "Invalid agent result" in result.error


def test_timeout_is_failure(tmp_path: Path) -> None:
    template = f'{sys.executable} -c "import time; time.sleep(10)" {{prompt_file}}'

    result = _invoker(tmp_path, AgentRole.PLANNER, template=template).execute(
        _context(),
        ExecutionOptions(timeout_seconds=1),
    )

    assert result.success is False
    assert result.error == "Agent timed out after 1s"


def test_missing_command_raises_agent_execution_error(tmp_path: Path) -> None:
    invoker = _invoker(tmp_path, AgentRole.PLANNER, template="no-such-agent-binary-xyz {prompt}")

    with pytest.raises(AgentExecutionError, match=r"\[planner\] Agent command not found"):
        invoker.execute(_context())


def test_unknown_placeholder_raises_agent_execution_error(tmp_path: Path) -> None:
    invoker = _invoker(tmp_path, AgentRole.PLANNER, template="agent {unknown} {prompt}")

    with pytest.raises(AgentExecutionError, match="Unsupported command template placeholder"):
        invoker.execute(_context())


def test_progress_reports_launched_command(tmp_path: Path) -> None:
    updates: list[ProgressUpdate] = []

    _invoker(tmp_path, AgentRole.PLANNER).execute(
        _context(),
        ExecutionOptions(on_progress=updates.append),
    )

    assert [update.activity for update in updates] == [f"Running {sys.executable}"]


def test_build_run_args_quotes_placeholder_values() -> None:
    run_args, command_head = _build_run_args(
        command_template="agent --model {model} --tools {allowed_tools} -- {prompt}",
        values={
            "model": "sonnet",
            "allowed_tools": "Read,Glob,Grep",
            "prompt": "fix the 'health' route; rm -rf /",
        },
    )

    assert command_head == "agent"
    assert run_args == [
        "agent",
        "--model",
        "sonnet",
        "--tools",
        "Read,Glob,Grep",
        "--",
        "fix the 'health' route; rm -rf /",
    ]


@pytest.mark.parametrize(
    ("template", "message"),
    [
        ("   ", "empty"),
        ("agent --model {model}", "must include"),
    ],
)
def test_build_run_args_rejects_unusable_templates(template: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        _build_run_args(command_template=template, values={"model": "sonnet", "prompt": "x"})


def test_build_user_prompt_includes_prior_stage_output() -> None:
    context = _context()
    context.previous_sessions = [
        AgentSessionView(
            session_id=1,
            task_id="task-1",
            agent_role=AgentRole.PLANNER,
            status=AgentSessionStatus.COMPLETED,
            started_at=datetime(2026, 10, 18, 12, 0, tzinfo=UTC),
            result="x" * 150,
        ),
    ]

    prompt = build_user_prompt(AgentRole.REVIEWER, context)

    assert "# Task\nadd a health check endpoint" in prompt
    assert "# Plan (from planner)\n1. Add GET /health" in prompt
    assert "- app/health.py (create): GET /health handler" in prompt
    assert "- planner: completed" in prompt
    assert f"  Result: {'x' * 100}..." in prompt
    assert "You are the reviewer." in prompt


def test_build_user_prompt_for_planner_has_only_task() -> None:
    prompt = build_user_prompt(
        AgentRole.PLANNER,
        PipelineContext(task=TaskRef(id="t", description="add a health check endpoint")),
    )

    assert "# Plan" not in prompt
    assert "# Code changes" not in prompt
    assert "# Previous agent sessions" not in prompt


def test_build_cli_agents_applies_role_overrides(tmp_path: Path) -> None:
    settings = Settings(
        workdir_root=tmp_path / "work",
        agents=AgentCommandSettings(
            command_template="shared {prompt}",
            role_command_templates={AgentRole.REVIEWER: "reviewer-only {prompt}"},
            model="opus",
            working_directory=tmp_path,
        ),
        execution=ExecutionSettings(timeout_seconds=90),
    )

    agents = build_cli_agents(settings)

    assert set(agents) == set(AgentRole)
    assert agents[AgentRole.PLANNER].command_template == "shared {prompt}"
    assert agents[AgentRole.REVIEWER].command_template == "reviewer-only {prompt}"
    assert all(agent.role is role for role, agent in agents.items())
    assert all(agent.model == "opus" for agent in agents.values())
    assert all(agent.default_timeout_seconds == 90 for agent in agents.values())
