"""Subprocess-based agent invoker driven by a command template."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import IO

from coding_agent.agents.base import ROLE_ALLOWED_TOOLS, build_user_prompt
from coding_agent.agents.contracts import (
    StageInputContract,
    StageManifest,
    read_agent_output,
    serialize_context,
)
from coding_agent.agents.workdir import StageWorkdirManager
from coding_agent.config import Settings
from coding_agent.pipeline.models import (
    PIPELINE_ROLES,
    AgentExecutionError,
    AgentRole,
    ExecutionOptions,
    PipelineContext,
    ProgressUpdate,
    StageMetadata,
    StageResult,
)
from coding_agent.storage.common import utc_now

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
_STDERR_TAIL_CHARS = 500

_OUTPUT_SCHEMA_EXAMPLES = {
    AgentRole.PLANNER: """\
{
  "success": true,
  "content": "<plan in markdown>",
  "metadata": {
    "plan": {
      "steps": [
        {"description": "<step>", "files": ["<path>"], "estimatedComplexity": "low|medium|high"}
      ]
    }
  }
}""",
    AgentRole.CODER: """\
{
  "success": true,
  "content": "<summary of the implementation>",
  "metadata": {
    "codeChanges": [
      {"filePath": "<path>", "changeType": "create|edit|delete", "summary": "<what changed>"}
    ]
  }
}""",
    AgentRole.REVIEWER: """\
{
  "success": true,
  "content": "<review report>",
  "metadata": {
    "review": {
      "status": "passed|failed|needs_revision",
      "criteriaMet": true,
      "feedback": "<feedback>",
      "issues": [{"severity": "info|warning|error", "message": "<issue>", "file": "<path>"}]
    }
  }
}""",
}


class CliAgentInvoker:
    """Run one role as an external CLI agent, exchanging data through files."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        role: AgentRole,
        command_template: str,
        working_directory: Path,
        workdir_root: Path,
        model: str,
        default_timeout_seconds: int = 1800,
    ) -> None:
        self.role = role
        self.command_template = command_template
        self.working_directory = working_directory
        self.workdir_manager = StageWorkdirManager(workdir_root)
        self.model = model
        self.default_timeout_seconds = default_timeout_seconds

    def execute(
        self,
        context: PipelineContext,
        options: ExecutionOptions | None = None,
    ) -> StageResult:
        options = options or ExecutionOptions()
        timeout_seconds = options.timeout_seconds or self.default_timeout_seconds
        allowed_tools = ROLE_ALLOWED_TOOLS[self.role]
        base_prompt = build_user_prompt(self.role, context)
        if not self.working_directory.is_dir():
            raise AgentExecutionError(
                self.role,
                f"Working directory does not exist: {self.working_directory}",
            )

        materialized = self.workdir_manager.materialize(
            stage_input=StageInputContract(
                role=self.role.value,
                task_id=context.task.id,
                task_description=context.task.description,
                prompt=base_prompt,
                allowed_tools=list(allowed_tools),
                dry_run=options.dry_run,
                context=serialize_context(context),
            ),
            working_directory=self.working_directory,
        )
        manifest = materialized.manifest
        prompt = _build_enriched_prompt(
            role=self.role,
            base_prompt=base_prompt,
            manifest_path=materialized.manifest_path,
            manifest=manifest,
        )
        materialized.prompt_path.write_text(prompt, "utf-8")

        try:
            run_args, command_head = _build_run_args(
                command_template=self.command_template,
                values={
                    "model": self.model,
                    "prompt": prompt,
                    "prompt_file": str(materialized.prompt_path),
                    "stage_manifest": str(materialized.manifest_path),
                    "allowed_tools": ",".join(allowed_tools),
                    "role": self.role.value,
                },
            )
        except ValueError as error:
            raise AgentExecutionError(self.role, str(error)) from error

        if options.on_progress is not None:
            options.on_progress(
                ProgressUpdate(
                    agent_role=self.role,
                    activity=f"Running {command_head}",
                    timestamp=utc_now(),
                ),
            )

        env = os.environ.copy()
        env["CODING_AGENT_ROLE"] = self.role.value
        env["CODING_AGENT_TASK_ID"] = context.task.id
        env["CODING_AGENT_MODEL"] = self.model
        env["CODING_AGENT_DRY_RUN"] = "1" if options.dry_run else "0"

        stdout_path = Path(manifest.output_stdout_path)
        stderr_path = Path(manifest.output_stderr_path)
        logger.info(
            "Starting %s agent for task %s (workdir=%s)",
            self.role.value,
            context.task.id,
            manifest.workdir,
        )
        try:
            with (
                stdout_path.open("w", encoding="utf-8") as stdout_handle,
                stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                exit_code, timed_out = _run_subprocess(
                    run_args=run_args,
                    env=env,
                    cwd=self.working_directory,
                    timeout_seconds=timeout_seconds,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                )
        except FileNotFoundError as error:
            raise AgentExecutionError(
                self.role,
                f"Agent command not found: {command_head}",
            ) from error
        except OSError as error:
            raise AgentExecutionError(self.role, f"Agent command failed to start: {error}") from error

        if timed_out:
            return self._failure(f"Agent timed out after {timeout_seconds}s")
        if exit_code != 0:
            tail = _read_tail(stderr_path)
            message = f"Agent exited with code {exit_code}"
            return self._failure(f"{message}: {tail}" if tail else message)

        return self._read_result(Path(manifest.output_result_path))

    def _read_result(self, path: Path) -> StageResult:
        try:
            output = read_agent_output(path)
            metadata = StageMetadata.from_dict(output.metadata) if output.metadata else None
        except FileNotFoundError:
            return self._failure(f"Agent did not write a result file: {path}")
        except (TypeError, ValueError) as error:
            return self._failure(f"Invalid agent result in {path}: {error}")

        if not output.success:
            return StageResult(
                success=False,
                content=output.content,
                error=output.error or "Agent reported failure without an error message",
                metadata=metadata,
                agent_role=self.role,
                completed_at=utc_now(),
            )
        return StageResult(
            success=True,
            content=output.content,
            metadata=metadata,
            agent_role=self.role,
            completed_at=utc_now(),
        )

    def _failure(self, error: str) -> StageResult:
        logger.warning("%s agent failed: %s", self.role.value, error)
        return StageResult(
            success=False,
            content="",
            error=error,
            agent_role=self.role,
            completed_at=utc_now(),
        )


def build_cli_agents(settings: Settings) -> dict[AgentRole, CliAgentInvoker]:
    """One CLI invoker per pipeline role, using per-role template overrides."""

    return {
        role: CliAgentInvoker(
            role=role,
            command_template=settings.agents.template_for(role),
            working_directory=settings.agents.working_directory,
            workdir_root=settings.workdir_root,
            model=settings.agents.model,
            default_timeout_seconds=settings.execution.timeout_seconds,
        )
        for role in PIPELINE_ROLES
    }


def _build_enriched_prompt(
    *,
    role: AgentRole,
    base_prompt: str,
    manifest_path: Path,
    manifest: StageManifest,
) -> str:
    """Wrap the stage prompt with manifest path and output contract."""

    return (
        f"{base_prompt}\n"
        f"\n"
        f"Your stage manifest is at: {manifest_path}\n"
        f"\n"
        f"Steps:\n"
        f"1. Read the manifest JSON; it lists paths to all input and output files.\n"
        f"2. Read stage_input_path for the task, plan and code changes as structured data.\n"
        f"3. Work in {manifest.working_directory}.\n"
        f"4. Write the result to: {manifest.output_result_path}\n"
        f"5. The result file must follow this JSON schema exactly:\n"
        f"{_OUTPUT_SCHEMA_EXAMPLES[role]}\n"
        f"6. On failure write success=false with an error message instead.\n"
    )


def _build_run_args(*, command_template: str, values: dict[str, str]) -> tuple[list[str], str]:
    stripped = command_template.strip()
    if not stripped:
        raise ValueError("Agent command template is empty.")
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise ValueError("Agent command template must include {prompt} or {prompt_file}.")

    try:
        rendered = stripped.format(**{key: shlex.quote(value) for key, value in values.items()})
    except KeyError as error:
        raise ValueError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise ValueError("Agent command template rendered empty command.")
    return argv, argv[0]


def _run_subprocess(  # noqa: PLR0913
    *,
    run_args: list[str],
    env: dict[str, str],
    cwd: Path,
    timeout_seconds: int,
    stdout_handle: IO[str],
    stderr_handle: IO[str],
) -> tuple[int, bool]:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        env=env,
        cwd=cwd,
        stdout=stdout_handle,
        stderr=stderr_handle,
        text=True,
    )
    try:
        return process.wait(timeout=timeout_seconds), False
    except subprocess.TimeoutExpired:
        _terminate_process(process)
        return TIMEOUT_EXIT_CODE, True


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)


def _read_tail(path: Path) -> str:
    if not path.exists():
        return ""
    return path.read_text("utf-8", errors="replace").strip()[-_STDERR_TAIL_CHARS:]
