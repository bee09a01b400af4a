"""File-based contracts between the CLI invoker and the agent process."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from coding_agent.pipeline.models import PipelineContext

STAGE_CONTRACT_VERSION = 1


@dataclass(slots=True)
class StageInputContract:
    """Stage input payload consumed by the agent."""

    role: str
    task_id: str
    task_description: str
    prompt: str
    allowed_tools: list[str] = field(default_factory=list)
    dry_run: bool = False
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AgentOutputContract:
    """Top-level output payload written by the agent."""

    success: bool
    content: str
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class StageManifest:
    """Paths of every file in one stage workdir."""

    contract_version: int
    task_id: str
    role: str
    workdir: str
    working_directory: str
    stage_input_path: str
    prompt_path: str
    output_result_path: str
    output_stdout_path: str
    output_stderr_path: str


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def serialize_context(context: PipelineContext) -> dict[str, Any]:
    """JSON-ready view of the pipeline context handed to an agent."""

    return {
        "task": {"id": context.task.id, "description": context.task.description},
        "plan": (
            {
                "content": context.plan.content,
                "created_at": context.plan.created_at.isoformat(),
            }
            if context.plan is not None
            else None
        ),
        "code_changes": [
            {
                "file_path": change.file_path,
                "change_type": change.change_type.value,
                "summary": change.summary,
            }
            for change in context.code_changes or []
        ],
        "previous_sessions": [
            {
                "session_id": session.session_id,
                "agent_role": session.agent_role.value,
                "status": session.status.value,
                "result": session.result,
            }
            for session in context.previous_sessions
        ],
    }


def write_stage_input(path: Path, payload: StageInputContract) -> None:
    write_json(path, asdict(payload))


def read_stage_input(path: Path) -> StageInputContract:
    """Deserialize and validate stage input contract."""

    raw = load_json(path)
    role = raw.get("role")
    task_id = raw.get("task_id")
    task_description = raw.get("task_description")
    prompt = raw.get("prompt")
    allowed_tools = raw.get("allowed_tools", [])
    dry_run = raw.get("dry_run", False)
    context = raw.get("context", {})
    if not isinstance(role, str) or not role.strip():
        raise ValueError("stage_input.role must be a non-empty string")
    if not isinstance(task_id, str) or not task_id.strip():
        raise ValueError("stage_input.task_id must be a non-empty string")
    if not isinstance(task_description, str):
        raise TypeError("stage_input.task_description must be a string")
    if not isinstance(prompt, str):
        raise TypeError("stage_input.prompt must be a string")
    if not isinstance(allowed_tools, list):
        raise TypeError("stage_input.allowed_tools must be an array")
    if not isinstance(dry_run, bool):
        raise TypeError("stage_input.dry_run must be a boolean")
    if not isinstance(context, dict):
        raise TypeError("stage_input.context must be an object")
    return StageInputContract(
        role=role,
        task_id=task_id,
        task_description=task_description,
        prompt=prompt,
        allowed_tools=[str(tool) for tool in allowed_tools],
        dry_run=dry_run,
        context=context,
    )


def write_agent_output(path: Path, payload: AgentOutputContract) -> None:
    write_json(path, asdict(payload))


def read_agent_output(path: Path) -> AgentOutputContract:
    """Deserialize and validate the agent's result file."""

    raw = load_json(path)
    success = raw.get("success")
    content = raw.get("content", "")
    error = raw.get("error")
    metadata = raw.get("metadata", {})
    if not isinstance(success, bool):
        raise TypeError("agent_result.success must be a boolean")
    if not isinstance(content, str):
        raise TypeError("agent_result.content must be a string")
    if error is not None and not isinstance(error, str):
        raise TypeError("agent_result.error must be a string when provided")
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise TypeError("agent_result.metadata must be an object")
    return AgentOutputContract(success=success, content=content, error=error, metadata=metadata)


def read_manifest(path: Path) -> StageManifest:
    """Load and validate stage manifest."""

    raw = load_json(path)
    required = {
        "task_id",
        "role",
        "workdir",
        "working_directory",
        "stage_input_path",
        "prompt_path",
        "output_result_path",
        "output_stdout_path",
        "output_stderr_path",
    }
    missing = [key for key in sorted(required) if key not in raw]
    if missing:
        raise ValueError(f"Manifest missing required fields: {', '.join(missing)}")

    contract_version_raw = raw.get("contract_version", STAGE_CONTRACT_VERSION)
    if not isinstance(contract_version_raw, int) or contract_version_raw < 1:
        raise ValueError("stage_manifest.contract_version must be an integer >= 1")

    return StageManifest(
        contract_version=contract_version_raw,
        task_id=str(raw["task_id"]),
        role=str(raw["role"]),
        workdir=str(raw["workdir"]),
        working_directory=str(raw["working_directory"]),
        stage_input_path=str(raw["stage_input_path"]),
        prompt_path=str(raw["prompt_path"]),
        output_result_path=str(raw["output_result_path"]),
        output_stdout_path=str(raw["output_stdout_path"]),
        output_stderr_path=str(raw["output_stderr_path"]),
    )


def write_manifest(path: Path, manifest: StageManifest) -> None:
    """Persist stage manifest."""

    write_json(path, asdict(manifest))
