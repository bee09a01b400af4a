"""Workdir materialization helpers for file-based stage execution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from coding_agent.agents.contracts import (
    STAGE_CONTRACT_VERSION,
    StageInputContract,
    StageManifest,
    write_manifest,
    write_stage_input,
)


@dataclass(slots=True)
class MaterializedStage:
    """Materialized file-based stage contract paths."""

    manifest_path: Path
    prompt_path: Path
    manifest: StageManifest


class StageWorkdirManager:
    """Creates one directory per agent invocation under ``<root>/<task_id>/``."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def materialize(
        self,
        *,
        stage_input: StageInputContract,
        working_directory: Path,
    ) -> MaterializedStage:
        base_dir = self.root_dir / stage_input.task_id / f"{stage_input.role}-{uuid4().hex[:12]}"
        input_dir = base_dir / "input"
        output_dir = base_dir / "output"
        meta_dir = base_dir / "meta"
        input_dir.mkdir(parents=True, exist_ok=True)
        output_dir.mkdir(parents=True, exist_ok=True)
        meta_dir.mkdir(parents=True, exist_ok=True)

        stage_input_path = input_dir / "stage_input.json"
        prompt_path = input_dir / "stage_prompt.txt"
        manifest_path = meta_dir / "stage_manifest.json"

        write_stage_input(stage_input_path, stage_input)

        manifest = StageManifest(
            contract_version=STAGE_CONTRACT_VERSION,
            task_id=stage_input.task_id,
            role=stage_input.role,
            workdir=str(base_dir),
            working_directory=str(working_directory),
            stage_input_path=str(stage_input_path),
            prompt_path=str(prompt_path),
            output_result_path=str(output_dir / "agent_result.json"),
            output_stdout_path=str(output_dir / "agent_stdout.log"),
            output_stderr_path=str(output_dir / "agent_stderr.log"),
        )
        write_manifest(manifest_path, manifest)

        return MaterializedStage(
            manifest_path=manifest_path,
            prompt_path=prompt_path,
            manifest=manifest,
        )
