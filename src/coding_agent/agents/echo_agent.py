"""Local deterministic agent for CLI invoker integration tests and smoke runs."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

from coding_agent.agents.contracts import (
    AgentOutputContract,
    read_manifest,
    read_stage_input,
    write_agent_output,
)

ECHO_CHANGE_FILE = "echo_changes.md"


def main(argv: list[str] | None = None) -> int:
    """Write a role-appropriate result file for the stage in the manifest."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--stage-manifest", required=True)
    parser.add_argument("--prompt-file")
    parser.add_argument("--fail-role", choices=("planner", "coder", "reviewer"))
    args = parser.parse_args(argv)

    manifest = read_manifest(Path(args.stage_manifest))
    stage_input = read_stage_input(Path(manifest.stage_input_path))
    description = stage_input.task_description.strip()

    if args.fail_role == stage_input.role:
        payload = AgentOutputContract(
            success=False,
            content="",
            error=f"echo agent configured to fail the {stage_input.role} stage",
        )
    elif stage_input.role == "planner":
        payload = _plan_output(description)
    elif stage_input.role == "coder":
        if not stage_input.dry_run:
            target = Path(manifest.working_directory) / ECHO_CHANGE_FILE
            target.write_text(f"# {description}\n", "utf-8")
        payload = _code_output(description)
    else:
        payload = _review_output(stage_input.context)

    write_agent_output(Path(manifest.output_result_path), payload)
    return 0


def _plan_output(description: str) -> AgentOutputContract:
    return AgentOutputContract(
        success=True,
        content=f"Plan for: {description}\n1. Implement {description}",
        metadata={
            "plan": {
                "steps": [
                    {
                        "description": f"Implement {description}",
                        "files": [ECHO_CHANGE_FILE],
                        "estimatedComplexity": "low",
                    },
                ],
            },
        },
    )


def _code_output(description: str) -> AgentOutputContract:
    return AgentOutputContract(
        success=True,
        content=f"Implemented: {description}",
        metadata={
            "codeChanges": [
                {
                    "filePath": ECHO_CHANGE_FILE,
                    "changeType": "create",
                    "summary": f"Echo implementation of {description}",
                },
            ],
        },
    )


def _review_output(context: dict[str, Any]) -> AgentOutputContract:
    changes = context.get("code_changes") or []
    return AgentOutputContract(
        success=True,
        content=f"Reviewed {len(changes)} change(s).",
        metadata={
            "review": {
                "status": "passed",
                "criteriaMet": True,
                "feedback": "Looks good.",
                "issues": [],
            },
        },
    )


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
