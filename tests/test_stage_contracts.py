from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from coding_agent.agents.contracts import (
    AgentOutputContract,
    read_agent_output,
    read_manifest,
    read_stage_input,
    write_agent_output,
)
from coding_agent.pipeline.models import (
    ChangeType,
    CodeChangeEntry,
    PlanStep,
    ReviewIssue,
    ReviewStatus,
    StageMetadata,
)

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Stage File Contracts"),
]


def test_metadata_accepts_camel_case_keys() -> None:
    metadata = StageMetadata.from_dict(
        {
            "plan": {
                "steps": [
                    {"description": "Add route", "files": ["app/health.py"]},
                    {
                        "description": "Wire router",
                        "files": ["app/routes.py"],
                        "estimatedComplexity": "low",
                    },
                ],
            },
            "codeChanges": [
                {"filePath": "app/health.py", "changeType": "create", "summary": "new"},
            ],
            "review": {
                "status": "needs_revision",
                "criteriaMet": False,
                "feedback": "Missing test",
                "issues": [{"severity": "warning", "message": "no test", "file": "app/health.py"}],
            },
        },
    )

    assert metadata.plan is not None
    assert metadata.plan.steps == [
        PlanStep(description="Add route", files=["app/health.py"], estimated_complexity="medium"),
        PlanStep(description="Wire router", files=["app/routes.py"], estimated_complexity="low"),
    ]
    assert metadata.code_changes == [
        CodeChangeEntry(file_path="app/health.py", change_type=ChangeType.CREATE, summary="new"),
    ]
    assert metadata.review is not None
    assert metadata.review.status is ReviewStatus.NEEDS_REVISION
    assert metadata.review.criteria_met is False
    assert metadata.review.issues == [
        ReviewIssue(severity="warning", message="no test", file="app/health.py"),
    ]


def test_metadata_accepts_snake_case_keys() -> None:
    metadata = StageMetadata.from_dict(
        {
            "code_changes": [
                {"file_path": "README.md", "change_type": "delete"},
            ],
            "review": {"status": "failed", "criteria_met": False},
        },
    )

    assert metadata.plan is None
    assert metadata.code_changes == [
        CodeChangeEntry(file_path="README.md", change_type=ChangeType.DELETE, summary=""),
    ]
    assert metadata.review is not None
    assert metadata.review.status is ReviewStatus.FAILED
    assert metadata.review.feedback == ""


@pytest.mark.parametrize(
    "raw",
    [
        {"plan": "step one"},
        {"plan": {"steps": [{"description": "x", "files": "app.py"}]}},
        {"codeChanges": {"filePath": "a.py"}},
        {"codeChanges": [{"filePath": "", "changeType": "create"}]},
        {"codeChanges": [{"filePath": "a.py", "changeType": "rename"}]},
        {"review": {"status": "approved"}},
        {"review": {"status": "passed", "criteriaMet": "yes"}},
    ],
)
def test_metadata_rejects_malformed_payloads(raw: dict) -> None:
    with pytest.raises((TypeError, ValueError)):
        StageMetadata.from_dict(raw)


def test_agent_output_round_trip_with_null_metadata(tmp_path: Path) -> None:
    path = tmp_path / "agent_result.json"
    path.write_text(json.dumps({"success": True, "content": "done", "metadata": None}), "utf-8")

    assert read_agent_output(path) == AgentOutputContract(success=True, content="done")


def test_agent_output_written_by_helper_is_readable(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "agent_result.json"
    payload = AgentOutputContract(success=False, content="", error="boom")

    write_agent_output(path, payload)

    assert read_agent_output(path) == payload


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"content": "x"}, "success must be a boolean"),
        ({"success": True, "content": 3}, "content must be a string"),
        ({"success": False, "error": 1}, "error must be a string"),
        ({"success": True, "metadata": []}, "metadata must be an object"),
    ],
)
def test_agent_output_validation(tmp_path: Path, payload: dict, message: str) -> None:
    path = tmp_path / "agent_result.json"
    path.write_text(json.dumps(payload), "utf-8")

    with pytest.raises(TypeError, match=message):
        read_agent_output(path)


def test_manifest_missing_fields_are_reported(tmp_path: Path) -> None:
    path = tmp_path / "stage_manifest.json"
    path.write_text(json.dumps({"task_id": "t", "role": "coder"}), "utf-8")

    with pytest.raises(ValueError, match="Manifest missing required fields: output_result_path"):
        read_manifest(path)


def test_stage_input_requires_role(tmp_path: Path) -> None:
    path = tmp_path / "stage_input.json"
    path.write_text(
        json.dumps({"role": " ", "task_id": "t", "task_description": "d", "prompt": "p"}),
        "utf-8",
    )

    with pytest.raises(ValueError, match="stage_input.role"):
        read_stage_input(path)
