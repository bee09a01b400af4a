"""Runtime configuration for the coding-agent pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from coding_agent.pipeline.models import PIPELINE_ROLES, AgentRole

DEFAULT_AGENT_COMMAND_TEMPLATE = (
    "claude -p --model {model} --permission-mode acceptEdits "
    "--allowed-tools {allowed_tools} -- {prompt}"
)


@dataclass(slots=True)
class AgentCommandSettings:
    """How agent processes are launched."""

    command_template: str = DEFAULT_AGENT_COMMAND_TEMPLATE
    role_command_templates: dict[AgentRole, str] = field(default_factory=dict)
    model: str = "sonnet"
    working_directory: Path = field(default_factory=Path.cwd)

    def template_for(self, role: AgentRole) -> str:
        """Per-role override, else the shared template."""

        return self.role_command_templates.get(role) or self.command_template


@dataclass(slots=True)
class ExecutionSettings:
    """Stage execution defaults."""

    timeout_seconds: int = 1_800
    dry_run: bool = False


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".coding_agent.db")
    workdir_root: Path = Path(".coding_agent/work")
    sqlite_busy_timeout_ms: int = 5_000
    agents: AgentCommandSettings = field(default_factory=AgentCommandSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        working_directory = os.getenv("CODING_AGENT_WORKING_DIRECTORY", "").strip()
        return cls(
            db_path=db_path or Path(os.getenv("CODING_AGENT_DB_PATH", ".coding_agent.db")),
            workdir_root=Path(os.getenv("CODING_AGENT_WORKDIR_ROOT", ".coding_agent/work")),
            sqlite_busy_timeout_ms=int(os.getenv("CODING_AGENT_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            agents=AgentCommandSettings(
                command_template=os.getenv(
                    "CODING_AGENT_AGENT_COMMAND_TEMPLATE",
                    DEFAULT_AGENT_COMMAND_TEMPLATE,
                ),
                role_command_templates=_collect_role_templates(),
                model=os.getenv("CODING_AGENT_MODEL", "sonnet"),
                working_directory=Path(working_directory) if working_directory else Path.cwd(),
            ),
            execution=ExecutionSettings(
                timeout_seconds=int(os.getenv("CODING_AGENT_AGENT_TIMEOUT_SECONDS", "1800")),
                dry_run=_env_bool("CODING_AGENT_DRY_RUN", default=False),
            ),
        )

    def validate_for_run(self) -> None:
        """Raise configuration error if agent launch settings are unusable."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("CODING_AGENT_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.execution.timeout_seconds <= 0:
            raise ValueError("CODING_AGENT_AGENT_TIMEOUT_SECONDS must be > 0.")
        if not self.agents.model.strip():
            raise ValueError("CODING_AGENT_MODEL must not be empty.")
        for role in PIPELINE_ROLES:
            template = self.agents.template_for(role)
            env_name = (
                _role_template_env(role)
                if role in self.agents.role_command_templates
                else "CODING_AGENT_AGENT_COMMAND_TEMPLATE"
            )
            if not template.strip():
                raise ValueError(f"{env_name} must not be empty.")
            if "{prompt}" not in template and "{prompt_file}" not in template:
                raise ValueError(f"{env_name} must include {{prompt}} or {{prompt_file}}.")


def _role_template_env(role: AgentRole) -> str:
    return f"CODING_AGENT_{role.value.upper()}_COMMAND_TEMPLATE"


def _collect_role_templates() -> dict[AgentRole, str]:
    templates: dict[AgentRole, str] = {}
    for role in PIPELINE_ROLES:
        value = os.getenv(_role_template_env(role), "").strip()
        if value:
            templates[role] = value
    return templates


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
