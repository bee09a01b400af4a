"""Run one agent stage inside a persisted agent session."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import replace

from coding_agent.agents.base import AgentInvoker
from coding_agent.pipeline.models import (
    AgentRole,
    ConfigurationError,
    ExecutionOptions,
    PipelineContext,
    ProgressUpdate,
    StageResult,
)
from coding_agent.pipeline.store import StateStore
from coding_agent.storage.common import utc_now

logger = logging.getLogger(__name__)


class SessionExecutor:
    """Wraps each agent invocation in a pending → running → terminal session.

    Exceptions raised by an invoker are recorded on the session and returned
    as a failed ``StageResult``. Store errors propagate to the caller.
    """

    def __init__(self, store: StateStore, agents: Mapping[AgentRole, AgentInvoker]) -> None:
        self.store = store
        self.agents = agents

    def run_stage(
        self,
        *,
        role: AgentRole,
        task_id: str,
        context: PipelineContext,
        options: ExecutionOptions | None = None,
    ) -> StageResult:
        options = options or ExecutionOptions()
        invoker = self.agents.get(role)
        if invoker is None:
            raise ConfigurationError(f"No agent configured for role: {role.value}")

        session_id = self.store.create_agent_session(task_id=task_id, agent_role=role)
        self.store.start_agent_session(session_id=session_id)
        logger.info("Started %s session %d for task %s", role.value, session_id, task_id)
        _report(options, role, f"{role.value} stage started")

        try:
            result = invoker.execute(context, options)
        except Exception as error:  # noqa: BLE001
            logger.warning("%s agent raised for task %s", role.value, task_id, exc_info=True)
            result = StageResult(success=False, content="", error=str(error) or repr(error))

        result = replace(
            result,
            agent_role=role,
            session_id=session_id,
            completed_at=result.completed_at or utc_now(),
        )

        if result.success:
            if options.dry_run:
                logger.info("Dry run: leaving %s session %d open", role.value, session_id)
            else:
                self.store.complete_agent_session(session_id=session_id, result=result.content)
            _report(options, role, f"{role.value} stage completed")
            return result

        if not result.error:
            result = replace(result, error=f"{role.value.capitalize()} agent failed")
        self.store.fail_agent_session(session_id=session_id, error=result.error or "")
        logger.info("%s session %d failed: %s", role.value, session_id, result.error)
        _report(options, role, f"{role.value} stage failed")
        return result


def _report(options: ExecutionOptions, role: AgentRole, activity: str) -> None:
    if options.on_progress is None:
        return
    update = ProgressUpdate(agent_role=role, activity=activity, timestamp=utc_now())
    try:
        options.on_progress(update)
    except Exception:  # noqa: BLE001
        logger.warning("Progress callback failed for %s: %s", role.value, activity, exc_info=True)
