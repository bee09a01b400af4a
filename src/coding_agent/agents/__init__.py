"""Agent invokers: the contract plus the subprocess-backed CLI implementation."""

from coding_agent.agents.base import ROLE_ALLOWED_TOOLS, AgentInvoker, build_user_prompt
from coding_agent.agents.cli_agent import CliAgentInvoker, build_cli_agents

__all__ = [
    "ROLE_ALLOWED_TOOLS",
    "AgentInvoker",
    "CliAgentInvoker",
    "build_cli_agents",
    "build_user_prompt",
]
