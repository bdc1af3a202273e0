from __future__ import annotations

from dataclasses import dataclass

from src.infra.errors import RecordValidationError


@dataclass(frozen=True)
class ToolContext:
    """Caller identity injected into tool execution.

    agent_id: the calling agent; used as author for submissions, reviews,
    questions and decisions, and as the loop owner for poll/start/stop.
    role: the agent's resolved role, when known.
    """

    agent_id: str = ""
    role: str | None = None


def require_agent(context: ToolContext | None) -> str:
    if context is None or not context.agent_id:
        raise RecordValidationError("This tool requires a calling agent id", entity="agent")
    return context.agent_id
