from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from src.infra.validation import parse_model
from src.loop.models import LoopMode
from src.tools.base import BaseTool, ToolGroup
from src.tools.context import require_agent

if TYPE_CHECKING:
    from src.coord.service import CoordService
    from src.tools.context import ToolContext


class StartLoopParams(BaseModel):
    interval: int | None = Field(None, gt=0, description="Seconds between checks.")
    max_iterations: int | None = Field(None, ge=1)
    mode: LoopMode = LoopMode.continuous


class PollParams(BaseModel):
    stop_reason: str | None = Field(
        None, description="Stop the loop after this check with the given reason."
    )


class StopLoopParams(BaseModel):
    reason: str = "stopped by agent"


class StartLoopTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "start_loop"

    @property
    def description(self) -> str:
        return (
            "Start a cooperative work loop for the calling agent. Call poll no "
            "earlier than next_check_at; nothing wakes the agent automatically."
        )

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.loop

    @property
    def params_model(self) -> type[BaseModel]:
        return StartLoopParams

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        agent_id = require_agent(context)
        params = parse_model(StartLoopParams, arguments, entity="loop_state")
        state = await self._service.start_loop(
            agent_id,
            interval=params.interval,
            max_iterations=params.max_iterations,
            mode=params.mode,
        )
        return state.to_dict()


class PollTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "poll"

    @property
    def description(self) -> str:
        return (
            "Check for work. Returns an instruction (work_on_task, review_submission, "
            "answer_questions, decompose_mission, check_progress, wait or stopped) and the "
            "next check time."
        )

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.loop

    @property
    def params_model(self) -> type[BaseModel]:
        return PollParams

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        agent_id = require_agent(context)
        params = parse_model(PollParams, arguments)
        decision = await self._service.poll(agent_id, stop_reason=params.stop_reason)
        return decision.to_dict()


class StopLoopTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "stop_loop"

    @property
    def description(self) -> str:
        return "Stop the calling agent's work loop."

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.loop

    @property
    def params_model(self) -> type[BaseModel]:
        return StopLoopParams

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        agent_id = require_agent(context)
        params = parse_model(StopLoopParams, arguments)
        state = await self._service.stop_loop(agent_id, params.reason)
        return state.to_dict()
