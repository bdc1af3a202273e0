from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from src.infra.validation import parse_model
from src.missions.models import MissionSpec, MissionStatus
from src.roles.directory import RoleKind
from src.tools.base import BaseTool, ToolGroup
from src.tools.context import require_agent

if TYPE_CHECKING:
    from src.coord.service import CoordService
    from src.tools.context import ToolContext

_MISSION_OWNERS = frozenset({RoleKind.reviewer, RoleKind.planner})


class AddTaskToMissionParams(BaseModel):
    mission_id: str
    task_id: str


class MissionIdParams(BaseModel):
    mission_id: str


class UpdateMissionStatusParams(BaseModel):
    mission_id: str
    status: MissionStatus
    reason: str | None = None


class RecordDecisionParams(BaseModel):
    mission_id: str
    summary: str = Field(min_length=1)
    rationale: str = ""


class CreateMissionTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "create_mission"

    @property
    def description(self) -> str:
        return (
            "Create a mission: an objective tracked through a set of tasks. Unless "
            "auto_decompose is false, planners are asked to break it into tasks."
        )

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.missions

    @property
    def params_model(self) -> type[BaseModel]:
        return MissionSpec

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return _MISSION_OWNERS

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        spec = parse_model(MissionSpec, arguments, entity="mission")
        if spec.initiator is None and context is not None and context.agent_id:
            spec.initiator = context.agent_id
        mission = await self._service.create_mission(spec)
        return {"mission": mission.to_dict()}


class AddTaskToMissionTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "add_task_to_mission"

    @property
    def description(self) -> str:
        return "Attach an existing task to a mission. Adding the same task twice is a no-op."

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.missions

    @property
    def params_model(self) -> type[BaseModel]:
        return AddTaskToMissionParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return _MISSION_OWNERS

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        params = parse_model(AddTaskToMissionParams, arguments)
        mission = await self._service.add_task_to_mission(params.mission_id, params.task_id)
        return {"mission_id": mission.id, "task_ids": list(mission.task_ids)}


class CheckProgressTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "check_progress"

    @property
    def description(self) -> str:
        return (
            "Aggregate a mission's task statuses. Each call counts as one mission "
            "iteration; should_continue turns false at the iteration limit."
        )

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.missions

    @property
    def params_model(self) -> type[BaseModel]:
        return MissionIdParams

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        params = parse_model(MissionIdParams, arguments)
        report = await self._service.check_progress(params.mission_id)
        return report.to_dict()


class UpdateMissionStatusTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "update_mission_status"

    @property
    def description(self) -> str:
        return "Pause, resume, complete or stop a mission."

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.missions

    @property
    def params_model(self) -> type[BaseModel]:
        return UpdateMissionStatusParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return _MISSION_OWNERS

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        params = parse_model(UpdateMissionStatusParams, arguments)
        mission = await self._service.update_mission_status(
            params.mission_id, params.status, params.reason
        )
        return {"mission_id": mission.id, "status": mission.status.value}


class RecordDecisionTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "record_decision"

    @property
    def description(self) -> str:
        return "Append a decision to a mission's decision log."

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.missions

    @property
    def params_model(self) -> type[BaseModel]:
        return RecordDecisionParams

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        agent_id = require_agent(context)
        params = parse_model(RecordDecisionParams, arguments, entity="decision")
        decision = await self._service.record_decision(
            params.mission_id,
            summary=params.summary,
            rationale=params.rationale,
            made_by=agent_id,
        )
        return {"mission_id": params.mission_id, "decision": decision.to_dict()}
