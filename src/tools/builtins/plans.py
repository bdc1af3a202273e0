from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

from src.infra.validation import parse_model
from src.plans.models import Adjustment, AdjustmentSpec, PlanSpec
from src.roles.directory import RoleKind
from src.tools.base import BaseTool, ToolGroup
from src.tools.context import require_agent

if TYPE_CHECKING:
    from src.coord.service import CoordService
    from src.plans.models import Plan
    from src.tools.context import ToolContext

_PLANNERS = frozenset({RoleKind.planner, RoleKind.reviewer})


class PlanIdParams(BaseModel):
    plan_id: str


class AdjustPlanParams(BaseModel):
    plan_id: str
    adjustment: Adjustment
    description: str = ""


class NoParams(BaseModel):
    pass


def _plan_summary(plan: Plan) -> dict:
    return {
        "plan_id": plan.id,
        "status": plan.status.value,
        "current_phase_index": plan.current_phase_index,
        "total_phases": len(plan.phases),
        "total_tasks": plan.total_tasks,
    }


class CreatePlanTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "create_plan"

    @property
    def description(self) -> str:
        return (
            "Create a phased plan. Only one plan can be active; pause the current "
            "plan before creating another."
        )

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.plans

    @property
    def params_model(self) -> type[BaseModel]:
        return PlanSpec

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return _PLANNERS

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        spec = parse_model(PlanSpec, arguments, entity="plan")
        if spec.created_by is None and context is not None and context.agent_id:
            spec.created_by = context.agent_id
        plan = await self._service.create_plan(spec)
        return {"plan": plan.to_dict()}


class GetNextPhaseTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "get_next_phase"

    @property
    def description(self) -> str:
        return "Return the plan's current phase and completed-phase log, or phase=null."

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.plans

    @property
    def params_model(self) -> type[BaseModel]:
        return PlanIdParams

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        params = parse_model(PlanIdParams, arguments)
        view = await self._service.get_next_phase(params.plan_id)
        if view is None:
            return {"plan_id": params.plan_id, "phase": None}
        return {"plan_id": params.plan_id, **view.to_dict()}


class AdvancePhaseTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "advance_phase"

    @property
    def description(self) -> str:
        return "Mark the current phase finished and move to the next one."

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.plans

    @property
    def params_model(self) -> type[BaseModel]:
        return PlanIdParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return _PLANNERS

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        params = parse_model(PlanIdParams, arguments)
        plan = await self._service.advance_phase(params.plan_id)
        return _plan_summary(plan)


class AdjustPlanTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "adjust_plan"

    @property
    def description(self) -> str:
        return (
            "Insert, modify or reorder phases that have not started yet. "
            "Every adjustment is kept in the plan's audit log."
        )

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.plans

    @property
    def params_model(self) -> type[BaseModel]:
        return AdjustPlanParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return _PLANNERS

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        agent_id = require_agent(context)
        params = parse_model(AdjustPlanParams, arguments, entity="adjustment")
        spec = AdjustmentSpec(
            adjustment=params.adjustment, made_by=agent_id, description=params.description
        )
        plan = await self._service.adjust_plan(params.plan_id, spec)
        return _plan_summary(plan)


class MaterializeNextPhaseTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "materialize_next_phase"

    @property
    def description(self) -> str:
        return (
            "Create tasks for the active plan's current phase, skipping ones that "
            "already exist or look like completed work."
        )

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.plans

    @property
    def params_model(self) -> type[BaseModel]:
        return NoParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return _PLANNERS

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        result = await self._service.materialize_next_phase()
        if result is None:
            return {"created": [], "skipped": []}
        return {
            "plan_id": result.plan_id,
            "phase_index": result.phase_index,
            "created": [s.id for s in result.specs],
            "skipped": result.skipped,
        }
