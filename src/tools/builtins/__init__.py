from __future__ import annotations

from typing import TYPE_CHECKING

from src.tools.builtins.loop import PollTool, StartLoopTool, StopLoopTool
from src.tools.builtins.missions import (
    AddTaskToMissionTool,
    CheckProgressTool,
    CreateMissionTool,
    RecordDecisionTool,
    UpdateMissionStatusTool,
)
from src.tools.builtins.plans import (
    AdjustPlanTool,
    AdvancePhaseTool,
    CreatePlanTool,
    GetNextPhaseTool,
    MaterializeNextPhaseTool,
)
from src.tools.builtins.tasks import (
    AddBatchTool,
    AddTaskTool,
    AnswerQuestionTool,
    AskQuestionTool,
    MarkInProgressTool,
    PendingWorkTool,
    ReviewTool,
    SelectNextTaskTool,
    SubmitWorkTool,
)
from src.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from src.coord.service import CoordService

BUILTIN_TOOLS = (
    AddTaskTool,
    AddBatchTool,
    SubmitWorkTool,
    ReviewTool,
    AskQuestionTool,
    AnswerQuestionTool,
    SelectNextTaskTool,
    MarkInProgressTool,
    PendingWorkTool,
    CreateMissionTool,
    AddTaskToMissionTool,
    CheckProgressTool,
    UpdateMissionStatusTool,
    RecordDecisionTool,
    CreatePlanTool,
    GetNextPhaseTool,
    AdvancePhaseTool,
    AdjustPlanTool,
    MaterializeNextPhaseTool,
    StartLoopTool,
    PollTool,
    StopLoopTool,
)


def register_builtins(registry: ToolRegistry, service: CoordService) -> None:
    """Register every coordination tool, each bound to *service*."""
    for tool_cls in BUILTIN_TOOLS:
        registry.register(tool_cls(service))
