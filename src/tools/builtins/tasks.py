"""Task graph tools: add, submit, review, questions and selection."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from src.infra.validation import parse_model
from src.roles.directory import RoleKind
from src.tasks.models import TaskSpec, Verdict
from src.tools.base import BaseTool
from src.tools.context import require_agent

if TYPE_CHECKING:
    from src.coord.service import CoordService
    from src.tools.context import ToolContext


class AddTaskParams(TaskSpec):
    mission_id: str | None = None


class AddBatchParams(BaseModel):
    tasks: list[TaskSpec] = Field(min_length=1)
    mission_id: str | None = None


class SubmitWorkParams(BaseModel):
    task_id: str
    summary: str = Field(min_length=1)
    files: dict[str, str] = Field(default_factory=dict)
    test_results: dict = Field(default_factory=dict)


class ReviewParams(BaseModel):
    task_id: str
    verdict: Verdict
    feedback: str = ""
    action_items: list[str] = Field(default_factory=list)


class AskQuestionParams(BaseModel):
    task_id: str
    question: str = Field(min_length=1)
    context: dict = Field(default_factory=dict)


class AnswerQuestionParams(BaseModel):
    question_id: str
    answer: str = Field(min_length=1)


class SelectNextTaskParams(BaseModel):
    role_filter: RoleKind | None = None


class TaskIdParams(BaseModel):
    task_id: str


class NoParams(BaseModel):
    pass


class AddTaskTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "add_task"

    @property
    def description(self) -> str:
        return (
            "Add a task (directive) to the shared backlog. Its status starts as "
            "available or blocked depending on its dependencies."
        )

    @property
    def params_model(self) -> type[BaseModel]:
        return AddTaskParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return frozenset({RoleKind.reviewer, RoleKind.planner})

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        params = parse_model(AddTaskParams, arguments, entity="task")
        spec = TaskSpec.model_validate(params.model_dump(exclude={"mission_id"}))
        if spec.created_by is None and context is not None and context.agent_id:
            spec.created_by = context.agent_id
        task = await self._service.add_task(spec, mission_id=params.mission_id)
        return {"task": task.to_dict()}


class AddBatchTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "add_batch"

    @property
    def description(self) -> str:
        return (
            "Add several tasks at once. Duplicate ids reject the whole batch; "
            "after that each task is inserted independently and one that would close a "
            "dependency cycle is reported under failed."
        )

    @property
    def params_model(self) -> type[BaseModel]:
        return AddBatchParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return frozenset({RoleKind.reviewer, RoleKind.planner})

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        params = parse_model(AddBatchParams, arguments, entity="task")
        result = await self._service.add_batch(params.tasks, mission_id=params.mission_id)
        return {"added": result.added, "failed": result.failed}


class SubmitWorkTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "submit_work"

    @property
    def description(self) -> str:
        return "Submit completed work on a task for review."

    @property
    def params_model(self) -> type[BaseModel]:
        return SubmitWorkParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return frozenset({RoleKind.implementer})

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        agent_id = require_agent(context)
        params = parse_model(SubmitWorkParams, arguments, entity="submission")
        task = await self._service.submit_work(
            params.task_id,
            summary=params.summary,
            submitted_by=agent_id,
            files=params.files,
            test_results=params.test_results,
        )
        return {"task_id": task.id, "status": task.status.value}


class ReviewTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "review"

    @property
    def description(self) -> str:
        return (
            "Review a submitted task. 'approved' completes it and unblocks dependents; "
            "'needs_revision' sends it back to the implementer."
        )

    @property
    def params_model(self) -> type[BaseModel]:
        return ReviewParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return frozenset({RoleKind.reviewer})

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        agent_id = require_agent(context)
        params = parse_model(ReviewParams, arguments, entity="review")
        task = await self._service.review(
            params.task_id,
            verdict=params.verdict,
            feedback=params.feedback,
            reviewed_by=agent_id,
            action_items=params.action_items,
        )
        return {"task_id": task.id, "status": task.status.value}


class AskQuestionTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "ask_question"

    @property
    def description(self) -> str:
        return "Ask a clarifying question about a task."

    @property
    def params_model(self) -> type[BaseModel]:
        return AskQuestionParams

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        agent_id = require_agent(context)
        params = parse_model(AskQuestionParams, arguments, entity="question")
        question = await self._service.ask_question(
            params.task_id, question=params.question, asked_by=agent_id, context=params.context
        )
        return {"task_id": params.task_id, "question_id": question.question_id}


class AnswerQuestionTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "answer_question"

    @property
    def description(self) -> str:
        return "Answer a question previously asked on any task."

    @property
    def params_model(self) -> type[BaseModel]:
        return AnswerQuestionParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return frozenset({RoleKind.reviewer, RoleKind.planner})

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        agent_id = require_agent(context)
        params = parse_model(AnswerQuestionParams, arguments, entity="question")
        question = await self._service.answer_question(
            params.question_id, answer=params.answer, answered_by=agent_id
        )
        return question.to_dict()


class SelectNextTaskTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "select_next_task"

    @property
    def description(self) -> str:
        return (
            "Return the task in progress, or else the highest-priority available "
            "task. Returns task=null when nothing is workable."
        )

    @property
    def params_model(self) -> type[BaseModel]:
        return SelectNextTaskParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return frozenset({RoleKind.implementer})

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        params = parse_model(SelectNextTaskParams, arguments)
        role_filter = params.role_filter.value if params.role_filter else None
        task = await self._service.select_next_task(role_filter)
        return {"task": task.to_dict() if task else None}


class MarkInProgressTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "mark_in_progress"

    @property
    def description(self) -> str:
        return "Claim an available or needs_revision task and mark it in progress."

    @property
    def params_model(self) -> type[BaseModel]:
        return TaskIdParams

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        return frozenset({RoleKind.implementer})

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        params = parse_model(TaskIdParams, arguments)
        task = await self._service.mark_in_progress(params.task_id)
        return {"task_id": task.id, "status": task.status.value}


class PendingWorkTool(BaseTool):
    def __init__(self, service: CoordService) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "pending_work"

    @property
    def description(self) -> str:
        return "List the tasks, reviews and open questions waiting on the calling agent's role."

    @property
    def params_model(self) -> type[BaseModel]:
        return NoParams

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        agent_id = require_agent(context)
        work = await self._service.pending_work(agent_id)
        return {
            "tasks": [t.to_dict() for t in work.tasks],
            "reviews": [t.to_dict() for t in work.reviews],
            "questions": [{"task_id": t.id, **q.to_dict()} for t, q in work.questions],
        }
