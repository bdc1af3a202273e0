"""Tests for the tool registry and the coordination tool set."""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from src.roles.directory import RoleKind
from src.tools.base import BaseTool, ToolGroup
from src.tools.builtins import BUILTIN_TOOLS, register_builtins
from src.tools.context import ToolContext
from src.tools.registry import ToolRegistry

PIA = ToolContext(agent_id="pia", role="planner")
ADA = ToolContext(agent_id="ada", role="implementer")
REX = ToolContext(agent_id="rex", role="reviewer")


class _EchoParams(BaseModel):
    text: str


class _EchoTool(BaseTool):
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echo the text back"

    @property
    def params_model(self) -> type[BaseModel]:
        return _EchoParams

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        return {"text": arguments["text"]}


@pytest.fixture
def registry(service) -> ToolRegistry:
    reg = ToolRegistry()
    register_builtins(reg, service)
    return reg


class TestRegistry:
    def test_duplicate_registration_rejected(self) -> None:
        reg = ToolRegistry()
        reg.register(_EchoTool())
        with pytest.raises(ValueError, match="already registered"):
            reg.register(_EchoTool())

    def test_defaults_for_custom_tool(self) -> None:
        tool = _EchoTool()
        assert tool.group == ToolGroup.tasks
        assert tool.allowed_roles == frozenset(RoleKind)
        assert tool.parameters["required"] == ["text"]

    def test_every_builtin_registered(self, registry) -> None:
        names = {t.name for t in registry.list_tools()}
        assert len(names) == len(BUILTIN_TOOLS)
        assert {"add_task", "poll", "adjust_plan", "check_progress"} <= names

    def test_schema_is_function_format(self, registry) -> None:
        schema = registry.get_tools_schema()
        entry = next(s for s in schema if s["function"]["name"] == "submit_work")

        assert entry["type"] == "function"
        assert entry["function"]["parameters"]["type"] == "object"
        assert "task_id" in entry["function"]["parameters"]["properties"]

    def test_listing_is_filtered_by_role(self, registry) -> None:
        implementer = {t.name for t in registry.list_tools(RoleKind.implementer)}
        reviewer = {t.name for t in registry.list_tools(RoleKind.reviewer)}

        assert "submit_work" in implementer
        assert "review" not in implementer
        assert "create_plan" not in implementer
        assert "review" in reviewer
        assert "poll" in implementer and "poll" in reviewer

    async def test_unknown_tool(self, registry) -> None:
        result = await registry.call("nope", {}, ADA)
        assert result["error_code"] == "UNKNOWN_TOOL"


class TestTaskTools:
    async def test_full_review_cycle(self, registry) -> None:
        added = await registry.call("add_task", {"id": "A", "title": "Parser"}, PIA)
        assert added["task"]["status"] == "available"
        assert added["task"]["created_by"] == "pia"

        selected = await registry.call("select_next_task", {}, ADA)
        assert selected["task"]["id"] == "A"

        submitted = await registry.call(
            "submit_work", {"task_id": "A", "summary": "done", "files": {"p.py": "..."}}, ADA
        )
        assert submitted == {"task_id": "A", "status": "in_review"}

        reviewed = await registry.call(
            "review", {"task_id": "A", "verdict": "approved", "feedback": "ok"}, REX
        )
        assert reviewed == {"task_id": "A", "status": "completed"}

    async def test_validation_error_is_mapped(self, registry) -> None:
        result = await registry.call("add_task", {"id": "A"}, PIA)

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["retryable"] is False
        assert "title" in result["message"]

    async def test_invalid_transition_is_mapped(self, registry) -> None:
        await registry.call("add_task", {"id": "A", "title": "a"}, PIA)
        result = await registry.call(
            "review", {"task_id": "A", "verdict": "approved"}, REX
        )

        assert result["error_code"] == "INVALID_TRANSITION"
        assert result["entity_id"] == "A"
        assert result["status"] == "available"

    async def test_not_found_is_mapped(self, registry) -> None:
        result = await registry.call("mark_in_progress", {"task_id": "ghost"}, ADA)
        assert result["error_code"] == "NOT_FOUND"

    async def test_caller_identity_required(self, registry) -> None:
        await registry.call("add_task", {"id": "A", "title": "a"}, PIA)
        result = await registry.call("submit_work", {"task_id": "A", "summary": "x"})
        assert result["error_code"] == "VALIDATION_ERROR"

    async def test_batch_and_questions(self, registry) -> None:
        batch = await registry.call(
            "add_batch",
            {"tasks": [{"id": "A", "title": "a"}, {"id": "B", "title": "b", "depends_on": ["A"]}]},
            PIA,
        )
        assert batch == {"added": ["A", "B"], "failed": []}

        asked = await registry.call("ask_question", {"task_id": "B", "question": "When?"}, ADA)
        pending = await registry.call("pending_work", {}, REX)
        assert pending["questions"][0]["question_id"] == asked["question_id"]

        answered = await registry.call(
            "answer_question", {"question_id": asked["question_id"], "answer": "Soon"}, REX
        )
        assert answered["status"] == "answered"
        assert answered["answered_by"] == "rex"


class TestMissionTools:
    async def test_mission_progress(self, registry) -> None:
        created = await registry.call(
            "create_mission", {"id": "M", "title": "m", "objective": "o", "max_iterations": 2}, PIA
        )
        assert created["mission"]["initiator"] == "pia"

        await registry.call("add_task", {"id": "A", "title": "a", "mission_id": "M"}, PIA)
        report = await registry.call("check_progress", {"mission_id": "M"}, PIA)

        assert report["total"] == 1
        assert report["iteration"] == 1
        assert report["should_continue"] is True

    async def test_status_and_decisions(self, registry) -> None:
        await registry.call("create_mission", {"id": "M", "title": "m", "objective": "o"}, PIA)

        paused = await registry.call(
            "update_mission_status", {"mission_id": "M", "status": "paused"}, PIA
        )
        decided = await registry.call(
            "record_decision", {"mission_id": "M", "summary": "Defer UI"}, REX
        )

        assert paused == {"mission_id": "M", "status": "paused"}
        assert decided["decision"]["made_by"] == "rex"


class TestPlanTools:
    async def test_plan_lifecycle(self, registry) -> None:
        created = await registry.call(
            "create_plan",
            {
                "title": "Auth",
                "phases": [
                    {"name": "Schema", "tasks": [{"title": "Users table"}]},
                    {"name": "UI"},
                ],
            },
            PIA,
        )
        plan_id = created["plan"]["id"]

        adjusted = await registry.call(
            "adjust_plan",
            {
                "plan_id": plan_id,
                "adjustment": {"type": "insert_phase", "after_index": 0, "phase": {"name": "API"}},
                "description": "need an API first",
            },
            PIA,
        )
        assert adjusted["total_phases"] == 3

        materialized = await registry.call("materialize_next_phase", {}, PIA)
        assert materialized["created"] == [f"{plan_id}-P1-T1"]

        advanced = await registry.call("advance_phase", {"plan_id": plan_id}, PIA)
        assert advanced["current_phase_index"] == 1

        view = await registry.call("get_next_phase", {"plan_id": plan_id}, ADA)
        assert view["phase"]["name"] == "API"
        assert view["phase_number"] == 2

    async def test_bad_adjustment_type(self, registry) -> None:
        created = await registry.call("create_plan", {"title": "p"}, PIA)
        result = await registry.call(
            "adjust_plan",
            {"plan_id": created["plan"]["id"], "adjustment": {"type": "delete_phase"}},
            PIA,
        )
        assert result["error_code"] == "VALIDATION_ERROR"

    async def test_materialize_without_plan(self, registry) -> None:
        assert await registry.call("materialize_next_phase", {}, PIA) == {
            "created": [],
            "skipped": [],
        }


class TestLoopTools:
    async def test_start_poll_stop(self, registry) -> None:
        started = await registry.call("start_loop", {"interval": 10, "max_iterations": 3}, ADA)
        assert started["is_active"] is True

        decision = await registry.call("poll", {}, ADA)
        assert decision["instruction"] == "wait"
        assert decision["loop"]["current_iteration"] == 1
        assert decision["next_check_at"] is not None

        stopped = await registry.call("stop_loop", {"reason": "done"}, ADA)
        assert stopped["is_active"] is False
        assert stopped["stop_reason"] == "done"

    async def test_poll_with_stop_reason(self, registry) -> None:
        await registry.call("start_loop", {}, ADA)
        decision = await registry.call("poll", {"stop_reason": "shutdown"}, ADA)

        assert decision["instruction"] == "stopped"
        assert decision["loop"]["stop_reason"] == "shutdown"
