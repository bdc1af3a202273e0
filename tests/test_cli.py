from __future__ import annotations

import io
import json

import pytest
import structlog

from src.cli import build_parser, run_cli
from src.config.settings import LogSettings, RoleSettings, Settings
from src.store.memory import MemoryRecordStore


@pytest.fixture(autouse=True)
def _reset_logging():
    # run_cli configures structlog against the current stderr
    yield
    structlog.reset_defaults()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        roles=RoleSettings(assignments="ada=implementer,rex=reviewer,pia=planner"),
        log=LogSettings(level="WARNING"),
    )


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


def invoke(argv: list[str], settings: Settings, store: MemoryRecordStore) -> tuple[int, str]:
    out = io.StringIO()
    code = run_cli(argv, settings=settings, store=store, stdout=out)
    return code, out.getvalue()


def test_parser_requires_agent_for_call() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["call", "poll"])


def test_tools_listing_for_role(settings, store) -> None:
    code, output = invoke(["tools", "--role", "implementer"], settings, store)
    names = {entry["function"]["name"] for entry in json.loads(output)}

    assert code == 0
    assert "submit_work" in names
    assert "review" not in names


def test_call_then_status(settings, store) -> None:
    code, output = invoke(
        ["call", "add_task", "--agent", "pia", "--args", '{"id": "A", "title": "Parser"}'],
        settings,
        store,
    )
    assert code == 0
    assert json.loads(output)["task"]["status"] == "available"

    code, output = invoke(["status"], settings, store)
    assert code == 0
    assert "# Coordination status" in output
    assert "| A | Parser | medium | available |" in output


def test_args_file(settings, store, tmp_path) -> None:
    payload = tmp_path / "task.json"
    payload.write_text(json.dumps({"id": "A", "title": "From file"}), "utf-8")

    code, output = invoke(
        ["call", "add_task", "--agent", "pia", "--args-file", str(payload)], settings, store
    )

    assert code == 0
    assert json.loads(output)["task"]["title"] == "From file"


def test_tool_error_sets_exit_code(settings, store) -> None:
    invoke(["call", "add_task", "--agent", "pia", "--args", '{"id": "A", "title": "a"}'],
           settings, store)
    code, output = invoke(
        ["call", "review", "--agent", "rex", "--args", '{"task_id": "A", "verdict": "approved"}'],
        settings,
        store,
    )

    assert code == 1
    assert json.loads(output)["error_code"] == "INVALID_TRANSITION"


def test_unknown_agent(settings, store, capsys) -> None:
    code, output = invoke(["call", "poll", "--agent", "ghost"], settings, store)

    assert code == 1
    assert output == ""
    assert "Agent not registered: ghost" in capsys.readouterr().err


def test_bad_json_arguments(settings, store, capsys) -> None:
    code, _ = invoke(["call", "poll", "--agent", "ada", "--args", "{oops"], settings, store)

    assert code == 1
    assert "invalid JSON arguments" in capsys.readouterr().err


def test_non_object_arguments(settings, store, capsys) -> None:
    code, _ = invoke(["call", "poll", "--agent", "ada", "--args", "[1]"], settings, store)

    assert code == 1
    assert "must be a JSON object" in capsys.readouterr().err
