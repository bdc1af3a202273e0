"""Tests for error mapping, input validation, clock helpers, logging and roles."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
import structlog
from pydantic import BaseModel, Field

from src.infra.clock import isoformat, parse_datetime
from src.infra.errors import (
    ConflictError,
    CoordError,
    NotFoundError,
    RecordValidationError,
    StoreCorruptionError,
    StoreError,
)
from src.infra.logging import setup_logging
from src.infra.validation import parse_model
from src.roles.directory import RoleDirectory, RoleKind


class _Payload(BaseModel):
    name: str = Field(min_length=1)
    count: int = 0


class TestErrors:
    def test_to_dict_drops_empty_context(self) -> None:
        err = NotFoundError("Task not found: X", entity="task", entity_id="X", status=None)
        assert err.to_dict() == {
            "error_code": "NOT_FOUND",
            "message": "Task not found: X",
            "retryable": False,
            "entity": "task",
            "entity_id": "X",
        }

    def test_only_conflicts_are_retryable(self) -> None:
        assert ConflictError("x").retryable is True
        assert RecordValidationError("x").retryable is False

    def test_hierarchy(self) -> None:
        corrupted = StoreCorruptionError("bad file")
        assert isinstance(corrupted, StoreError)
        assert isinstance(corrupted, CoordError)
        assert corrupted.code == "STORE_CORRUPTED"


class TestParseModel:
    def test_valid(self) -> None:
        assert parse_model(_Payload, {"name": "a", "count": 2}).count == 2

    def test_instance_passes_through(self) -> None:
        payload = _Payload(name="a")
        assert parse_model(_Payload, payload) is payload

    def test_first_error_named(self) -> None:
        with pytest.raises(RecordValidationError, match="Invalid widget: name") as exc:
            parse_model(_Payload, {"name": ""}, entity="widget")
        assert exc.value.context == {"entity": "widget"}


class TestClock:
    def test_naive_timestamps_are_utc(self) -> None:
        assert parse_datetime("2026-03-01T09:00:00") == datetime(2026, 3, 1, 9, tzinfo=UTC)

    def test_empty_values(self) -> None:
        assert parse_datetime(None) is None
        assert parse_datetime("") is None
        assert isoformat(None) is None


class TestLogging:
    def test_rejects_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            setup_logging(log_level="LOUD")

    def test_json_lines_on_stderr(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(json_output=True, log_level="INFO")
        try:
            structlog.get_logger().info("sample_event", task_id="A")
            structlog.get_logger().debug("hidden_event")
        finally:
            structlog.reset_defaults()

        captured = capsys.readouterr()
        assert captured.out == ""
        assert '"event": "sample_event"' in captured.err
        assert '"task_id": "A"' in captured.err
        assert "hidden_event" not in captured.err


class TestRoleDirectory:
    def test_lookup(self) -> None:
        roles = RoleDirectory({"ada": "implementer", "rex": RoleKind.reviewer, "pia": "planner"})

        assert roles.role_of("rex") == RoleKind.reviewer
        assert roles.role_of("ada") == RoleKind.implementer
        assert roles.role_of("pia") == RoleKind.planner

    def test_unknown_agent(self) -> None:
        with pytest.raises(NotFoundError):
            RoleDirectory({}).role_of("ghost")

    def test_unknown_role_rejected(self) -> None:
        with pytest.raises(RecordValidationError, match="Unknown role 'boss'"):
            RoleDirectory({"ada": "boss"})
