"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from src.config.settings import (
    DatabaseSettings,
    LogSettings,
    LoopSettings,
    RoleSettings,
    Settings,
    StoreSettings,
)


class TestStoreSettings:
    def test_defaults(self) -> None:
        s = StoreSettings()
        assert s.backend == "json"
        assert s.data_dir == Path(".agentcoord")

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STORE_BACKEND", "memory")
        monkeypatch.setenv("STORE_DATA_DIR", "/tmp/coord")
        s = StoreSettings()
        assert s.backend == "memory"
        assert s.data_dir == Path("/tmp/coord")

    def test_unknown_backend_rejected(self) -> None:
        with pytest.raises(ValidationError, match="STORE_BACKEND must be one of"):
            StoreSettings(backend="redis")


class TestLoopSettings:
    def test_defaults(self) -> None:
        s = LoopSettings()
        assert (s.check_interval, s.max_iterations, s.stall_threshold) == (30, 100, 5)

    def test_non_positive_interval_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LoopSettings(check_interval=0)

    def test_stall_threshold_cannot_exceed_max(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOOP_MAX_ITERATIONS", "3")
        monkeypatch.setenv("LOOP_STALL_THRESHOLD", "4")
        with pytest.raises(ValidationError, match="LOOP_STALL_THRESHOLD"):
            Settings()


class TestRoleSettings:
    def test_parses_assignments(self) -> None:
        s = RoleSettings(assignments="ada=implementer, rex = reviewer,,")
        assert s.as_mapping() == {"ada": "implementer", "rex": "reviewer"}

    def test_empty_by_default(self) -> None:
        assert RoleSettings().as_mapping() == {}

    @pytest.mark.parametrize(
        ("raw", "message"),
        [
            ("ada", "must be 'agent=role'"),
            ("=reviewer", "empty agent id"),
            ("ada=boss", "role must be one of"),
        ],
    )
    def test_malformed_rejected(self, raw: str, message: str) -> None:
        with pytest.raises(ValidationError, match=message):
            RoleSettings(assignments=raw)


class TestLogSettings:
    def test_level_normalized(self) -> None:
        assert LogSettings(level="debug").level == "DEBUG"

    def test_invalid_level_rejected(self) -> None:
        with pytest.raises(ValidationError, match="LOG_LEVEL must be"):
            LogSettings(level="verbose")

    def test_json_flag_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_JSON", "false")
        assert LogSettings().json_output is False


class TestDatabaseSettings:
    def test_default_schema(self) -> None:
        assert DatabaseSettings().schema_ == "agentcoord"

    def test_other_schema_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_SCHEMA", "public")
        with pytest.raises(ValidationError, match="DATABASE_SCHEMA must be"):
            DatabaseSettings()
