from __future__ import annotations

from pathlib import Path
from typing import Self

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.constants import DB_SCHEMA

# Load .env once at module import; every BaseSettings subclass sees the vars
load_dotenv()

ROLE_NAMES = ("reviewer", "implementer", "planner")


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings. Env vars prefixed with DATABASE_."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "agentcoord"
    schema_: str = Field(DB_SCHEMA, validation_alias="DATABASE_SCHEMA")

    @field_validator("schema_")
    @classmethod
    def _validate_schema(cls, v: str) -> str:
        if v != DB_SCHEMA:
            msg = f"DATABASE_SCHEMA must be '{DB_SCHEMA}' (got '{v}')"
            raise ValueError(msg)
        return v


class StoreSettings(BaseSettings):
    """Record store backend selection. Env vars prefixed with STORE_."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    backend: str = "json"
    data_dir: Path = Path(".agentcoord")

    @field_validator("backend")
    @classmethod
    def _validate_backend(cls, v: str) -> str:
        allowed = {"memory", "json", "postgres"}
        if v not in allowed:
            msg = f"STORE_BACKEND must be one of {sorted(allowed)} (got '{v}')"
            raise ValueError(msg)
        return v


class LoopSettings(BaseSettings):
    """Polling loop defaults. Env vars prefixed with LOOP_."""

    model_config = SettingsConfigDict(env_prefix="LOOP_")

    check_interval: int = Field(30, gt=0)  # seconds
    max_iterations: int = Field(100, ge=1)
    stall_threshold: int = Field(5, ge=1)  # consecutive empty checks


class MissionSettings(BaseSettings):
    """Mission defaults. Env vars prefixed with MISSION_."""

    model_config = SettingsConfigDict(env_prefix="MISSION_")

    max_iterations: int = Field(50, ge=1)


class RoleSettings(BaseSettings):
    """Agent to role assignments. Env vars prefixed with ROLES_.

    ROLES_ASSIGNMENTS="alice=implementer,bob=reviewer"
    """

    model_config = SettingsConfigDict(env_prefix="ROLES_")

    assignments: str = ""

    @field_validator("assignments")
    @classmethod
    def _validate_assignments(cls, v: str) -> str:
        for pair in _split_pairs(v):
            if "=" not in pair:
                raise ValueError(f"ROLES_ASSIGNMENTS entry must be 'agent=role' (got '{pair}')")
            agent, role = (part.strip() for part in pair.split("=", 1))
            if not agent:
                raise ValueError(f"ROLES_ASSIGNMENTS entry has empty agent id: '{pair}'")
            if role not in ROLE_NAMES:
                raise ValueError(
                    f"ROLES_ASSIGNMENTS role must be one of {list(ROLE_NAMES)} (got '{role}')"
                )
        return v

    def as_mapping(self) -> dict[str, str]:
        result: dict[str, str] = {}
        for pair in _split_pairs(self.assignments):
            agent, role = (part.strip() for part in pair.split("=", 1))
            result[agent] = role
        return result


class LogSettings(BaseSettings):
    """Logging settings. Env vars prefixed with LOG_."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "INFO"
    json_output: bool = Field(True, validation_alias="LOG_JSON")

    @field_validator("level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        normalized = v.upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"LOG_LEVEL must be DEBUG, INFO, WARNING or ERROR (got '{v}')")
        return normalized


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    loop: LoopSettings = Field(default_factory=LoopSettings)
    mission: MissionSettings = Field(default_factory=MissionSettings)
    roles: RoleSettings = Field(default_factory=RoleSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if self.loop.stall_threshold > self.loop.max_iterations:
            raise ValueError(
                f"LOOP_STALL_THRESHOLD ({self.loop.stall_threshold}) must not exceed "
                f"LOOP_MAX_ITERATIONS ({self.loop.max_iterations})"
            )
        return self


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()


def _split_pairs(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]
