from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from src.infra.clock import isoformat, parse_datetime
from src.tasks.models import Priority


class PlanStatus(StrEnum):
    active = "active"
    paused = "paused"
    completed = "completed"


def new_plan_id() -> str:
    return f"PLAN-{uuid.uuid4().hex[:12]}"


class PhaseTaskSpec(BaseModel):
    title: str = Field(min_length=1)
    priority: Priority = Priority.medium
    specification: str = ""
    requirements: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)
    kind: str = "feature"


class PhaseSpec(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    tasks: list[PhaseTaskSpec] = Field(default_factory=list)
    estimated_duration: str | None = None


@dataclass
class Phase:
    name: str
    description: str = ""
    tasks: list[PhaseTaskSpec] = field(default_factory=list)
    estimated_duration: str | None = None

    @property
    def task_weight(self) -> int:
        # A phase without explicit tasks still counts as one unit of work.
        return len(self.tasks) or 1

    @classmethod
    def from_spec(cls, spec: PhaseSpec) -> Phase:
        return cls(
            name=spec.name,
            description=spec.description,
            tasks=[t.model_copy() for t in spec.tasks],
            estimated_duration=spec.estimated_duration,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "tasks": [t.model_dump(mode="json") for t in self.tasks],
            "estimated_duration": self.estimated_duration,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Phase:
        return cls(
            name=payload["name"],
            description=payload.get("description", ""),
            tasks=[PhaseTaskSpec.model_validate(t) for t in payload.get("tasks") or []],
            estimated_duration=payload.get("estimated_duration"),
        )


@dataclass
class CompletedPhase:
    phase_index: int
    name: str
    completed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase_index": self.phase_index,
            "name": self.name,
            "completed_at": isoformat(self.completed_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CompletedPhase:
        return cls(
            phase_index=int(payload["phase_index"]),
            name=payload["name"],
            completed_at=parse_datetime(payload["completed_at"]),
        )


@dataclass
class AdjustmentRecord:
    type: str
    payload: dict[str, Any]
    made_by: str
    made_at: datetime
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "payload": self.payload,
            "made_by": self.made_by,
            "made_at": isoformat(self.made_at),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AdjustmentRecord:
        return cls(
            type=payload["type"],
            payload=dict(payload.get("payload") or {}),
            made_by=payload["made_by"],
            made_at=parse_datetime(payload["made_at"]),
            description=payload.get("description", ""),
        )


@dataclass
class Plan:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    phases: list[Phase] = field(default_factory=list)
    current_phase_index: int = 0
    status: PlanStatus = PlanStatus.active
    completed_phases: list[CompletedPhase] = field(default_factory=list)
    adjustments: list[AdjustmentRecord] = field(default_factory=list)
    total_tasks: int = 0
    created_by: str | None = None
    mission_id: str | None = None
    is_ad_hoc: bool = False
    completed_at: datetime | None = None
    paused_at: datetime | None = None

    @property
    def current_phase(self) -> Phase | None:
        if self.current_phase_index < len(self.phases):
            return self.phases[self.current_phase_index]
        return None

    def recount_tasks(self) -> None:
        self.total_tasks = sum(p.task_weight for p in self.phases)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "phases": [p.to_dict() for p in self.phases],
            "current_phase_index": self.current_phase_index,
            "status": self.status.value,
            "completed_phases": [c.to_dict() for c in self.completed_phases],
            "adjustments": [a.to_dict() for a in self.adjustments],
            "total_tasks": self.total_tasks,
            "created_by": self.created_by,
            "mission_id": self.mission_id,
            "is_ad_hoc": self.is_ad_hoc,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "completed_at": isoformat(self.completed_at),
            "paused_at": isoformat(self.paused_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Plan:
        return cls(
            id=payload["id"],
            title=payload["title"],
            description=payload.get("description", ""),
            phases=[Phase.from_dict(p) for p in payload.get("phases") or []],
            current_phase_index=int(payload["current_phase_index"]),
            status=PlanStatus(payload["status"]),
            completed_phases=[
                CompletedPhase.from_dict(c) for c in payload.get("completed_phases") or []
            ],
            adjustments=[AdjustmentRecord.from_dict(a) for a in payload.get("adjustments") or []],
            total_tasks=int(payload.get("total_tasks", 0)),
            created_by=payload.get("created_by"),
            mission_id=payload.get("mission_id"),
            is_ad_hoc=bool(payload.get("is_ad_hoc", False)),
            created_at=parse_datetime(payload["created_at"]),
            updated_at=parse_datetime(payload["updated_at"]),
            completed_at=parse_datetime(payload.get("completed_at")),
            paused_at=parse_datetime(payload.get("paused_at")),
        )


@dataclass(frozen=True)
class PhaseView:
    phase: Phase
    phase_number: int  # 1-based
    total_phases: int
    previous_phases: list[CompletedPhase]

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.to_dict(),
            "phase_number": self.phase_number,
            "total_phases": self.total_phases,
            "previous_phases": [c.to_dict() for c in self.previous_phases],
        }


class PlanSpec(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    phases: list[PhaseSpec] = Field(default_factory=list)
    created_by: str | None = None
    mission_id: str | None = None


class InsertPhase(BaseModel):
    type: Literal["insert_phase"] = "insert_phase"
    after_index: int = Field(ge=-1)
    phase: PhaseSpec


class ModifyPhase(BaseModel):
    type: Literal["modify_phase"] = "modify_phase"
    index: int = Field(ge=0)
    name: str | None = None
    description: str | None = None
    tasks: list[PhaseTaskSpec] | None = None
    estimated_duration: str | None = None


class ReorderPhases(BaseModel):
    type: Literal["reorder_phases"] = "reorder_phases"
    from_index: int = Field(ge=0)
    to_index: int = Field(ge=0)


Adjustment = Annotated[InsertPhase | ModifyPhase | ReorderPhases, Field(discriminator="type")]


class AdjustmentSpec(BaseModel):
    """Envelope used to validate an adjustment payload against its type tag."""

    adjustment: Adjustment
    made_by: str = Field(min_length=1)
    description: str = ""
