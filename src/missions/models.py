from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, Field

from src.infra.clock import isoformat, parse_datetime


class MissionStatus(StrEnum):
    active = "active"
    paused = "paused"
    completed = "completed"
    stopped = "stopped"


MISSION_TRANSITIONS: dict[MissionStatus, frozenset[MissionStatus]] = {
    MissionStatus.active: frozenset(
        {MissionStatus.paused, MissionStatus.completed, MissionStatus.stopped}
    ),
    MissionStatus.paused: frozenset(
        {MissionStatus.active, MissionStatus.completed, MissionStatus.stopped}
    ),
    MissionStatus.completed: frozenset(),
    MissionStatus.stopped: frozenset(),
}


def new_mission_id() -> str:
    return f"MISSION-{uuid.uuid4().hex[:12]}"


def new_decision_id() -> str:
    return f"DEC-{uuid.uuid4().hex[:12]}"


@dataclass
class Decision:
    decision_id: str
    summary: str
    made_by: str
    made_at: datetime
    rationale: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "summary": self.summary,
            "rationale": self.rationale,
            "made_by": self.made_by,
            "made_at": isoformat(self.made_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Decision:
        return cls(
            decision_id=payload["decision_id"],
            summary=payload["summary"],
            rationale=payload.get("rationale", ""),
            made_by=payload["made_by"],
            made_at=parse_datetime(payload["made_at"]),
        )


@dataclass
class Mission:
    id: str
    title: str
    objective: str
    created_at: datetime
    updated_at: datetime
    acceptance_criteria: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    status: MissionStatus = MissionStatus.active
    task_ids: list[str] = field(default_factory=list)
    iteration: int = 0
    max_iterations: int = 50
    decisions: list[Decision] = field(default_factory=list)
    initiator: str | None = None
    assigned_role: str = "all"
    ticket_ids: list[str] = field(default_factory=list)
    status_reason: str | None = None
    decomposition_pending: bool = False
    completed_at: datetime | None = None

    @property
    def should_continue(self) -> bool:
        return self.status == MissionStatus.active and self.iteration < self.max_iterations

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "objective": self.objective,
            "acceptance_criteria": list(self.acceptance_criteria),
            "constraints": list(self.constraints),
            "status": self.status.value,
            "task_ids": list(self.task_ids),
            "iteration": self.iteration,
            "max_iterations": self.max_iterations,
            "decisions": [d.to_dict() for d in self.decisions],
            "initiator": self.initiator,
            "assigned_role": self.assigned_role,
            "ticket_ids": list(self.ticket_ids),
            "status_reason": self.status_reason,
            "decomposition_pending": self.decomposition_pending,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "completed_at": isoformat(self.completed_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Mission:
        return cls(
            id=payload["id"],
            title=payload["title"],
            objective=payload.get("objective", ""),
            acceptance_criteria=list(payload.get("acceptance_criteria") or []),
            constraints=list(payload.get("constraints") or []),
            status=MissionStatus(payload["status"]),
            task_ids=list(payload.get("task_ids") or []),
            iteration=int(payload["iteration"]),
            max_iterations=int(payload["max_iterations"]),
            decisions=[Decision.from_dict(d) for d in payload.get("decisions") or []],
            initiator=payload.get("initiator"),
            assigned_role=payload.get("assigned_role", "all"),
            ticket_ids=list(payload.get("ticket_ids") or []),
            status_reason=payload.get("status_reason"),
            decomposition_pending=bool(payload.get("decomposition_pending", False)),
            created_at=parse_datetime(payload["created_at"]),
            updated_at=parse_datetime(payload["updated_at"]),
            completed_at=parse_datetime(payload.get("completed_at")),
        )


@dataclass(frozen=True)
class CriterionResult:
    criterion: str
    status: str  # pending_evaluation | met | not_met
    note: str = ""


@dataclass(frozen=True)
class AcceptanceReport:
    all_met: bool
    criteria: list[CriterionResult]
    requires_evaluation: bool


class AcceptanceEvaluator(Protocol):
    def evaluate(self, mission: Mission) -> AcceptanceReport: ...


class PendingEvaluationEvaluator:
    """Never auto-approves: every criterion waits for an external verdict."""

    def evaluate(self, mission: Mission) -> AcceptanceReport:
        return AcceptanceReport(
            all_met=False,
            criteria=[
                CriterionResult(criterion=c, status="pending_evaluation")
                for c in mission.acceptance_criteria
            ],
            requires_evaluation=True,
        )


@dataclass(frozen=True)
class ProgressReport:
    mission_id: str
    status: MissionStatus
    total: int
    completed: int
    in_review: int
    pending: int
    blocked: int
    available: int
    in_progress: int
    percent_complete: int
    iteration: int
    max_iterations: int
    should_continue: bool
    requires_evaluation: bool = False
    acceptance: AcceptanceReport | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "mission_id": self.mission_id,
            "status": self.status.value,
            "total": self.total,
            "completed": self.completed,
            "in_review": self.in_review,
            "pending": self.pending,
            "blocked": self.blocked,
            "available": self.available,
            "in_progress": self.in_progress,
            "percent_complete": self.percent_complete,
            "iteration": self.iteration,
            "max_iterations": self.max_iterations,
            "should_continue": self.should_continue,
            "requires_evaluation": self.requires_evaluation,
        }
        if self.acceptance is not None:
            payload["acceptance"] = {
                "all_met": self.acceptance.all_met,
                "criteria": [
                    {"criterion": c.criterion, "status": c.status, "note": c.note}
                    for c in self.acceptance.criteria
                ],
            }
        return payload


class MissionSpec(BaseModel):
    id: str | None = Field(None, min_length=1, max_length=128)
    title: str = Field(min_length=1)
    objective: str = Field(min_length=1)
    acceptance_criteria: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    max_iterations: int | None = Field(None, ge=1)
    initiator: str | None = None
    assigned_role: str = "all"
    auto_decompose: bool = True
