"""Task records, workflow statuses and the transition table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from src.infra.clock import isoformat, parse_datetime
from src.infra.errors import InvalidTransitionError


class TaskStatus(StrEnum):
    pending = "pending"
    available = "available"
    blocked = "blocked"
    in_progress = "in_progress"
    in_review = "in_review"
    needs_revision = "needs_revision"
    completed = "completed"


class Priority(StrEnum):
    high = "high"
    medium = "medium"
    low = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.high: 0, Priority.medium: 1, Priority.low: 2}


class Verdict(StrEnum):
    approved = "approved"
    needs_revision = "needs_revision"


TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.pending: frozenset({TaskStatus.available, TaskStatus.blocked}),
    TaskStatus.available: frozenset(
        {TaskStatus.blocked, TaskStatus.in_progress, TaskStatus.in_review}
    ),
    TaskStatus.blocked: frozenset({TaskStatus.available}),
    TaskStatus.in_progress: frozenset({TaskStatus.in_review}),
    TaskStatus.in_review: frozenset({TaskStatus.completed, TaskStatus.needs_revision}),
    TaskStatus.needs_revision: frozenset({TaskStatus.in_progress, TaskStatus.in_review}),
    TaskStatus.completed: frozenset(),
}

# Statuses the availability pass is allowed to rewrite.
RECOMPUTABLE = frozenset({TaskStatus.pending, TaskStatus.available, TaskStatus.blocked})
SELECTABLE = frozenset({TaskStatus.available, TaskStatus.needs_revision})
SUBMITTABLE = frozenset(
    {TaskStatus.available, TaskStatus.in_progress, TaskStatus.needs_revision}
)


@dataclass
class Submission:
    summary: str
    submitted_by: str
    submitted_at: datetime
    files: dict[str, str] = field(default_factory=dict)
    test_results: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "files": dict(self.files),
            "test_results": dict(self.test_results),
            "submitted_by": self.submitted_by,
            "submitted_at": isoformat(self.submitted_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Submission:
        return cls(
            summary=payload["summary"],
            files=dict(payload.get("files") or {}),
            test_results=dict(payload.get("test_results") or {}),
            submitted_by=payload["submitted_by"],
            submitted_at=parse_datetime(payload["submitted_at"]),
        )


@dataclass
class Review:
    verdict: Verdict
    feedback: str
    reviewed_by: str
    reviewed_at: datetime
    action_items: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "feedback": self.feedback,
            "action_items": list(self.action_items),
            "reviewed_by": self.reviewed_by,
            "reviewed_at": isoformat(self.reviewed_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Review:
        return cls(
            verdict=Verdict(payload["verdict"]),
            feedback=payload.get("feedback", ""),
            action_items=list(payload.get("action_items") or []),
            reviewed_by=payload["reviewed_by"],
            reviewed_at=parse_datetime(payload["reviewed_at"]),
        )


@dataclass
class Question:
    question_id: str
    question: str
    asked_by: str
    asked_at: datetime
    context: dict[str, Any] = field(default_factory=dict)
    status: Literal["unanswered", "answered"] = "unanswered"
    answer: str | None = None
    answered_by: str | None = None
    answered_at: datetime | None = None

    @property
    def is_answered(self) -> bool:
        return self.status == "answered"

    def to_dict(self) -> dict[str, Any]:
        return {
            "question_id": self.question_id,
            "question": self.question,
            "context": dict(self.context),
            "asked_by": self.asked_by,
            "asked_at": isoformat(self.asked_at),
            "status": self.status,
            "answer": self.answer,
            "answered_by": self.answered_by,
            "answered_at": isoformat(self.answered_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Question:
        status = payload.get("status", "unanswered")
        if status not in ("unanswered", "answered"):
            raise ValueError(f"unknown question status: {status}")
        return cls(
            question_id=payload["question_id"],
            question=payload["question"],
            context=dict(payload.get("context") or {}),
            asked_by=payload["asked_by"],
            asked_at=parse_datetime(payload["asked_at"]),
            status=status,
            answer=payload.get("answer"),
            answered_by=payload.get("answered_by"),
            answered_at=parse_datetime(payload.get("answered_at")),
        )


@dataclass
class Task:
    id: str
    title: str
    created_at: datetime
    seq: int
    specification: str = ""
    requirements: list[str] = field(default_factory=list)
    acceptance_criteria: list[str] = field(default_factory=list)
    priority: Priority = Priority.medium
    depends_on: list[str] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)
    status: TaskStatus = TaskStatus.pending
    submissions: list[Submission] = field(default_factory=list)
    reviews: list[Review] = field(default_factory=list)
    questions: list[Question] = field(default_factory=list)
    completed_at: datetime | None = None
    started_at: datetime | None = None
    assigned_role: str | None = None
    mission_id: str | None = None
    created_by: str | None = None

    def transition(self, target: TaskStatus, *, operation: str) -> None:
        """Move to *target*, rejecting anything outside TASK_TRANSITIONS."""
        if target == self.status:
            return
        if target not in TASK_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Task {self.id} cannot go from {self.status} to {target}",
                entity="task",
                entity_id=self.id,
                operation=operation,
                status=self.status.value,
            )
        self.status = target

    @property
    def latest_submission(self) -> Submission | None:
        return self.submissions[-1] if self.submissions else None

    @property
    def latest_review(self) -> Review | None:
        return self.reviews[-1] if self.reviews else None

    def sort_key(self) -> tuple[int, datetime, int]:
        return (self.priority.rank, self.created_at, self.seq)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "specification": self.specification,
            "requirements": list(self.requirements),
            "acceptance_criteria": list(self.acceptance_criteria),
            "priority": self.priority.value,
            "depends_on": list(self.depends_on),
            "blocked_by": list(self.blocked_by),
            "status": self.status.value,
            "submissions": [s.to_dict() for s in self.submissions],
            "reviews": [r.to_dict() for r in self.reviews],
            "questions": [q.to_dict() for q in self.questions],
            "created_at": isoformat(self.created_at),
            "completed_at": isoformat(self.completed_at),
            "started_at": isoformat(self.started_at),
            "assigned_role": self.assigned_role,
            "mission_id": self.mission_id,
            "created_by": self.created_by,
            "seq": self.seq,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Task:
        return cls(
            id=payload["id"],
            title=payload["title"],
            specification=payload.get("specification", ""),
            requirements=list(payload.get("requirements") or []),
            acceptance_criteria=list(payload.get("acceptance_criteria") or []),
            priority=Priority(payload.get("priority", "medium")),
            depends_on=list(payload.get("depends_on") or []),
            blocked_by=list(payload.get("blocked_by") or []),
            status=TaskStatus(payload["status"]),
            submissions=[Submission.from_dict(s) for s in payload.get("submissions") or []],
            reviews=[Review.from_dict(r) for r in payload.get("reviews") or []],
            questions=[Question.from_dict(q) for q in payload.get("questions") or []],
            created_at=parse_datetime(payload["created_at"]),
            completed_at=parse_datetime(payload.get("completed_at")),
            started_at=parse_datetime(payload.get("started_at")),
            assigned_role=payload.get("assigned_role"),
            mission_id=payload.get("mission_id"),
            created_by=payload.get("created_by"),
            seq=int(payload["seq"]),
        )


class TaskSpec(BaseModel):
    """Validated input for add_task / add_batch."""

    id: str = Field(min_length=1, max_length=128)
    title: str = Field(min_length=1)
    specification: str = ""
    requirements: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)
    priority: Priority = Priority.medium
    depends_on: list[str] = Field(default_factory=list)
    blocked_by: list[str] = Field(default_factory=list)
    assigned_role: Literal["reviewer", "implementer", "planner"] | None = None
    created_by: str | None = None

    @field_validator("depends_on", "blocked_by")
    @classmethod
    def _dedupe(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def _no_self_reference(self) -> Self:
        if self.id in self.depends_on or self.id in self.blocked_by:
            raise ValueError(f"task {self.id} cannot depend on or be blocked by itself")
        return self
