from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from src.infra.clock import isoformat, parse_datetime

MAX_ITERATIONS_REACHED = "max iterations reached"


class LoopMode(StrEnum):
    continuous = "continuous"
    single = "single"


class Instruction(StrEnum):
    work_on_task = "work_on_task"
    review_submission = "review_submission"
    answer_questions = "answer_questions"
    check_progress = "check_progress"
    decompose_mission = "decompose_mission"
    wait = "wait"
    stopped = "stopped"


# Instructions that carry nothing for the agent to act on.
IDLE_INSTRUCTIONS = frozenset({Instruction.wait, Instruction.check_progress})


@dataclass
class LoopState:
    agent_id: str
    check_interval: int
    max_iterations: int
    mode: LoopMode = LoopMode.continuous
    is_active: bool = False
    current_iteration: int = 0
    consecutive_empty_checks: int = 0
    last_check_at: datetime | None = None
    next_check_at: datetime | None = None
    stop_reason: str | None = None
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    tasks_completed: int = 0
    reviews_completed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "is_active": self.is_active,
            "mode": self.mode.value,
            "check_interval": self.check_interval,
            "current_iteration": self.current_iteration,
            "max_iterations": self.max_iterations,
            "consecutive_empty_checks": self.consecutive_empty_checks,
            "last_check_at": isoformat(self.last_check_at),
            "next_check_at": isoformat(self.next_check_at),
            "stop_reason": self.stop_reason,
            "started_at": isoformat(self.started_at),
            "stopped_at": isoformat(self.stopped_at),
            "tasks_completed": self.tasks_completed,
            "reviews_completed": self.reviews_completed,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> LoopState:
        return cls(
            agent_id=payload["agent_id"],
            is_active=bool(payload["is_active"]),
            mode=LoopMode(payload.get("mode", "continuous")),
            check_interval=int(payload["check_interval"]),
            current_iteration=int(payload["current_iteration"]),
            max_iterations=int(payload["max_iterations"]),
            consecutive_empty_checks=int(payload.get("consecutive_empty_checks", 0)),
            last_check_at=parse_datetime(payload.get("last_check_at")),
            next_check_at=parse_datetime(payload.get("next_check_at")),
            stop_reason=payload.get("stop_reason"),
            started_at=parse_datetime(payload.get("started_at")),
            stopped_at=parse_datetime(payload.get("stopped_at")),
            tasks_completed=int(payload.get("tasks_completed", 0)),
            reviews_completed=int(payload.get("reviews_completed", 0)),
        )


@dataclass
class LoopDecision:
    agent_id: str
    role: str
    instruction: Instruction
    loop: LoopState
    stalled: bool = False
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "role": self.role,
            "instruction": self.instruction.value,
            "stalled": self.stalled,
            "next_check_at": isoformat(self.loop.next_check_at),
            "loop": self.loop.to_dict(),
            **self.payload,
        }
