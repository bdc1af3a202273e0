"""MissionTracker: objectives over sets of tasks, progress and iteration bound."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

import structlog

from src.infra.clock import Clock, utc_now
from src.infra.errors import InvalidTransitionError, NotFoundError, RecordValidationError
from src.missions.models import (
    MISSION_TRANSITIONS,
    AcceptanceEvaluator,
    Decision,
    Mission,
    MissionSpec,
    MissionStatus,
    PendingEvaluationEvaluator,
    ProgressReport,
    new_decision_id,
    new_mission_id,
)
from src.tasks.models import Task, TaskStatus

logger = structlog.get_logger()


class MissionTracker:
    def __init__(
        self,
        missions: Iterable[Mission] = (),
        *,
        evaluator: AcceptanceEvaluator | None = None,
        default_max_iterations: int = 50,
        now_fn: Clock = utc_now,
        id_fn: Callable[[], str] = new_mission_id,
    ) -> None:
        self._missions: dict[str, Mission] = {m.id: m for m in missions}
        self._evaluator = evaluator or PendingEvaluationEvaluator()
        self._default_max_iterations = default_max_iterations
        self._now = now_fn
        self._new_id = id_fn

    def get(self, mission_id: str) -> Mission:
        mission = self._missions.get(mission_id)
        if mission is None:
            raise NotFoundError(
                f"Mission not found: {mission_id}", entity="mission", entity_id=mission_id
            )
        return mission

    def missions(self) -> list[Mission]:
        return list(self._missions.values())

    def active_missions(self, role: str | None = None) -> list[Mission]:
        return [
            m for m in self._missions.values()
            if m.status == MissionStatus.active
            and (role is None or m.assigned_role in ("all", role))
        ]

    def needing_decomposition(self, role: str | None = None) -> list[Mission]:
        """Active missions still waiting for a planner to break them into tasks."""
        return [m for m in self.active_missions(role) if m.decomposition_pending]

    def create_mission(self, spec: MissionSpec) -> Mission:
        mission_id = spec.id or self._new_id()
        if mission_id in self._missions:
            raise RecordValidationError(
                f"Mission already exists: {mission_id}",
                entity="mission",
                entity_id=mission_id,
                operation="create_mission",
            )
        now = self._now()
        mission = Mission(
            id=mission_id,
            title=spec.title,
            objective=spec.objective,
            acceptance_criteria=list(spec.acceptance_criteria),
            constraints=list(spec.constraints),
            max_iterations=spec.max_iterations or self._default_max_iterations,
            initiator=spec.initiator,
            assigned_role=spec.assigned_role,
            decomposition_pending=spec.auto_decompose,
            created_at=now,
            updated_at=now,
        )
        self._missions[mission_id] = mission
        logger.info("mission_created", mission_id=mission_id, title=spec.title)
        return mission

    def add_task_to_mission(self, mission_id: str, task_id: str) -> Mission:
        mission = self.get(mission_id)
        if task_id not in mission.task_ids:
            mission.task_ids.append(task_id)
            mission.decomposition_pending = False
            mission.updated_at = self._now()
            logger.info("mission_task_added", mission_id=mission_id, task_id=task_id)
        return mission

    def check_progress(self, mission_id: str, tasks: Mapping[str, Task]) -> ProgressReport:
        """Aggregate member task statuses and advance the iteration counter.

        Every member id must resolve in *tasks*; a missing one raises NotFoundError
        instead of being counted as zero.
        """
        mission = self.get(mission_id)
        counts = self._tally(mission, tasks)
        total = counts.pop("total")
        completed = counts["completed"]
        percent = round(completed * 100 / total) if total else 0

        acceptance = None
        if mission.status == MissionStatus.active and total > 0 and completed == total:
            acceptance = self._evaluator.evaluate(mission)
            if acceptance.all_met:
                self._set_status(mission, MissionStatus.completed, "acceptance criteria met")

        mission.iteration += 1
        mission.updated_at = self._now()
        report = ProgressReport(
            mission_id=mission_id,
            status=mission.status,
            total=total,
            percent_complete=percent,
            iteration=mission.iteration,
            max_iterations=mission.max_iterations,
            should_continue=mission.should_continue,
            requires_evaluation=acceptance is not None and not acceptance.all_met,
            acceptance=acceptance,
            **counts,
        )
        logger.info(
            "mission_progress_checked",
            mission_id=mission_id,
            iteration=mission.iteration,
            percent_complete=percent,
            should_continue=report.should_continue,
        )
        return report

    def update_status(
        self, mission_id: str, status: MissionStatus, reason: str | None = None
    ) -> Mission:
        mission = self.get(mission_id)
        self._set_status(mission, status, reason)
        return mission

    def record_decision(
        self, mission_id: str, *, summary: str, made_by: str, rationale: str = ""
    ) -> Decision:
        mission = self.get(mission_id)
        decision = Decision(
            decision_id=new_decision_id(),
            summary=summary,
            rationale=rationale,
            made_by=made_by,
            made_at=self._now(),
        )
        mission.decisions.append(decision)
        mission.updated_at = decision.made_at
        logger.info("mission_decision_recorded", mission_id=mission_id, made_by=made_by)
        return decision

    def link_ticket(self, mission_id: str, ticket_id: str) -> Mission:
        mission = self.get(mission_id)
        if ticket_id not in mission.ticket_ids:
            mission.ticket_ids.append(ticket_id)
            mission.updated_at = self._now()
        return mission

    def to_records(self) -> dict[str, dict[str, Any]]:
        return {mission_id: m.to_dict() for mission_id, m in self._missions.items()}

    def summarize(self, mission_id: str, tasks: Mapping[str, Task]) -> dict[str, Any]:
        """Read-only progress view; does not touch the iteration counter."""
        mission = self.get(mission_id)
        counts = self._tally(mission, tasks)
        total = counts["total"]
        return {
            "mission_id": mission.id,
            "title": mission.title,
            "status": mission.status.value,
            "iteration": mission.iteration,
            "max_iterations": mission.max_iterations,
            "percent_complete": round(counts["completed"] * 100 / total) if total else 0,
            **counts,
        }

    def _tally(self, mission: Mission, tasks: Mapping[str, Task]) -> dict[str, int]:
        statuses: list[TaskStatus] = []
        for task_id in mission.task_ids:
            task = tasks.get(task_id)
            if task is None:
                raise NotFoundError(
                    f"Mission {mission.id} references unknown task {task_id}",
                    entity="task",
                    entity_id=task_id,
                    operation="check_progress",
                )
            statuses.append(task.status)
        return {
            "total": len(statuses),
            "completed": statuses.count(TaskStatus.completed),
            "in_review": statuses.count(TaskStatus.in_review),
            "pending": statuses.count(TaskStatus.pending)
            + statuses.count(TaskStatus.needs_revision),
            "blocked": statuses.count(TaskStatus.blocked),
            "available": statuses.count(TaskStatus.available),
            "in_progress": statuses.count(TaskStatus.in_progress),
        }

    def _set_status(self, mission: Mission, status: MissionStatus, reason: str | None) -> None:
        if status != mission.status and status not in MISSION_TRANSITIONS[mission.status]:
            raise InvalidTransitionError(
                f"Mission {mission.id} cannot go from {mission.status} to {status}",
                entity="mission",
                entity_id=mission.id,
                operation="update_status",
                status=mission.status.value,
            )
        previous = mission.status
        mission.status = status
        mission.status_reason = reason
        mission.updated_at = self._now()
        if status == MissionStatus.completed and mission.completed_at is None:
            mission.completed_at = mission.updated_at
        if previous != status:
            logger.info(
                "mission_status_changed",
                mission_id=mission.id,
                from_status=previous.value,
                to_status=status.value,
                reason=reason,
            )
