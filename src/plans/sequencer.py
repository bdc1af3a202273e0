"""PlanSequencer: ordered phases, phase advancement and adjustment audit log."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.infra.clock import Clock, utc_now
from src.infra.errors import InvalidTransitionError, NotFoundError, RecordValidationError
from src.plans.models import (
    AdjustmentRecord,
    AdjustmentSpec,
    CompletedPhase,
    InsertPhase,
    ModifyPhase,
    Phase,
    PhaseSpec,
    PhaseTaskSpec,
    PhaseView,
    Plan,
    PlanSpec,
    PlanStatus,
    ReorderPhases,
    new_plan_id,
)
from src.plans.similarity import TitleSimilarity, find_equivalent, keyword_overlap_similarity
from src.tasks.models import Priority, TaskSpec

logger = structlog.get_logger()


@dataclass
class PhaseMaterialization:
    """Task specs ready for TaskGraph.add_batch plus what was filtered out."""

    plan_id: str
    phase_index: int
    specs: list[TaskSpec] = field(default_factory=list)
    skipped: list[dict[str, str]] = field(default_factory=list)


class PlanSequencer:
    def __init__(
        self,
        plans: Iterable[Plan] = (),
        *,
        similarity: TitleSimilarity = keyword_overlap_similarity,
        now_fn: Clock = utc_now,
        id_fn: Callable[[], str] = new_plan_id,
    ) -> None:
        self._plans: dict[str, Plan] = {p.id: p for p in plans}
        self._similarity = similarity
        self._now = now_fn
        self._new_id = id_fn

    def get(self, plan_id: str) -> Plan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan not found: {plan_id}", entity="plan", entity_id=plan_id)
        return plan

    def plans(self) -> list[Plan]:
        return list(self._plans.values())

    def get_active_plan(self) -> Plan | None:
        for plan in self._plans.values():
            if plan.status == PlanStatus.active:
                return plan
        return None

    def create_plan(self, spec: PlanSpec, *, is_ad_hoc: bool = False) -> Plan:
        self._ensure_no_active_plan(operation="create_plan")
        now = self._now()
        plan = Plan(
            id=self._new_id(),
            title=spec.title,
            description=spec.description,
            phases=[Phase.from_spec(p) for p in spec.phases],
            created_by=spec.created_by,
            mission_id=spec.mission_id,
            is_ad_hoc=is_ad_hoc,
            created_at=now,
            updated_at=now,
        )
        plan.recount_tasks()
        if not plan.phases:
            plan.status = PlanStatus.completed
            plan.completed_at = now
        self._plans[plan.id] = plan
        logger.info(
            "plan_created",
            plan_id=plan.id,
            phases=len(plan.phases),
            total_tasks=plan.total_tasks,
        )
        return plan

    def create_ad_hoc_plan(
        self,
        *,
        title: str,
        description: str = "",
        specification: str = "",
        requirements: list[str] | None = None,
        acceptance_criteria: list[str] | None = None,
        created_by: str | None = None,
        mission_id: str | None = None,
    ) -> Plan:
        """Wrap a single piece of work in a one-phase plan."""
        phase = PhaseSpec(
            name="Ad-hoc mission",
            description=description,
            estimated_duration="variable",
            tasks=[
                PhaseTaskSpec(
                    title=title,
                    priority=Priority.high,
                    specification=specification,
                    requirements=requirements or [],
                    acceptance_criteria=acceptance_criteria or [],
                )
            ],
        )
        spec = PlanSpec(
            title=title,
            description=description,
            phases=[phase],
            created_by=created_by,
            mission_id=mission_id,
        )
        return self.create_plan(spec, is_ad_hoc=True)

    def get_next_phase(self, plan_id: str) -> PhaseView | None:
        plan = self.get(plan_id)
        if plan.status != PlanStatus.active or plan.current_phase is None:
            return None
        return PhaseView(
            phase=plan.current_phase,
            phase_number=plan.current_phase_index + 1,
            total_phases=len(plan.phases),
            previous_phases=list(plan.completed_phases),
        )

    def advance_phase(self, plan_id: str) -> Plan:
        plan = self.get(plan_id)
        phase = plan.current_phase
        if plan.status != PlanStatus.active or phase is None:
            raise InvalidTransitionError(
                f"Plan {plan_id} has no current phase to advance",
                entity="plan",
                entity_id=plan_id,
                operation="advance_phase",
                status=plan.status.value,
            )
        now = self._now()
        plan.completed_phases.append(
            CompletedPhase(phase_index=plan.current_phase_index, name=phase.name, completed_at=now)
        )
        plan.current_phase_index += 1
        plan.updated_at = now
        if plan.current_phase_index == len(plan.phases):
            plan.status = PlanStatus.completed
            plan.completed_at = now
            logger.info("plan_completed", plan_id=plan_id)
        else:
            logger.info(
                "plan_phase_advanced", plan_id=plan_id, phase_index=plan.current_phase_index
            )
        return plan

    def adjust_plan(self, plan_id: str, spec: AdjustmentSpec) -> Plan:
        """Validate, log, then apply one adjustment.

        Completed phases are history: only indices at or after the current
        phase can be inserted into, modified or reordered. A plan created
        without phases is completed; inserting its first phase reopens it.
        """
        plan = self.get(plan_id)
        adjustment = spec.adjustment
        reopening = (
            plan.status == PlanStatus.completed
            and not plan.phases
            and isinstance(adjustment, InsertPhase)
        )
        if plan.status == PlanStatus.completed and not reopening:
            raise InvalidTransitionError(
                f"Plan {plan_id} is completed and cannot be adjusted",
                entity="plan",
                entity_id=plan_id,
                operation="adjust_plan",
                status=plan.status.value,
            )
        self._validate_adjustment(plan, adjustment)
        if reopening:
            self._ensure_no_active_plan(operation="adjust_plan")

        now = self._now()
        plan.adjustments.append(
            AdjustmentRecord(
                type=adjustment.type,
                payload=adjustment.model_dump(mode="json", exclude={"type"}),
                made_by=spec.made_by,
                made_at=now,
                description=spec.description,
            )
        )

        match adjustment:
            case InsertPhase(after_index=after_index, phase=phase_spec):
                plan.phases.insert(after_index + 1, Phase.from_spec(phase_spec))
            case ModifyPhase():
                phase = plan.phases[adjustment.index]
                if adjustment.name is not None:
                    phase.name = adjustment.name
                if adjustment.description is not None:
                    phase.description = adjustment.description
                if adjustment.tasks is not None:
                    phase.tasks = [t.model_copy() for t in adjustment.tasks]
                if adjustment.estimated_duration is not None:
                    phase.estimated_duration = adjustment.estimated_duration
            case ReorderPhases(from_index=src, to_index=dst):
                moved = plan.phases.pop(src)
                plan.phases.insert(dst, moved)

        plan.recount_tasks()
        plan.updated_at = now
        if reopening:
            plan.status = PlanStatus.active
            plan.completed_at = None
        logger.info(
            "plan_adjusted",
            plan_id=plan_id,
            adjustment=adjustment.type,
            made_by=spec.made_by,
            total_tasks=plan.total_tasks,
        )
        return plan

    def pause_current_plan(self) -> Plan | None:
        plan = self.get_active_plan()
        if plan is None:
            return None
        plan.status = PlanStatus.paused
        plan.paused_at = plan.updated_at = self._now()
        logger.info("plan_paused", plan_id=plan.id)
        return plan

    def resume_plan(self, plan_id: str) -> Plan:
        plan = self.get(plan_id)
        if plan.status != PlanStatus.paused:
            raise InvalidTransitionError(
                f"Plan {plan_id} is not paused",
                entity="plan",
                entity_id=plan_id,
                operation="resume_plan",
                status=plan.status.value,
            )
        self._ensure_no_active_plan(operation="resume_plan")
        plan.status = PlanStatus.active
        plan.paused_at = None
        plan.updated_at = self._now()
        logger.info("plan_resumed", plan_id=plan_id)
        return plan

    def materialize_phase(
        self,
        plan_id: str,
        *,
        existing_ids: Iterable[str],
        completed_titles: Iterable[str],
    ) -> PhaseMaterialization:
        """Turn the current phase's task specs into TaskSpecs.

        Ids are ``<plan_id>-P<n>-T<m>``. Ids already in the graph are skipped so
        repeated calls add nothing. Candidates whose title matches a completed
        task under the configured similarity function are skipped as well.
        A phase with no task specs yields a single task named after the phase.
        """
        plan = self.get(plan_id)
        phase = plan.current_phase
        result = PhaseMaterialization(plan_id=plan_id, phase_index=plan.current_phase_index)
        if plan.status != PlanStatus.active or phase is None:
            return result

        existing = set(existing_ids)
        done = list(completed_titles)
        candidates = phase.tasks or [
            PhaseTaskSpec(title=phase.name, specification=phase.description)
        ]
        phase_number = plan.current_phase_index + 1
        for n, candidate in enumerate(candidates, start=1):
            task_id = f"{plan_id}-P{phase_number}-T{n}"
            if task_id in existing:
                result.skipped.append({"id": task_id, "reason": "already_created"})
                continue
            match = find_equivalent(candidate.title, done, self._similarity)
            if match is not None:
                result.skipped.append(
                    {"id": task_id, "reason": "similar_to_completed", "matched": match}
                )
                continue
            result.specs.append(
                TaskSpec(
                    id=task_id,
                    title=candidate.title,
                    specification=candidate.specification or phase.description,
                    requirements=list(candidate.requirements),
                    acceptance_criteria=list(candidate.acceptance_criteria),
                    priority=candidate.priority,
                    created_by=plan.created_by,
                )
            )
        logger.info(
            "phase_materialized",
            plan_id=plan_id,
            phase_index=plan.current_phase_index,
            created=len(result.specs),
            skipped=len(result.skipped),
        )
        return result

    def to_records(self) -> dict[str, dict[str, Any]]:
        return {plan_id: p.to_dict() for plan_id, p in self._plans.items()}

    def _ensure_no_active_plan(self, *, operation: str) -> None:
        active = self.get_active_plan()
        if active is not None:
            raise InvalidTransitionError(
                f"Plan {active.id} is already active; pause it first",
                entity="plan",
                entity_id=active.id,
                operation=operation,
                status=active.status.value,
            )

    def _validate_adjustment(self, plan: Plan, adjustment: Any) -> None:
        first = plan.current_phase_index
        count = len(plan.phases)

        def _reject(message: str) -> None:
            raise RecordValidationError(
                message, entity="plan", entity_id=plan.id, operation="adjust_plan"
            )

        match adjustment:
            case InsertPhase(after_index=after_index):
                if not first - 1 <= after_index <= count - 1:
                    _reject(
                        f"insert_phase after_index {after_index} outside "
                        f"[{first - 1}, {count - 1}]"
                    )
            case ModifyPhase(index=index):
                if not first <= index < count:
                    _reject(f"modify_phase index {index} outside [{first}, {count})")
            case ReorderPhases(from_index=src, to_index=dst):
                for value in (src, dst):
                    if not first <= value < count:
                        _reject(f"reorder_phases index {value} outside [{first}, {count})")
