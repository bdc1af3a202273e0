"""CoordService: the single entry point agents (and tools) talk to.

Every mutating operation runs as one load-mutate-save unit: an asyncio lock
serializes writers inside this process, and the store's version check turns
writers from other processes into a retryable ConflictError instead of a
lost update. Reads load a fresh snapshot and take no lock.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.infra.clock import Clock, utc_now
from src.infra.errors import StoreCorruptionError
from src.loop.controller import LoopController
from src.loop.models import (
    IDLE_INSTRUCTIONS,
    Instruction,
    LoopDecision,
    LoopMode,
    LoopState,
)
from src.missions.models import (
    AcceptanceEvaluator,
    Decision,
    Mission,
    MissionSpec,
    MissionStatus,
    ProgressReport,
)
from src.missions.tracker import MissionTracker
from src.plans.models import AdjustmentSpec, PhaseView, Plan, PlanSpec
from src.plans.sequencer import PhaseMaterialization, PlanSequencer
from src.plans.similarity import TitleSimilarity, keyword_overlap_similarity
from src.roles.directory import RoleDirectory, RoleKind
from src.store.base import Collection, PendingWrite, RecordStore, Snapshot
from src.tasks.graph import BatchResult, PendingWork, TaskGraph
from src.tasks.models import Question, Task, TaskSpec, Verdict

logger = structlog.get_logger()

_DECODERS: dict[Collection, Callable[[dict[str, Any]], Any]] = {
    Collection.tasks: Task.from_dict,
    Collection.missions: Mission.from_dict,
    Collection.plans: Plan.from_dict,
    Collection.loop_states: LoopState.from_dict,
}


@dataclass
class _Unit:
    """Aggregates loaded for one operation plus the versions they were read at."""

    snapshots: dict[Collection, Snapshot] = field(default_factory=dict)
    graph: TaskGraph | None = None
    tracker: MissionTracker | None = None
    sequencer: PlanSequencer | None = None
    loops: LoopController | None = None

    def records(self, collection: Collection) -> dict[str, dict[str, Any]]:
        match collection:
            case Collection.tasks:
                return self.graph.to_records()
            case Collection.missions:
                return self.tracker.to_records()
            case Collection.plans:
                return self.sequencer.to_records()
            case Collection.loop_states:
                return self.loops.to_records()


@dataclass
class CoordService:
    store: RecordStore
    roles: RoleDirectory
    now_fn: Clock = utc_now
    evaluator: AcceptanceEvaluator | None = None
    similarity: TitleSimilarity = keyword_overlap_similarity
    default_check_interval: int = 30
    default_loop_iterations: int = 100
    default_mission_iterations: int = 50
    stall_threshold: int = 5
    _write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    # ── tasks ──

    async def add_task(self, spec: TaskSpec, *, mission_id: str | None = None) -> Task:
        collections = (Collection.tasks, Collection.missions) if mission_id else (Collection.tasks,)
        async with self._transaction(*collections) as unit:
            if mission_id:
                unit.tracker.get(mission_id)
            task = unit.graph.add_task(spec)
            if mission_id:
                unit.tracker.add_task_to_mission(mission_id, task.id)
                task.mission_id = mission_id
            return task

    async def add_batch(
        self, specs: list[TaskSpec], *, mission_id: str | None = None
    ) -> BatchResult:
        collections = (Collection.tasks, Collection.missions) if mission_id else (Collection.tasks,)
        async with self._transaction(*collections) as unit:
            if mission_id:
                unit.tracker.get(mission_id)
            result = unit.graph.add_batch(specs)
            if mission_id:
                for task_id in result.added:
                    unit.tracker.add_task_to_mission(mission_id, task_id)
                    unit.graph.get(task_id).mission_id = mission_id
            return result

    async def mark_in_progress(self, task_id: str) -> Task:
        async with self._transaction(Collection.tasks) as unit:
            return unit.graph.mark_in_progress(task_id)

    async def submit_work(
        self,
        task_id: str,
        *,
        summary: str,
        submitted_by: str,
        files: dict[str, str] | None = None,
        test_results: dict[str, Any] | None = None,
    ) -> Task:
        async with self._transaction(Collection.tasks) as unit:
            return unit.graph.submit_work(
                task_id,
                summary=summary,
                submitted_by=submitted_by,
                files=files,
                test_results=test_results,
            )

    async def review(
        self,
        task_id: str,
        *,
        verdict: Verdict,
        feedback: str,
        reviewed_by: str,
        action_items: list[str] | None = None,
    ) -> Task:
        async with self._transaction(Collection.tasks, Collection.loop_states) as unit:
            task = unit.graph.review(
                task_id,
                verdict=verdict,
                feedback=feedback,
                reviewed_by=reviewed_by,
                action_items=action_items,
            )
            unit.loops.record_completion(reviewed_by, review=True)
            if verdict == Verdict.approved and task.latest_submission is not None:
                unit.loops.record_completion(task.latest_submission.submitted_by)
            return task

    async def ask_question(
        self,
        task_id: str,
        *,
        question: str,
        asked_by: str,
        context: dict[str, Any] | None = None,
    ) -> Question:
        async with self._transaction(Collection.tasks) as unit:
            return unit.graph.ask_question(
                task_id, question=question, asked_by=asked_by, context=context
            )

    async def answer_question(
        self, question_id: str, *, answer: str, answered_by: str
    ) -> Question:
        async with self._transaction(Collection.tasks) as unit:
            return unit.graph.answer_question(
                question_id, answer=answer, answered_by=answered_by
            )

    async def block_task(self, task_id: str, blocker_id: str) -> Task:
        async with self._transaction(Collection.tasks) as unit:
            return unit.graph.block_task(task_id, blocker_id)

    async def unblock_task(self, task_id: str, blocker_id: str) -> Task:
        async with self._transaction(Collection.tasks) as unit:
            return unit.graph.unblock_task(task_id, blocker_id)

    async def get_task(self, task_id: str) -> Task:
        unit = await self._read(Collection.tasks)
        return unit.graph.get(task_id)

    async def select_next_task(self, role_filter: str | None = None) -> Task | None:
        unit = await self._read(Collection.tasks)
        return unit.graph.select_next_task(role_filter)

    async def pending_work(self, agent_id: str) -> PendingWork:
        role = self.roles.role_of(agent_id)
        unit = await self._read(Collection.tasks)
        return unit.graph.pending_for_role(role.value)

    # ── missions ──

    async def create_mission(self, spec: MissionSpec) -> Mission:
        async with self._transaction(Collection.missions) as unit:
            return unit.tracker.create_mission(spec)

    async def add_task_to_mission(self, mission_id: str, task_id: str) -> Mission:
        async with self._transaction(Collection.tasks, Collection.missions) as unit:
            task = unit.graph.get(task_id)
            mission = unit.tracker.add_task_to_mission(mission_id, task_id)
            task.mission_id = mission_id
            return mission

    async def check_progress(self, mission_id: str) -> ProgressReport:
        async with self._transaction(Collection.tasks, Collection.missions) as unit:
            tasks = {t.id: t for t in unit.graph.tasks()}
            return unit.tracker.check_progress(mission_id, tasks)

    async def update_mission_status(
        self, mission_id: str, status: MissionStatus, reason: str | None = None
    ) -> Mission:
        async with self._transaction(Collection.missions) as unit:
            return unit.tracker.update_status(mission_id, status, reason)

    async def record_decision(
        self, mission_id: str, *, summary: str, made_by: str, rationale: str = ""
    ) -> Decision:
        async with self._transaction(Collection.missions) as unit:
            return unit.tracker.record_decision(
                mission_id, summary=summary, made_by=made_by, rationale=rationale
            )

    async def link_ticket(self, mission_id: str, ticket_id: str) -> Mission:
        async with self._transaction(Collection.missions) as unit:
            return unit.tracker.link_ticket(mission_id, ticket_id)

    async def get_mission(self, mission_id: str) -> Mission:
        unit = await self._read(Collection.missions)
        return unit.tracker.get(mission_id)

    # ── plans ──

    async def create_plan(self, spec: PlanSpec) -> Plan:
        async with self._transaction(Collection.plans, Collection.missions) as unit:
            if spec.mission_id:
                unit.tracker.get(spec.mission_id)
            return unit.sequencer.create_plan(spec)

    async def create_ad_hoc_plan(self, **kwargs: Any) -> Plan:
        async with self._transaction(Collection.plans, Collection.missions) as unit:
            if kwargs.get("mission_id"):
                unit.tracker.get(kwargs["mission_id"])
            return unit.sequencer.create_ad_hoc_plan(**kwargs)

    async def get_next_phase(self, plan_id: str) -> PhaseView | None:
        unit = await self._read(Collection.plans)
        return unit.sequencer.get_next_phase(plan_id)

    async def get_active_plan(self) -> Plan | None:
        unit = await self._read(Collection.plans)
        return unit.sequencer.get_active_plan()

    async def advance_phase(self, plan_id: str) -> Plan:
        async with self._transaction(Collection.plans) as unit:
            return unit.sequencer.advance_phase(plan_id)

    async def adjust_plan(self, plan_id: str, spec: AdjustmentSpec) -> Plan:
        async with self._transaction(Collection.plans) as unit:
            return unit.sequencer.adjust_plan(plan_id, spec)

    async def pause_current_plan(self) -> Plan | None:
        async with self._transaction(Collection.plans) as unit:
            return unit.sequencer.pause_current_plan()

    async def resume_plan(self, plan_id: str) -> Plan:
        async with self._transaction(Collection.plans) as unit:
            return unit.sequencer.resume_plan(plan_id)

    async def materialize_next_phase(self) -> PhaseMaterialization | None:
        """Feed the active plan's current phase into the task graph."""
        async with self._transaction(
            Collection.tasks, Collection.missions, Collection.plans
        ) as unit:
            return self._materialize(unit)

    # ── loop ──

    async def start_loop(
        self,
        agent_id: str,
        *,
        interval: int | None = None,
        max_iterations: int | None = None,
        mode: LoopMode = LoopMode.continuous,
    ) -> LoopState:
        self.roles.role_of(agent_id)
        async with self._transaction(Collection.loop_states) as unit:
            return unit.loops.start(
                agent_id,
                interval=interval or self.default_check_interval,
                max_iterations=max_iterations or self.default_loop_iterations,
                mode=mode,
            )

    async def stop_loop(self, agent_id: str, reason: str = "stopped by agent") -> LoopState:
        async with self._transaction(Collection.loop_states) as unit:
            return unit.loops.stop(agent_id, reason)

    async def get_loop(self, agent_id: str) -> LoopState:
        unit = await self._read(Collection.loop_states)
        return unit.loops.get(agent_id)

    async def poll(self, agent_id: str, *, stop_reason: str | None = None) -> LoopDecision:
        """One cooperative check for *agent_id*.

        Looks up the agent's role, finds what it should do next, advances its
        loop state and returns the decision. Implementers with nothing to do
        trigger materialization of the active plan's current phase first.
        """
        role = self.roles.role_of(agent_id)
        async with self._transaction(
            Collection.tasks, Collection.missions, Collection.plans, Collection.loop_states
        ) as unit:
            state = unit.loops.get(agent_id)
            if not state.is_active:
                return unit.loops.decide(state, role=role.value, instruction=Instruction.stopped)

            instruction, payload = self._find_work(unit, role)
            work_found = instruction not in IDLE_INSTRUCTIONS
            state = unit.loops.poll(agent_id, work_found=work_found, stop_reason=stop_reason)
            decision = unit.loops.decide(
                state, role=role.value, instruction=instruction, payload=payload
            )
            logger.info(
                "agent_polled",
                agent_id=agent_id,
                role=role.value,
                instruction=decision.instruction.value,
                iteration=state.current_iteration,
                stalled=decision.stalled,
            )
            return decision

    # ── snapshots ──

    async def snapshot(self) -> _Unit:
        """Load every collection for rendering or inspection."""
        return await self._read(*Collection)

    # ── internals ──

    def _find_work(self, unit: _Unit, role: RoleKind) -> tuple[Instruction, dict[str, Any]]:
        graph = unit.graph
        if role == RoleKind.implementer:
            task = graph.select_next_task(role.value)
            if task is None:
                self._materialize(unit)
                task = graph.select_next_task(role.value)
            if task is not None:
                return Instruction.work_on_task, {"task": task.to_dict()}
            return Instruction.wait, {}

        if role == RoleKind.reviewer:
            queue = graph.review_queue()
            if queue:
                return Instruction.review_submission, {"tasks": [t.to_dict() for t in queue]}
            questions = graph.unanswered_questions()
            if questions:
                return Instruction.answer_questions, {
                    "questions": [{"task_id": t.id, **q.to_dict()} for t, q in questions]
                }

        if role == RoleKind.planner:
            pending = unit.tracker.needing_decomposition(role.value)
            if pending:
                return Instruction.decompose_mission, {
                    "missions": [m.to_dict() for m in pending]
                }

        tasks = {t.id: t for t in graph.tasks()}
        missions = unit.tracker.active_missions(role.value)
        if missions:
            return Instruction.check_progress, {
                "missions": [unit.tracker.summarize(m.id, tasks) for m in missions]
            }
        return Instruction.wait, {}

    def _materialize(self, unit: _Unit) -> PhaseMaterialization | None:
        plan = unit.sequencer.get_active_plan()
        if plan is None:
            return None
        result = unit.sequencer.materialize_phase(
            plan.id,
            existing_ids=[t.id for t in unit.graph.tasks()],
            completed_titles=unit.graph.completed_titles(),
        )
        if not result.specs:
            return result
        batch = unit.graph.add_batch(result.specs)
        if plan.mission_id:
            for task_id in batch.added:
                unit.tracker.add_task_to_mission(plan.mission_id, task_id)
                unit.graph.get(task_id).mission_id = plan.mission_id
        return result

    async def _read(self, *collections: Collection) -> _Unit:
        unit = _Unit()
        for collection in collections:
            snapshot = await self.store.load(collection)
            unit.snapshots[collection] = snapshot
        # Every aggregate is built so cross-collection helpers never see None;
        # only loaded collections are saved back.
        unit.graph = TaskGraph(
            self._decode(unit, Collection.tasks), now_fn=self.now_fn
        )
        unit.tracker = MissionTracker(
            self._decode(unit, Collection.missions),
            evaluator=self.evaluator,
            default_max_iterations=self.default_mission_iterations,
            now_fn=self.now_fn,
        )
        unit.sequencer = PlanSequencer(
            self._decode(unit, Collection.plans),
            similarity=self.similarity,
            now_fn=self.now_fn,
        )
        unit.loops = LoopController(
            self._decode(unit, Collection.loop_states),
            stall_threshold=self.stall_threshold,
            now_fn=self.now_fn,
        )
        return unit

    def _decode(self, unit: _Unit, collection: Collection) -> list[Any]:
        snapshot = unit.snapshots.get(collection)
        if snapshot is None:
            return []
        decode = _DECODERS[collection]
        items = []
        for record_id, payload in snapshot.records.items():
            try:
                items.append(decode(payload))
            except (KeyError, ValueError, TypeError, AttributeError) as exc:
                raise StoreCorruptionError(
                    f"Unparseable {collection} record {record_id}: {exc}",
                    entity=collection.value,
                    entity_id=record_id,
                    operation="load",
                ) from exc
        return items

    @contextlib.asynccontextmanager
    async def _transaction(self, *collections: Collection) -> AsyncIterator[_Unit]:
        async with self._write_lock:
            unit = await self._read(*collections)
            yield unit
            writes = []
            for collection, snapshot in unit.snapshots.items():
                records = unit.records(collection)
                if records != snapshot.records:
                    writes.append(
                        PendingWrite(
                            collection=collection,
                            records=records,
                            expected_version=snapshot.version,
                        )
                    )
            if writes:
                await self.store.save(writes)
