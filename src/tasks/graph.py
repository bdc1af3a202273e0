"""TaskGraph: task records, dependency edges and the workflow state machine.

The graph is an in-memory aggregate. Persistence and the single-writer
discipline live in CoordService, which loads a TaskGraph from the record
store, applies one operation and saves it back under a version check.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.infra.clock import Clock, utc_now
from src.infra.errors import InvalidTransitionError, NotFoundError, RecordValidationError
from src.tasks.models import (
    RECOMPUTABLE,
    SELECTABLE,
    SUBMITTABLE,
    Question,
    Review,
    Submission,
    Task,
    TaskSpec,
    TaskStatus,
    Verdict,
)

logger = structlog.get_logger()


def _question_id() -> str:
    return f"Q-{uuid.uuid4().hex[:12]}"


@dataclass
class BatchResult:
    added: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)


@dataclass
class PendingWork:
    """What a role should look at next, newest state first."""

    tasks: list[Task] = field(default_factory=list)
    reviews: list[Task] = field(default_factory=list)
    questions: list[tuple[Task, Question]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.tasks or self.reviews or self.questions)


class TaskGraph:
    """Owns task records. All status changes go through the transition table."""

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        *,
        now_fn: Clock = utc_now,
        question_id_fn: Callable[[], str] = _question_id,
    ) -> None:
        self._tasks: dict[str, Task] = {}
        for task in sorted(tasks, key=lambda t: t.seq):
            self._tasks[task.id] = task
        self._now = now_fn
        self._question_id = question_id_fn

    # ── queries ──

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def get(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", entity="task", entity_id=task_id)
        return task

    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def completed_titles(self) -> list[str]:
        return [t.title for t in self._tasks.values() if t.status == TaskStatus.completed]

    def select_next_task(self, role_filter: str | None = None) -> Task | None:
        """Return the in-progress task if any, else the best selectable task.

        Ordering is priority rank, then created_at, then insertion order.
        With a role filter only tasks unassigned or assigned to that role count.
        """
        candidates = [t for t in self._tasks.values() if _matches_role(t, role_filter)]
        for task in candidates:
            if task.status == TaskStatus.in_progress:
                return task
        pool = [t for t in candidates if t.status in SELECTABLE]
        if not pool:
            return None
        return min(pool, key=Task.sort_key)

    def review_queue(self) -> list[Task]:
        queue = [t for t in self._tasks.values() if t.status == TaskStatus.in_review]
        return sorted(queue, key=Task.sort_key)

    def unanswered_questions(self) -> list[tuple[Task, Question]]:
        return [
            (task, q)
            for task in self._tasks.values()
            for q in task.questions
            if not q.is_answered
        ]

    def pending_for_role(self, role: str) -> PendingWork:
        work = PendingWork(questions=self.unanswered_questions())
        if role == "implementer":
            work.tasks = sorted(
                (
                    t for t in self._tasks.values()
                    if t.status in SELECTABLE | {TaskStatus.in_progress}
                    and _matches_role(t, role)
                ),
                key=Task.sort_key,
            )
        elif role == "reviewer":
            work.reviews = self.review_queue()
        return work

    # ── mutations ──

    def add_task(self, spec: TaskSpec) -> Task:
        if spec.id in self._tasks:
            raise RecordValidationError(
                f"Task already exists: {spec.id}",
                entity="task",
                entity_id=spec.id,
                operation="add_task",
            )
        task = self._insert(spec)
        self.recompute_availability([task.id])
        logger.info("task_added", task_id=task.id, status=task.status.value)
        return task

    def add_batch(self, specs: list[TaskSpec]) -> BatchResult:
        """Insert many tasks.

        Duplicate ids reject the whole batch up front. After that each task is
        inserted on its own: one that would close a dependency cycle lands in
        ``failed`` and the earlier insertions stay in place.
        """
        seen: set[str] = set()
        for spec in specs:
            if spec.id in seen or spec.id in self._tasks:
                raise RecordValidationError(
                    f"Duplicate task id in batch: {spec.id}",
                    entity="task",
                    entity_id=spec.id,
                    operation="add_batch",
                )
            seen.add(spec.id)

        result = BatchResult()
        for spec in specs:
            try:
                self._insert(spec)
            except RecordValidationError as e:
                logger.warning("batch_task_insert_failed", task_id=spec.id, error=str(e))
                result.failed.append({"id": spec.id, "error": str(e)})
                continue
            result.added.append(spec.id)
        self.recompute_availability()
        logger.info("task_batch_added", added=len(result.added), failed=len(result.failed))
        return result

    def recompute_availability(self, scope: Iterable[str] | None = None) -> list[str]:
        """Re-derive available/blocked for pending, available and blocked tasks.

        Returns the ids whose status changed. Unknown ids in *scope* are skipped.
        """
        ids = list(self._tasks) if scope is None else [i for i in scope if i in self._tasks]
        changed: list[str] = []
        for task_id in ids:
            task = self._tasks[task_id]
            if task.status not in RECOMPUTABLE:
                continue
            target = TaskStatus.blocked if self._is_blocked(task) else TaskStatus.available
            if target != task.status:
                task.transition(target, operation="recompute_availability")
                changed.append(task_id)
        if changed:
            logger.debug("availability_recomputed", changed=changed)
        return changed

    def mark_in_progress(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task.status not in SELECTABLE:
            raise InvalidTransitionError(
                f"Task {task_id} cannot start from {task.status}",
                entity="task",
                entity_id=task_id,
                operation="mark_in_progress",
                status=task.status.value,
            )
        task.transition(TaskStatus.in_progress, operation="mark_in_progress")
        task.started_at = self._now()
        logger.info("task_started", task_id=task_id)
        return task

    def submit_work(
        self,
        task_id: str,
        *,
        summary: str,
        submitted_by: str,
        files: dict[str, str] | None = None,
        test_results: dict[str, Any] | None = None,
    ) -> Task:
        task = self.get(task_id)
        if task.status not in SUBMITTABLE:
            raise InvalidTransitionError(
                f"Task {task_id} cannot accept a submission while {task.status}",
                entity="task",
                entity_id=task_id,
                operation="submit_work",
                status=task.status.value,
            )
        task.submissions.append(
            Submission(
                summary=summary,
                files=dict(files or {}),
                test_results=dict(test_results or {}),
                submitted_by=submitted_by,
                submitted_at=self._now(),
            )
        )
        task.transition(TaskStatus.in_review, operation="submit_work")
        logger.info("task_submitted", task_id=task_id, submitted_by=submitted_by)
        return task

    def review(
        self,
        task_id: str,
        *,
        verdict: Verdict,
        feedback: str,
        reviewed_by: str,
        action_items: list[str] | None = None,
    ) -> Task:
        task = self.get(task_id)
        if task.status != TaskStatus.in_review:
            raise InvalidTransitionError(
                f"Task {task_id} has no submission awaiting review (status {task.status})",
                entity="task",
                entity_id=task_id,
                operation="review",
                status=task.status.value,
            )
        task.reviews.append(
            Review(
                verdict=verdict,
                feedback=feedback,
                action_items=list(action_items or []),
                reviewed_by=reviewed_by,
                reviewed_at=self._now(),
            )
        )
        if verdict == Verdict.approved:
            task.transition(TaskStatus.completed, operation="review")
            if task.completed_at is None:
                task.completed_at = self._now()
            unblocked = self.recompute_availability()
            logger.info("task_completed", task_id=task_id, unblocked=unblocked)
        else:
            task.transition(TaskStatus.needs_revision, operation="review")
            logger.info("task_needs_revision", task_id=task_id)
        return task

    def ask_question(
        self,
        task_id: str,
        *,
        question: str,
        asked_by: str,
        context: dict[str, Any] | None = None,
    ) -> Question:
        task = self.get(task_id)
        entry = Question(
            question_id=self._question_id(),
            question=question,
            context=dict(context or {}),
            asked_by=asked_by,
            asked_at=self._now(),
        )
        task.questions.append(entry)
        logger.info("question_asked", task_id=task_id, question_id=entry.question_id)
        return entry

    def answer_question(self, question_id: str, *, answer: str, answered_by: str) -> Question:
        for task in self._tasks.values():
            for entry in task.questions:
                if entry.question_id != question_id:
                    continue
                if entry.is_answered:
                    raise InvalidTransitionError(
                        f"Question {question_id} is already answered",
                        entity="question",
                        entity_id=question_id,
                        operation="answer_question",
                        status=entry.status,
                    )
                entry.answer = answer
                entry.answered_by = answered_by
                entry.answered_at = self._now()
                entry.status = "answered"
                logger.info("question_answered", task_id=task.id, question_id=question_id)
                return entry
        raise NotFoundError(
            f"Question not found: {question_id}", entity="question", entity_id=question_id
        )

    def block_task(self, task_id: str, blocker_id: str) -> Task:
        task = self.get(task_id)
        if blocker_id not in task.blocked_by:
            task.blocked_by.append(blocker_id)
        self.recompute_availability([task_id])
        return task

    def unblock_task(self, task_id: str, blocker_id: str) -> Task:
        task = self.get(task_id)
        if blocker_id not in task.blocked_by:
            raise NotFoundError(
                f"Task {task_id} is not blocked by {blocker_id}",
                entity="task",
                entity_id=task_id,
                operation="unblock_task",
            )
        task.blocked_by.remove(blocker_id)
        self.recompute_availability([task_id])
        return task

    def to_records(self) -> dict[str, dict[str, Any]]:
        return {task_id: task.to_dict() for task_id, task in self._tasks.items()}

    # ── internals ──

    def _insert(self, spec: TaskSpec) -> Task:
        cycle = self._dependency_cycle(spec.id, spec.depends_on)
        if cycle is not None:
            raise RecordValidationError(
                f"Task {spec.id} would close a dependency cycle: {' -> '.join(cycle)}",
                entity="task",
                entity_id=spec.id,
                operation="add_task",
            )
        next_seq = max((t.seq for t in self._tasks.values()), default=-1) + 1
        task = Task(
            id=spec.id,
            title=spec.title,
            specification=spec.specification,
            requirements=list(spec.requirements),
            acceptance_criteria=list(spec.acceptance_criteria),
            priority=spec.priority,
            depends_on=list(spec.depends_on),
            blocked_by=list(spec.blocked_by),
            assigned_role=spec.assigned_role,
            created_by=spec.created_by,
            created_at=self._now(),
            seq=next_seq,
        )
        self._tasks[task.id] = task
        return task

    def _dependency_cycle(self, task_id: str, depends_on: list[str]) -> list[str] | None:
        """Path from *task_id* back to itself through existing depends_on edges."""
        stack = [[task_id, dep] for dep in depends_on]
        seen: set[str] = set()
        while stack:
            path = stack.pop()
            current = path[-1]
            if current == task_id:
                return path
            if current in seen or current not in self._tasks:
                continue
            seen.add(current)
            stack.extend([*path, dep] for dep in self._tasks[current].depends_on)
        return None

    def _is_blocked(self, task: Task) -> bool:
        if task.blocked_by:
            return True
        for dep_id in task.depends_on:
            dep = self._tasks.get(dep_id)
            if dep is None or dep.status != TaskStatus.completed:
                return True
        return False


def _matches_role(task: Task, role_filter: str | None) -> bool:
    return role_filter is None or task.assigned_role in (None, role_filter)
