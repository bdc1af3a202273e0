"""Markdown status rendering for task graph, missions, plans and loops."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from src.loop.models import LoopState
from src.missions.models import Mission
from src.plans.models import Plan, PlanStatus
from src.tasks.models import Task, TaskStatus

_STATUS_ORDER = [
    TaskStatus.in_progress,
    TaskStatus.in_review,
    TaskStatus.needs_revision,
    TaskStatus.available,
    TaskStatus.blocked,
    TaskStatus.pending,
    TaskStatus.completed,
]


def render_tasks(tasks: Sequence[Task]) -> str:
    lines = [
        "## Tasks",
        "",
        "| id | title | priority | status | depends_on | blocked_by |",
        "|----|-------|----------|--------|------------|------------|",
    ]
    ordered = sorted(
        tasks, key=lambda t: (_STATUS_ORDER.index(t.status), t.priority.rank, t.created_at)
    )
    for task in ordered:
        lines.append(
            "| "
            + " | ".join(
                [
                    task.id,
                    _cell(task.title),
                    task.priority.value,
                    task.status.value,
                    ", ".join(task.depends_on),
                    ", ".join(task.blocked_by),
                ]
            )
            + " |"
        )
    if not ordered:
        lines.append("| - | (no tasks) | | | | |")
    return "\n".join(lines)


def render_missions(missions: Sequence[Mission], tasks: Mapping[str, Task]) -> str:
    lines = ["## Missions", ""]
    if not missions:
        lines.append("(no missions)")
        return "\n".join(lines)
    for mission in missions:
        done = sum(
            1 for tid in mission.task_ids
            if tid in tasks and tasks[tid].status == TaskStatus.completed
        )
        total = len(mission.task_ids)
        percent = round(done * 100 / total) if total else 0
        lines.append(
            f"- **{mission.id}** {mission.title} [{mission.status.value}] "
            f"{done}/{total} tasks ({percent}%), iteration "
            f"{mission.iteration}/{mission.max_iterations}"
        )
        if mission.decomposition_pending:
            lines.append("  - awaiting decomposition")
        for decision in mission.decisions[-3:]:
            lines.append(f"  - decision by {decision.made_by}: {decision.summary}")
    return "\n".join(lines)


def render_plans(plans: Sequence[Plan]) -> str:
    lines = ["## Plans", ""]
    if not plans:
        lines.append("(no plans)")
        return "\n".join(lines)
    for plan in plans:
        lines.append(
            f"- **{plan.id}** {plan.title} [{plan.status.value}] "
            f"phase {min(plan.current_phase_index + 1, len(plan.phases))}/{len(plan.phases)}"
        )
        if plan.status != PlanStatus.completed:
            for index, phase in enumerate(plan.phases):
                marker = "x" if index < plan.current_phase_index else " "
                lines.append(f"  - [{marker}] {phase.name}")
    return "\n".join(lines)


def render_loops(states: Sequence[LoopState]) -> str:
    lines = [
        "## Agent loops",
        "",
        "| agent | active | iteration | empty checks | next check | stop reason |",
        "|-------|--------|-----------|--------------|------------|-------------|",
    ]
    for state in sorted(states, key=lambda s: s.agent_id):
        next_check = state.next_check_at.isoformat() if state.next_check_at else ""
        lines.append(
            f"| {state.agent_id} | {'yes' if state.is_active else 'no'} | "
            f"{state.current_iteration}/{state.max_iterations} | "
            f"{state.consecutive_empty_checks} | {next_check} | {state.stop_reason or ''} |"
        )
    return "\n".join(lines)


def render_status(
    *,
    tasks: Sequence[Task],
    missions: Sequence[Mission],
    plans: Sequence[Plan],
    loops: Sequence[LoopState],
) -> str:
    by_id = {t.id: t for t in tasks}
    sections = [
        "# Coordination status",
        render_tasks(tasks),
        render_missions(missions, by_id),
        render_plans(plans),
        render_loops(loops),
    ]
    return "\n\n".join(sections) + "\n"


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")
