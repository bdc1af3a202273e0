from __future__ import annotations

from src.loop.controller import LoopController
from src.missions.models import MissionSpec
from src.missions.tracker import MissionTracker
from src.plans.models import PhaseSpec, PlanSpec
from src.plans.sequencer import PlanSequencer
from src.render.status import render_loops, render_plans, render_status, render_tasks
from src.tasks.graph import TaskGraph
from src.tasks.models import Priority, TaskSpec


def test_tasks_table_orders_active_work_first(clock):
    graph = TaskGraph(now_fn=clock)
    graph.add_task(TaskSpec(id="A", title="Pipe | title", priority=Priority.low))
    graph.add_task(TaskSpec(id="B", title="b", depends_on=["A"]))
    graph.add_task(TaskSpec(id="C", title="c"))
    graph.mark_in_progress("C")

    rows = [line for line in render_tasks(graph.tasks()).splitlines() if line.startswith("| ")]

    assert [row.split(" | ")[0] for row in rows[1:]] == ["| C", "| A", "| B"]
    assert "Pipe \\| title" in rows[2]


def test_empty_sections(clock):
    text = render_status(tasks=[], missions=[], plans=[], loops=[])

    assert "(no tasks)" in text
    assert "(no missions)" in text
    assert "(no plans)" in text
    assert text.endswith("\n")


def test_plan_checklist(clock):
    sequencer = PlanSequencer(now_fn=clock, id_fn=lambda: "PLAN-1")
    sequencer.create_plan(PlanSpec(title="Auth", phases=[PhaseSpec(name="a"), PhaseSpec(name="b")]))
    sequencer.advance_phase("PLAN-1")

    text = render_plans(sequencer.plans())

    assert "- **PLAN-1** Auth [active] phase 2/2" in text
    assert "  - [x] a" in text
    assert "  - [ ] b" in text


def test_missions_and_loops(clock):
    graph = TaskGraph(now_fn=clock)
    graph.add_task(TaskSpec(id="A", title="a"))
    tracker = MissionTracker(now_fn=clock)
    tracker.create_mission(MissionSpec(id="M", title="Ship", objective="o"))
    tracker.add_task_to_mission("M", "A")
    tracker.record_decision("M", summary="Go", made_by="rex")
    loops = LoopController(now_fn=clock)
    loops.start("ada", interval=30, max_iterations=3)

    text = render_status(
        tasks=graph.tasks(), missions=tracker.missions(), plans=[], loops=loops.states()
    )

    assert "- **M** Ship [active] 0/1 tasks (0%), iteration 0/50" in text
    assert "  - decision by rex: Go" in text
    assert "| ada | yes | 0/3 | 0 |" in render_loops(loops.states())


def test_mission_awaiting_decomposition(clock):
    tracker = MissionTracker(now_fn=clock)
    tracker.create_mission(MissionSpec(id="M", title="Ship", objective="o"))

    text = render_status(tasks=[], missions=tracker.missions(), plans=[], loops=[])

    assert "  - awaiting decomposition" in text
