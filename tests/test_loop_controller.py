from __future__ import annotations

from datetime import timedelta

import pytest

from src.infra.errors import NotFoundError, RecordValidationError
from src.loop.controller import LoopController
from src.loop.models import MAX_ITERATIONS_REACHED, Instruction, LoopMode, LoopState


@pytest.fixture
def loops(clock) -> LoopController:
    return LoopController(stall_threshold=3, now_fn=clock)


def test_stops_at_max_iterations(loops):
    loops.start("ada", interval=30, max_iterations=2)

    first = loops.poll("ada", work_found=True)
    assert (first.current_iteration, first.is_active) == (1, True)

    second = loops.poll("ada", work_found=True)
    assert second.current_iteration == 2
    assert second.is_active is False
    assert second.stop_reason == MAX_ITERATIONS_REACHED
    assert second.stopped_at is not None


def test_start_schedules_next_check(loops, clock):
    start = clock.now
    state = loops.start("ada", interval=30, max_iterations=5)

    assert state.started_at == start
    assert state.next_check_at == start + timedelta(seconds=30)


def test_poll_moves_next_check_forward(loops):
    loops.start("ada", interval=10, max_iterations=5)
    state = loops.poll("ada", work_found=False)

    assert state.next_check_at == state.last_check_at + timedelta(seconds=10)


def test_poll_after_stop_is_noop(loops):
    loops.start("ada", interval=30, max_iterations=5)
    loops.stop("ada", "done for today")

    state = loops.poll("ada", work_found=True)

    assert state.current_iteration == 0
    assert state.stop_reason == "done for today"


def test_explicit_stop_reason_wins_over_max(loops):
    loops.start("ada", interval=30, max_iterations=1)
    state = loops.poll("ada", work_found=True, stop_reason="shutdown")

    assert state.stop_reason == "shutdown"


def test_single_mode_runs_once(loops):
    state = loops.start("ada", interval=30, max_iterations=50, mode=LoopMode.single)
    assert state.max_iterations == 1

    assert loops.poll("ada", work_found=False).is_active is False


@pytest.mark.parametrize(("interval", "max_iterations"), [(0, 5), (-1, 5), (30, 0)])
def test_start_rejects_bad_bounds(loops, interval, max_iterations):
    with pytest.raises(RecordValidationError):
        loops.start("ada", interval=interval, max_iterations=max_iterations)


def test_restart_resets_state(loops):
    loops.start("ada", interval=30, max_iterations=1)
    loops.poll("ada", work_found=True)

    state = loops.start("ada", interval=30, max_iterations=3)

    assert state.is_active
    assert state.current_iteration == 0
    assert state.stop_reason is None


class TestStall:
    def test_empty_checks_flag_stall(self, loops):
        loops.start("ada", interval=30, max_iterations=10)
        for _ in range(3):
            state = loops.poll("ada", work_found=False)

        assert state.consecutive_empty_checks == 3
        assert loops.decide(state, role="implementer", instruction=Instruction.wait).stalled

    def test_found_work_resets_counter(self, loops):
        loops.start("ada", interval=30, max_iterations=10)
        loops.poll("ada", work_found=False)
        loops.poll("ada", work_found=False)
        state = loops.poll("ada", work_found=True)

        assert state.consecutive_empty_checks == 0
        assert not loops.is_stalled(state)


def test_work_found_on_final_poll_is_kept(loops):
    loops.start("ada", interval=30, max_iterations=1)
    state = loops.poll("ada", work_found=True)

    decision = loops.decide(
        state,
        role="implementer",
        instruction=Instruction.work_on_task,
        payload={"task": {"id": "A"}},
    )

    assert decision.instruction == Instruction.work_on_task
    payload = decision.to_dict()
    assert payload["task"] == {"id": "A"}
    assert payload["loop"]["is_active"] is False
    assert payload["loop"]["stop_reason"] == MAX_ITERATIONS_REACHED


@pytest.mark.parametrize("idle", [Instruction.wait, Instruction.check_progress])
def test_idle_instruction_on_inactive_loop_is_stopped(loops, idle):
    loops.start("ada", interval=30, max_iterations=1)
    state = loops.poll("ada", work_found=False)

    assert loops.decide(state, role="implementer", instruction=idle).instruction == (
        Instruction.stopped
    )


def test_record_completion_counts(loops):
    loops.start("rex", interval=30, max_iterations=10)
    loops.record_completion("rex", review=True)
    loops.record_completion("rex")
    loops.record_completion("nobody")

    state = loops.get("rex")
    assert (state.tasks_completed, state.reviews_completed) == (1, 1)


def test_unknown_agent_raises(loops):
    with pytest.raises(NotFoundError):
        loops.poll("ghost", work_found=True)


def test_state_roundtrip(loops):
    loops.start("ada", interval=30, max_iterations=3)
    loops.poll("ada", work_found=False)
    record = loops.to_records()["ada"]

    assert LoopState.from_dict(record).to_dict() == record
