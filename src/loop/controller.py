"""LoopController: cooperative per-agent polling state.

There is no timer here. next_check_at is advisory; callers decide when to
poll again and every poll is an explicit, observable call.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta
from typing import Any

import structlog

from src.infra.clock import Clock, utc_now
from src.infra.errors import NotFoundError, RecordValidationError
from src.loop.models import (
    IDLE_INSTRUCTIONS,
    MAX_ITERATIONS_REACHED,
    Instruction,
    LoopDecision,
    LoopMode,
    LoopState,
)

logger = structlog.get_logger()


class LoopController:
    def __init__(
        self,
        states: Iterable[LoopState] = (),
        *,
        stall_threshold: int = 5,
        now_fn: Clock = utc_now,
    ) -> None:
        self._states: dict[str, LoopState] = {s.agent_id: s for s in states}
        self._stall_threshold = stall_threshold
        self._now = now_fn

    def get(self, agent_id: str) -> LoopState:
        state = self._states.get(agent_id)
        if state is None:
            raise NotFoundError(
                f"No loop state for agent: {agent_id}", entity="loop_state", entity_id=agent_id
            )
        return state

    def states(self) -> list[LoopState]:
        return list(self._states.values())

    def start(
        self,
        agent_id: str,
        *,
        interval: int,
        max_iterations: int,
        mode: LoopMode = LoopMode.continuous,
    ) -> LoopState:
        if mode == LoopMode.single:
            max_iterations = 1
        if interval <= 0:
            raise RecordValidationError(
                f"check interval must be positive (got {interval})",
                entity="loop_state",
                entity_id=agent_id,
                operation="start_loop",
            )
        if max_iterations < 1:
            raise RecordValidationError(
                f"max_iterations must be >= 1 (got {max_iterations})",
                entity="loop_state",
                entity_id=agent_id,
                operation="start_loop",
            )
        now = self._now()
        state = LoopState(
            agent_id=agent_id,
            is_active=True,
            mode=mode,
            check_interval=interval,
            max_iterations=max_iterations,
            started_at=now,
            next_check_at=now + timedelta(seconds=interval),
        )
        self._states[agent_id] = state
        logger.info(
            "loop_started", agent_id=agent_id, interval=interval, max_iterations=max_iterations
        )
        return state

    def poll(
        self, agent_id: str, *, work_found: bool, stop_reason: str | None = None
    ) -> LoopState:
        """Advance one iteration. Inactive loops are returned unchanged."""
        state = self.get(agent_id)
        if not state.is_active:
            return state

        now = self._now()
        state.current_iteration += 1
        state.last_check_at = now
        state.next_check_at = now + timedelta(seconds=state.check_interval)
        state.consecutive_empty_checks = 0 if work_found else state.consecutive_empty_checks + 1

        if stop_reason is not None:
            self._deactivate(state, stop_reason)
        elif state.current_iteration >= state.max_iterations:
            self._deactivate(state, MAX_ITERATIONS_REACHED)
        logger.debug(
            "loop_polled",
            agent_id=agent_id,
            iteration=state.current_iteration,
            is_active=state.is_active,
            empty_checks=state.consecutive_empty_checks,
        )
        return state

    def stop(self, agent_id: str, reason: str = "stopped by agent") -> LoopState:
        state = self.get(agent_id)
        if state.is_active:
            self._deactivate(state, reason)
        return state

    def record_completion(self, agent_id: str, *, review: bool = False) -> None:
        state = self._states.get(agent_id)
        if state is None:
            return
        if review:
            state.reviews_completed += 1
        else:
            state.tasks_completed += 1

    def is_stalled(self, state: LoopState) -> bool:
        return state.consecutive_empty_checks >= self._stall_threshold

    def decide(
        self,
        state: LoopState,
        *,
        role: str,
        instruction: Instruction,
        payload: dict[str, Any] | None = None,
    ) -> LoopDecision:
        """Wrap *instruction* for the agent.

        Work found on the poll that ended the loop is still handed out; the
        stop shows in the loop snapshot. An idle instruction on an inactive
        loop becomes ``stopped`` so the agent does not poll again.
        """
        if not state.is_active and instruction in IDLE_INSTRUCTIONS:
            instruction = Instruction.stopped
        return LoopDecision(
            agent_id=state.agent_id,
            role=role,
            instruction=instruction,
            loop=state,
            stalled=self.is_stalled(state),
            payload=payload or {},
        )

    def to_records(self) -> dict[str, dict[str, Any]]:
        return {agent_id: s.to_dict() for agent_id, s in self._states.items()}

    def _deactivate(self, state: LoopState, reason: str) -> None:
        state.is_active = False
        state.stop_reason = reason
        state.stopped_at = self._now()
        logger.info(
            "loop_stopped",
            agent_id=state.agent_id,
            reason=reason,
            iteration=state.current_iteration,
        )
