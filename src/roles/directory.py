"""Explicit agent -> role directory supplied at construction time."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum

from src.infra.errors import NotFoundError, RecordValidationError


class RoleKind(StrEnum):
    reviewer = "reviewer"
    implementer = "implementer"
    planner = "planner"


class RoleDirectory:
    """Lookup of the role each known agent acts in."""

    def __init__(self, assignments: Mapping[str, str | RoleKind]) -> None:
        self._roles: dict[str, RoleKind] = {}
        for agent_id, role in assignments.items():
            try:
                kind = RoleKind(role)
            except ValueError as e:
                raise RecordValidationError(
                    f"Unknown role '{role}' for agent '{agent_id}'",
                    entity="role",
                    entity_id=agent_id,
                ) from e
            self._roles[agent_id] = kind

    def role_of(self, agent_id: str) -> RoleKind:
        role = self._roles.get(agent_id)
        if role is None:
            raise NotFoundError(
                f"Agent not registered: {agent_id}", entity="agent", entity_id=agent_id
            )
        return role
