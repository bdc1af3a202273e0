from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel

from src.roles.directory import RoleKind

if TYPE_CHECKING:
    from src.tools.context import ToolContext


class ToolGroup(StrEnum):
    tasks = "tasks"
    missions = "missions"
    plans = "plans"
    loop = "loop"


ALL_ROLES = frozenset(RoleKind)


class BaseTool(ABC):
    """Abstract base class for coordination tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name used by the calling agent."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what the tool does."""
        ...

    @property
    @abstractmethod
    def params_model(self) -> type[BaseModel]:
        """Pydantic model validating the tool's arguments."""
        ...

    @property
    def parameters(self) -> dict:
        """JSON Schema describing the tool's input parameters."""
        return self.params_model.model_json_schema()

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.tasks

    @property
    def allowed_roles(self) -> frozenset[RoleKind]:
        """Roles this tool is listed for. Listing only; calls are not gated on it."""
        return ALL_ROLES

    @abstractmethod
    async def execute(
        self, arguments: dict, context: ToolContext | None = None
    ) -> dict:
        """Execute the tool with given arguments and optional caller context.

        Raises CoordError subclasses; ToolRegistry.call turns them into error dicts.
        """
        ...
