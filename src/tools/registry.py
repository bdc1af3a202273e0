from __future__ import annotations

import structlog

from src.infra.errors import CoordError
from src.roles.directory import RoleKind
from src.tools.base import BaseTool
from src.tools.context import ToolContext

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for coordination tools. Provides lookup, role listing and dispatch."""

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        """Register a tool. Raises ValueError if name already registered."""
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> BaseTool | None:
        """Get a tool by name. Returns None if not found."""
        return self._tools.get(name)

    def list_tools(self, role: RoleKind | None = None) -> list[BaseTool]:
        """Return tools listed for *role* (all tools when role is None)."""
        return [
            tool for tool in self._tools.values()
            if role is None or role in tool.allowed_roles
        ]

    def get_tools_schema(self, role: RoleKind | None = None) -> list[dict]:
        """Return tools in function calling format, filtered by role.

        Output format:
        [{"type": "function", "function": {"name": ..., "description": ..., "parameters": ...}}]
        """
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in self.list_tools(role)
        ]

    async def call(
        self, name: str, arguments: dict, context: ToolContext | None = None
    ) -> dict:
        """Run a tool and map coordination errors to an error dict."""
        tool = self._tools.get(name)
        if tool is None:
            return {"error_code": "UNKNOWN_TOOL", "message": f"Unknown tool: {name}"}
        try:
            result = await tool.execute(arguments, context)
        except CoordError as e:
            logger.warning(
                "tool_call_failed",
                tool_name=name,
                error_code=e.code,
                agent_id=context.agent_id if context else None,
                error=str(e),
            )
            return e.to_dict()
        logger.info(
            "tool_called", tool_name=name, agent_id=context.agent_id if context else None
        )
        return result
