"""ToolExecutor: dispatches directed tool calls to a ContextPruner.

Provides a single ``execute()`` method that looks up the tool by name,
invokes its handler with the provided arguments, and returns a structured
``ToolResult``.  Errors never propagate: a stale id or malformed
argument comes back as a failed result the model can read and retry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shears.exceptions import ShearsError
from shears.toolkit.definitions import get_enabled_tools
from shears.toolkit.models import ToolResult

if TYPE_CHECKING:
    from shears.engine.pruner import ContextPruner
    from shears.toolkit.models import ToolDefinition

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Dispatches tool calls for one conversation.

    Usage::

        executor = ToolExecutor(pruner, "conv-1")
        result = executor.execute("discard", {"ids": ["3"], "reason": "noise"})
        reply_to_model(result.text)
    """

    def __init__(self, pruner: ContextPruner, conversation_id: str) -> None:
        self._pruner = pruner
        self._conversation_id = conversation_id
        self._tools: dict[str, ToolDefinition] = {
            tool.name: tool for tool in get_enabled_tools(pruner, conversation_id)
        }

    def execute(self, tool_name: str, arguments: dict) -> ToolResult:
        """Execute a tool by name with the given arguments."""
        tool = self._tools.get(tool_name)
        if tool is None:
            return ToolResult(
                tool_name=tool_name,
                success=False,
                error=f"Unknown tool: {tool_name}",
            )
        try:
            result = tool.handler(**arguments)
            return ToolResult(tool_name=tool_name, success=True, output=str(result))
        except ShearsError as exc:
            logger.info("Tool %s rejected: %s", tool_name, exc)
            return ToolResult(tool_name=tool_name, success=False, error=str(exc))
        except Exception as exc:
            logger.debug("Tool %s failed: %s", tool_name, exc, exc_info=True)
            return ToolResult(
                tool_name=tool_name,
                success=False,
                error=f"{type(exc).__name__}: {exc}",
            )

    def available_tools(self) -> list[str]:
        return list(self._tools.keys())

    def definitions(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def declarations(self, format_name: str) -> list[dict]:
        """Tool declarations in the shape a wire format expects."""
        return [tool.to_format(format_name) for tool in self._tools.values()]
