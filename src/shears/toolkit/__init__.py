"""Agent toolkit: the discard / extract / pin tools exposed to the model.

Provides tool definitions and an executor that turn directed pruning
operations into function-calling schemas with structured results.
"""

from shears.toolkit.definitions import get_all_tools, get_enabled_tools
from shears.toolkit.executor import ToolExecutor
from shears.toolkit.models import ToolDefinition, ToolResult

__all__ = [
    "ToolDefinition",
    "ToolExecutor",
    "ToolResult",
    "get_all_tools",
    "get_enabled_tools",
]
