"""Protected-tool and protected-path guard.

Applied inside every strategy and inside canonical id derivation: a
protected invocation is never listed as prunable and never auto-marked.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import TYPE_CHECKING

from shears.formatting import file_path_from_parameters

if TYPE_CHECKING:
    from shears.models.config import PrunerConfig
    from shears.models.invocation import ToolInvocationRecord

logger = logging.getLogger(__name__)


class ProtectionGuard:
    """Decides whether a record may ever be pruned.

    Args:
        protected_tools: Tool names that are never pruned.
        protected_file_patterns: Glob patterns; a call whose file path
            parameter matches any of them is never pruned.
    """

    def __init__(
        self,
        protected_tools: list[str] | tuple[str, ...] = (),
        protected_file_patterns: list[str] | tuple[str, ...] = (),
    ) -> None:
        self._tools = frozenset(protected_tools)
        self._patterns = tuple(protected_file_patterns)

    @classmethod
    def from_config(cls, config: PrunerConfig) -> ProtectionGuard:
        return cls(config.protected_tools, config.protected_file_patterns)

    @property
    def protected_tools(self) -> frozenset[str]:
        return self._tools

    def is_protected_tool(self, tool_name: str) -> bool:
        return tool_name in self._tools

    def is_protected_path(self, path: str | None) -> bool:
        if not path or not self._patterns:
            return False
        normalized = path.replace("\\", "/")
        return any(
            fnmatch.fnmatchcase(normalized, pattern)
            or fnmatch.fnmatchcase(normalized.rsplit("/", 1)[-1], pattern)
            for pattern in self._patterns
        )

    def is_protected(self, record: ToolInvocationRecord) -> bool:
        if self.is_protected_tool(record.tool_name):
            return True
        if self.is_protected_path(file_path_from_parameters(record.parameters)):
            logger.debug("Protected path for %s: %s", record.tool_name, record.correlation_key)
            return True
        return False

    def with_tools(self, extra: list[str] | tuple[str, ...]) -> ProtectionGuard:
        """Return a guard that additionally protects ``extra`` tool names."""
        if not extra:
            return self
        return ProtectionGuard(tuple(self._tools | set(extra)), self._patterns)
