"""Display helpers shared by the prunable list, notifications and the CLI.

Nothing here touches domain state; functions take plain values so they
can be used from any layer without import cycles.
"""

from __future__ import annotations

import os
from typing import Any

# Parameter names tried, in order, when summarizing a call in one line.
_KEY_PARAMETERS: tuple[str, ...] = (
    "filePath", "file_path", "path", "pattern", "command", "url",
    "query", "description", "name", "id",
)

_FILE_PATH_PARAMETERS: tuple[str, ...] = ("filePath", "file_path", "path")

_MAX_KEY_LENGTH = 80


def format_token_count(tokens: int) -> str:
    """Render a token count compactly: ``950 tokens``, ``12.4K tokens``."""
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M tokens".replace(".0M", "M")
    if tokens >= 1_000:
        return f"{tokens / 1_000:.1f}K tokens".replace(".0K", "K")
    return f"{tokens} tokens"


def shorten_path(path: str, working_directory: str | None = None) -> str:
    """Make a path relative to the working directory when it lives inside it."""
    if not working_directory or not path:
        return path
    root = working_directory.rstrip(os.sep)
    if path == root:
        return "."
    if path.startswith(root + os.sep):
        return path[len(root) + 1:]
    return path


def _truncate(text: str, limit: int = _MAX_KEY_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def file_path_from_parameters(parameters: dict[str, Any] | None) -> str | None:
    """Return the file path a call targets, if its parameters name one."""
    if not parameters:
        return None
    for name in _FILE_PATH_PARAMETERS:
        value = parameters.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def extract_parameter_key(
    tool_name: str,
    parameters: dict[str, Any] | None,
    working_directory: str | None = None,
) -> str:
    """One-line description of what a call was about.

    ``read`` of ``/repo/src/a.py`` becomes ``src/a.py``; a ``bash`` call
    becomes its command; unknown shapes fall back to the first short
    string parameter.  Returns an empty string when nothing fits.
    """
    if not parameters:
        return ""
    path = file_path_from_parameters(parameters)
    if path:
        key = shorten_path(path, working_directory)
        if tool_name in ("grep", "glob") and isinstance(parameters.get("pattern"), str):
            key = f"{parameters['pattern']} in {key}"
        return _truncate(key)
    for name in _KEY_PARAMETERS:
        value = parameters.get(name)
        if isinstance(value, str) and value:
            return _truncate(value)
    for value in parameters.values():
        if isinstance(value, str) and value:
            return _truncate(value)
    return ""


def describe_invocation(
    tool_name: str,
    parameters: dict[str, Any] | None,
    working_directory: str | None = None,
) -> str:
    """``tool, key`` for display, or just the tool name."""
    key = extract_parameter_key(tool_name, parameters, working_directory)
    return f"{tool_name}, {key}" if key else tool_name
