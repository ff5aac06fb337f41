"""Anthropic Messages API format.

- top-level ``system`` (string or block list), never touched
- tool calls: ``{type: "tool_use", id, name, input}`` blocks in assistant content
- tool results: ``{type: "tool_result", tool_use_id, content, is_error}``
  blocks in user content
- ``cache_control`` markers ride on content blocks; a rewritten block keeps
  its marker, and at most four breakpoints are allowed per request
"""

from __future__ import annotations

import re

from shears.formats.base import FormatDescriptor, RawCall, RawOutput

_CLAUDE_MODEL = re.compile(r"claude", re.IGNORECASE)
_BLOCK_TYPES = frozenset({"tool_use", "tool_result", "thinking", "redacted_thinking"})


def _has_anthropic_blocks(messages: list) -> bool:
    for message in messages:
        if not isinstance(message, dict):
            continue
        content = message.get("content")
        if isinstance(content, list) and any(
            isinstance(b, dict) and b.get("type") in _BLOCK_TYPES for b in content
        ):
            return True
    return False


def _count_cache_control(value: object) -> int:
    if isinstance(value, dict):
        own = 1 if "cache_control" in value else 0
        return own + sum(_count_cache_control(v) for k, v in value.items() if k != "cache_control")
    if isinstance(value, list):
        return sum(_count_cache_control(v) for v in value)
    return 0


class AnthropicFormat(FormatDescriptor):
    """Anthropic Messages API."""

    name = "anthropic"
    max_cache_markers = 4

    def detect(self, body: dict) -> bool:
        messages = body.get("messages")
        if not isinstance(messages, list):
            return False
        if "anthropic_version" in body or "system" in body:
            return True
        model = body.get("model")
        if isinstance(model, str) and _CLAUDE_MODEL.search(model) and "max_tokens" in body:
            return True
        return _has_anthropic_blocks(messages)

    def get_data_array(self, body: dict) -> list | None:
        messages = body.get("messages")
        return messages if isinstance(messages, list) else None

    def is_assistant(self, container: dict) -> bool:
        return container.get("role") == "assistant"

    def is_user(self, container: dict) -> bool:
        return container.get("role") == "user"

    def read_calls(self, container: dict) -> list[RawCall]:
        content = container.get("content")
        if not isinstance(content, list):
            return []
        return [
            RawCall(
                block_index=i,
                native_id=block.get("id") or None,
                tool_name=block.get("name", ""),
                arguments=block.get("input"),
            )
            for i, block in enumerate(content)
            if isinstance(block, dict) and block.get("type") == "tool_use" and block.get("name")
        ]

    def read_outputs(self, container: dict) -> list[RawOutput]:
        content = container.get("content")
        if not isinstance(content, list):
            return []
        return [
            RawOutput(
                block_index=i,
                native_id=block.get("tool_use_id") or None,
                tool_name=None,
                content=block.get("content"),
                is_error=bool(block.get("is_error")),
            )
            for i, block in enumerate(content)
            if isinstance(block, dict) and block.get("type") == "tool_result"
        ]

    def _replace_block(self, container: dict, block_index: int, **changes: object) -> dict:
        updated = dict(container)
        content = list(updated["content"])
        block = dict(content[block_index])
        block.update(changes)
        content[block_index] = block
        updated["content"] = content
        return updated

    def write_output(self, container: dict, block_index: int, text: str) -> dict:
        return self._replace_block(container, block_index, content=text)

    def write_input(self, container: dict, block_index: int, parameters: dict) -> dict:
        return self._replace_block(container, block_index, input=dict(parameters))

    def append_user_text(self, container: dict, text: str) -> dict:
        updated = dict(container)
        content = updated.get("content")
        if isinstance(content, list):
            updated["content"] = [*content, {"type": "text", "text": text}]
        elif isinstance(content, str) and content:
            updated["content"] = [
                {"type": "text", "text": content},
                {"type": "text", "text": text},
            ]
        else:
            updated["content"] = [{"type": "text", "text": text}]
        return updated

    def new_user_turn(self, text: str) -> dict:
        return {"role": "user", "content": [{"type": "text", "text": text}]}

    def new_assistant_turn(self, text: str) -> dict:
        return {"role": "assistant", "content": [{"type": "text", "text": text}]}

    def count_cache_markers(self, body: dict) -> int:
        return (
            _count_cache_control(body.get("system"))
            + _count_cache_control(body.get("messages"))
            + _count_cache_control(body.get("tools"))
        )
