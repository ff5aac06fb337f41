"""OpenAI Responses API format.

- top-level ``instructions`` (system prompt), never touched
- ``input`` is a flat list of items; messages carry a role, tool traffic
  is its own item type
- tool calls: ``{type: "function_call", call_id, name, arguments}``
- tool results: ``{type: "function_call_output", call_id, output}``

An assistant step is a contiguous run of assistant-side items
(reasoning, assistant messages, function calls).
"""

from __future__ import annotations

import json

from shears.formats.base import FormatDescriptor, RawCall, RawOutput

_ASSISTANT_ITEMS = frozenset({"function_call", "reasoning", "custom_tool_call"})


def _item_type(item: dict) -> str:
    return item.get("type") or "message"


class OpenAIResponsesFormat(FormatDescriptor):
    """OpenAI Responses API."""

    name = "openai-responses"

    def detect(self, body: dict) -> bool:
        if "messages" in body or "contents" in body:
            return False
        return isinstance(body.get("input"), list)

    def get_data_array(self, body: dict) -> list | None:
        items = body.get("input")
        return items if isinstance(items, list) else None

    def is_assistant(self, container: dict) -> bool:
        kind = _item_type(container)
        if kind in _ASSISTANT_ITEMS:
            return True
        return kind == "message" and container.get("role") == "assistant"

    def is_user(self, container: dict) -> bool:
        return _item_type(container) == "message" and container.get("role") == "user"

    def starts_turn(self, data: list, container_index: int) -> bool:
        if container_index == 0:
            return True
        previous = data[container_index - 1]
        return not (isinstance(previous, dict) and self.is_assistant(previous))

    def accepts_text(self, container: dict) -> bool:
        return _item_type(container) == "message"

    def read_calls(self, container: dict) -> list[RawCall]:
        if _item_type(container) != "function_call" or not container.get("name"):
            return []
        return [RawCall(
            block_index=-1,
            native_id=container.get("call_id") or None,
            tool_name=container["name"],
            arguments=container.get("arguments"),
        )]

    def read_outputs(self, container: dict) -> list[RawOutput]:
        if _item_type(container) != "function_call_output":
            return []
        return [RawOutput(
            block_index=-1,
            native_id=container.get("call_id") or None,
            tool_name=None,
            content=container.get("output"),
        )]

    def write_output(self, container: dict, block_index: int, text: str) -> dict:
        updated = dict(container)
        updated["output"] = text
        return updated

    def write_input(self, container: dict, block_index: int, parameters: dict) -> dict:
        updated = dict(container)
        updated["arguments"] = json.dumps(parameters, ensure_ascii=False)
        return updated

    def _append(self, container: dict, text: str, part_type: str) -> dict:
        updated = dict(container)
        content = updated.get("content")
        if isinstance(content, list):
            updated["content"] = [*content, {"type": part_type, "text": text}]
        elif isinstance(content, str) and content:
            updated["content"] = [
                {"type": part_type, "text": content},
                {"type": part_type, "text": text},
            ]
        else:
            updated["content"] = [{"type": part_type, "text": text}]
        return updated

    def append_user_text(self, container: dict, text: str) -> dict:
        return self._append(container, text, "input_text")

    def append_assistant_text(self, container: dict, text: str) -> dict:
        return self._append(container, text, "output_text")

    def new_user_turn(self, text: str) -> dict:
        return {"type": "message", "role": "user", "content": [{"type": "input_text", "text": text}]}

    def new_assistant_turn(self, text: str) -> dict:
        return {
            "type": "message",
            "role": "assistant",
            "content": [{"type": "output_text", "text": text}],
        }
