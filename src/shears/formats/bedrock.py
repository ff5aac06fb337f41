"""AWS Bedrock Converse API format.

- top-level ``system`` array and ``inferenceConfig``
- ``messages`` with only ``user`` and ``assistant`` roles
- tool calls: ``{toolUse: {toolUseId, name, input}}`` blocks in assistant content
- tool results: ``{toolResult: {toolUseId, content, status}}`` blocks in user content
- ``{cachePoint: ...}`` blocks are standalone and never rewritten

Tool use ids are compared case-insensitively.
"""

from __future__ import annotations

from shears.formats.base import FormatDescriptor, RawCall, RawOutput


class BedrockFormat(FormatDescriptor):
    """AWS Bedrock Converse."""

    name = "bedrock"
    max_cache_markers = 4

    def detect(self, body: dict) -> bool:
        return (
            isinstance(body.get("system"), list)
            and body.get("inferenceConfig") is not None
            and isinstance(body.get("messages"), list)
        )

    def get_data_array(self, body: dict) -> list | None:
        messages = body.get("messages")
        return messages if isinstance(messages, list) else None

    def is_assistant(self, container: dict) -> bool:
        return container.get("role") == "assistant"

    def is_user(self, container: dict) -> bool:
        return container.get("role") == "user"

    def _normalize_id(self, native_id: str) -> str:
        return native_id.lower()

    def read_calls(self, container: dict) -> list[RawCall]:
        content = container.get("content")
        if not isinstance(content, list):
            return []
        calls: list[RawCall] = []
        for i, block in enumerate(content):
            tool_use = block.get("toolUse") if isinstance(block, dict) else None
            if not isinstance(tool_use, dict) or not tool_use.get("name"):
                continue
            calls.append(RawCall(
                block_index=i,
                native_id=tool_use.get("toolUseId") or None,
                tool_name=tool_use["name"],
                arguments=tool_use.get("input"),
            ))
        return calls

    def read_outputs(self, container: dict) -> list[RawOutput]:
        content = container.get("content")
        if not isinstance(content, list):
            return []
        outputs: list[RawOutput] = []
        for i, block in enumerate(content):
            result = block.get("toolResult") if isinstance(block, dict) else None
            if not isinstance(result, dict):
                continue
            outputs.append(RawOutput(
                block_index=i,
                native_id=result.get("toolUseId") or None,
                tool_name=None,
                content=result.get("content"),
                is_error=result.get("status") == "error",
            ))
        return outputs

    def write_output(self, container: dict, block_index: int, text: str) -> dict:
        updated = dict(container)
        content = list(updated["content"])
        block = dict(content[block_index])
        result = dict(block["toolResult"])
        result["content"] = [{"text": text}]
        block["toolResult"] = result
        content[block_index] = block
        updated["content"] = content
        return updated

    def write_input(self, container: dict, block_index: int, parameters: dict) -> dict:
        updated = dict(container)
        content = list(updated["content"])
        block = dict(content[block_index])
        tool_use = dict(block["toolUse"])
        tool_use["input"] = dict(parameters)
        block["toolUse"] = tool_use
        content[block_index] = block
        updated["content"] = content
        return updated

    def append_user_text(self, container: dict, text: str) -> dict:
        updated = dict(container)
        content = updated.get("content")
        blocks = list(content) if isinstance(content, list) else []
        # A trailing cachePoint must stay last so it still covers the turn.
        if blocks and isinstance(blocks[-1], dict) and "cachePoint" in blocks[-1]:
            blocks.insert(len(blocks) - 1, {"text": text})
        else:
            blocks.append({"text": text})
        updated["content"] = blocks
        return updated

    def append_assistant_text(self, container: dict, text: str) -> dict:
        updated = dict(container)
        content = updated.get("content")
        updated["content"] = [*(content if isinstance(content, list) else []), {"text": text}]
        return updated

    def new_user_turn(self, text: str) -> dict:
        return {"role": "user", "content": [{"text": text}]}

    def new_assistant_turn(self, text: str) -> dict:
        return {"role": "assistant", "content": [{"text": text}]}

    def count_cache_markers(self, body: dict) -> int:
        count = 0
        for section in (body.get("system"), body.get("messages")):
            if not isinstance(section, list):
                continue
            for item in section:
                if not isinstance(item, dict):
                    continue
                if "cachePoint" in item:
                    count += 1
                content = item.get("content")
                if isinstance(content, list):
                    count += sum(1 for b in content if isinstance(b, dict) and "cachePoint" in b)
        return count
