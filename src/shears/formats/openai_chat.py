"""Chat-completions style formats: OpenAI, Mistral, Cohere and compatibles.

All of these keep a flat ``messages`` list where assistant messages
carry ``tool_calls`` and each result is its own ``role: "tool"``
message pointing back with ``tool_call_id``.  They differ in detection,
in how result content is shaped, and in provider quirks.
"""

from __future__ import annotations

import json
import logging
import re

from shears.formats.base import FormatDescriptor, RawCall, RawOutput, ToolOutput, serialized_size

logger = logging.getLogger(__name__)

_OPENAI_MODEL = re.compile(r"^(ft:)?(gpt-|chatgpt|o\d)", re.IGNORECASE)
_OPENAI_ONLY_KEYS = frozenset({
    "max_completion_tokens", "reasoning_effort", "store", "parallel_tool_calls",
    "service_tier", "prediction", "modalities",
})
_MISTRAL_MODEL = re.compile(
    r"^(mistral|open-mistral|codestral|magistral|ministral|pixtral|devstral|open-mixtral)",
    re.IGNORECASE,
)
_COHERE_MODEL = re.compile(r"^(command|c4ai)", re.IGNORECASE)


def _messages(body: dict) -> list | None:
    messages = body.get("messages")
    return messages if isinstance(messages, list) else None


class OpenAIChatFormat(FormatDescriptor):
    """OpenAI Chat Completions.

    - ``system``/``developer`` messages stay first and are never touched
    - tool calls: ``assistant.tool_calls[i] = {id, function: {name, arguments}}``
    - tool results: ``{role: "tool", tool_call_id, content}``
    """

    name = "openai-chat"

    def detect(self, body: dict) -> bool:
        if _messages(body) is None:
            return False
        model = body.get("model")
        if isinstance(model, str) and _OPENAI_MODEL.match(model):
            return True
        return any(key in body for key in _OPENAI_ONLY_KEYS)

    def get_data_array(self, body: dict) -> list | None:
        return _messages(body)

    def is_assistant(self, container: dict) -> bool:
        return container.get("role") == "assistant"

    def is_user(self, container: dict) -> bool:
        return container.get("role") == "user"

    def read_calls(self, container: dict) -> list[RawCall]:
        tool_calls = container.get("tool_calls")
        if not isinstance(tool_calls, list):
            return []
        calls: list[RawCall] = []
        for i, call in enumerate(tool_calls):
            if not isinstance(call, dict):
                continue
            function = call.get("function")
            if not isinstance(function, dict) or not function.get("name"):
                continue
            calls.append(RawCall(
                block_index=i,
                native_id=call.get("id") or None,
                tool_name=function["name"],
                arguments=function.get("arguments"),
            ))
        return calls

    def read_outputs(self, container: dict) -> list[RawOutput]:
        if container.get("role") != "tool":
            return []
        return [RawOutput(
            block_index=-1,
            native_id=container.get("tool_call_id") or None,
            tool_name=container.get("name"),
            content=container.get("content"),
        )]

    def _result_content(self, original: object, text: str) -> object:
        if isinstance(original, list):
            return [{"type": "text", "text": text}]
        return text

    def write_output(self, container: dict, block_index: int, text: str) -> dict:
        updated = dict(container)
        updated["content"] = self._result_content(container.get("content"), text)
        return updated

    def _encode_arguments(self, original: object, parameters: dict) -> object:
        if isinstance(original, dict):
            return dict(parameters)
        return json.dumps(parameters, ensure_ascii=False)

    def write_input(self, container: dict, block_index: int, parameters: dict) -> dict:
        updated = dict(container)
        tool_calls = list(updated["tool_calls"])
        call = dict(tool_calls[block_index])
        function = dict(call["function"])
        function["arguments"] = self._encode_arguments(function.get("arguments"), parameters)
        call["function"] = function
        tool_calls[block_index] = call
        updated["tool_calls"] = tool_calls
        return updated

    def append_user_text(self, container: dict, text: str) -> dict:
        updated = dict(container)
        content = updated.get("content")
        if isinstance(content, list):
            updated["content"] = [*content, {"type": "text", "text": text}]
        elif isinstance(content, str) and content:
            updated["content"] = f"{content}\n\n{text}"
        else:
            updated["content"] = text
        return updated

    def new_assistant_turn(self, text: str) -> dict:
        return {"role": "assistant", "content": text}


class MistralFormat(OpenAIChatFormat):
    """Mistral chat completions.

    Same layout as OpenAI chat, but arguments may arrive as decoded
    objects, tool messages carry ``name``, and the API rejects a request
    ending on an assistant turn, so auxiliary text always goes into the
    last user turn.
    """

    name = "mistral"
    supports_trailing_assistant = False

    def detect(self, body: dict) -> bool:
        if _messages(body) is None:
            return False
        if "safe_prompt" in body:
            return True
        model = body.get("model")
        return isinstance(model, str) and bool(_MISTRAL_MODEL.match(model))


class CohereFormat(OpenAIChatFormat):
    """Cohere v2 chat.

    Tool results are ``role: "tool"`` messages whose content is a list of
    ``{type: "document", document: {data}}`` entries; a pruned result
    keeps that shape with a single document.
    """

    name = "cohere"

    def detect(self, body: dict) -> bool:
        messages = _messages(body)
        if messages is None:
            return False
        model = body.get("model")
        if isinstance(model, str) and _COHERE_MODEL.match(model):
            return True
        for message in messages:
            if not isinstance(message, dict) or message.get("role") != "tool":
                continue
            content = message.get("content")
            if isinstance(content, list) and any(
                isinstance(c, dict) and c.get("type") == "document" for c in content
            ):
                return True
        return False

    def _result_content(self, original: object, text: str) -> object:
        if isinstance(original, list):
            return [{"type": "document", "document": {"data": text}}]
        return text


class OpenAICompatibleFormat(OpenAIChatFormat):
    """Generic OpenAI-compatible chat (vLLM, Ollama, OpenRouter, ...).

    The fallback format.  Some servers omit call ids entirely; such calls
    get a positional key and are paired with the tool messages that
    follow their assistant message, in order.  When the number of those
    messages, or a name they carry, disagrees with the calls, none of the
    turn's results are reported.
    """

    name = "openai-compatible"

    def detect(self, body: dict) -> bool:
        return _messages(body) is not None

    def extract_tool_outputs(self, data: list) -> list[ToolOutput]:
        outputs = super().extract_tool_outputs(data)
        positional = {
            ref.key: ref for ref in self.iter_tool_calls(data) if self.is_positional_key(ref.key)
        }
        if not positional:
            return outputs

        for ci in sorted({ref.container_index for ref in positional.values()}):
            idless = [
                (ordinal, raw) for ordinal, raw in enumerate(self.read_calls(data[ci]))
                if not raw.native_id
            ]
            # Id-less tool messages directly after the assistant message.
            followers: list[tuple[int, dict]] = []
            for j in range(ci + 1, len(data)):
                message = data[j]
                if not isinstance(message, dict) or message.get("role") != "tool":
                    break
                if message.get("tool_call_id"):
                    continue
                followers.append((j, message))
            if not followers:
                continue
            problem = self._pairing_problem([raw for _, raw in idless], [m for _, m in followers])
            if problem:
                logger.warning(
                    "%s: tool messages after %d do not line up with its calls (%s); "
                    "leaving turn untouched",
                    self.name, ci, problem,
                )
                continue
            for (ordinal, _raw), (j, message) in zip(idless, followers):
                ref = positional.get(self._positional_key(ci, ordinal))
                if ref is None:
                    continue
                outputs.append(ToolOutput(
                    key=ref.key,
                    tool_name=ref.tool_name,
                    container_index=j,
                    block_index=-1,
                    size=serialized_size(message.get("content")),
                ))
        outputs.sort(key=lambda o: o.container_index)
        return outputs

    @staticmethod
    def _pairing_problem(calls: list[RawCall], messages: list[dict]) -> str | None:
        if len(calls) != len(messages):
            return f"{len(calls)} calls, {len(messages)} results"
        for ordinal, (call, message) in enumerate(zip(calls, messages)):
            name = message.get("name")
            if name and name != call.tool_name:
                return f"position {ordinal}: call {call.tool_name!r}, result {name!r}"
        return None
