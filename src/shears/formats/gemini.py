"""Google Gemini ``generateContent`` format.

- ``contents`` with ``user`` and ``model`` roles, each holding ``parts``
- tool calls: ``{functionCall: {name, args}}`` parts in model content
- tool results: ``{functionResponse: {name, response}}`` parts in the
  content that follows

Gemini has no reliable call identifiers.  A call is keyed by its model
content index and its ordinal among that content's function calls, and
its result is the function response at the same ordinal in the next
content.  A response turn whose length or names disagree with its call
turn is treated as corrupted: none of its results are reported, so
nothing in that turn can be rewritten.

Keys shift when the host drops earlier contents.  A cached record whose
key now names a call with another tool or other arguments is replaced,
and its mark goes with it (``FormatDescriptor.still_matches``).
"""

from __future__ import annotations

import logging

from shears.formats.base import FormatDescriptor, RawCall, RawOutput, ToolOutput, serialized_size

logger = logging.getLogger(__name__)


class GeminiFormat(FormatDescriptor):
    """Google Gemini (AI Studio and Vertex)."""

    name = "gemini"
    positional = True
    assistant_role = "model"

    def detect(self, body: dict) -> bool:
        return isinstance(body.get("contents"), list)

    def get_data_array(self, body: dict) -> list | None:
        contents = body.get("contents")
        return contents if isinstance(contents, list) else None

    def is_assistant(self, container: dict) -> bool:
        return container.get("role") == "model"

    def is_user(self, container: dict) -> bool:
        return container.get("role") in ("user", None)

    @staticmethod
    def _parts(container: dict) -> list:
        parts = container.get("parts")
        return parts if isinstance(parts, list) else []

    def read_calls(self, container: dict) -> list[RawCall]:
        calls: list[RawCall] = []
        for i, part in enumerate(self._parts(container)):
            call = part.get("functionCall") if isinstance(part, dict) else None
            if not isinstance(call, dict) or not call.get("name"):
                continue
            calls.append(RawCall(
                block_index=i,
                native_id=call.get("id") or None,
                tool_name=call["name"],
                arguments=call.get("args"),
            ))
        return calls

    def read_outputs(self, container: dict) -> list[RawOutput]:
        outputs: list[RawOutput] = []
        for i, part in enumerate(self._parts(container)):
            response = part.get("functionResponse") if isinstance(part, dict) else None
            if not isinstance(response, dict):
                continue
            outputs.append(RawOutput(
                block_index=i,
                native_id=response.get("id") or None,
                tool_name=response.get("name"),
                content=response.get("response"),
            ))
        return outputs

    def extract_tool_outputs(self, data: list) -> list[ToolOutput]:
        outputs: list[ToolOutput] = []
        for ci, container in enumerate(data):
            if not isinstance(container, dict) or not self.is_assistant(container):
                continue
            calls = self.read_calls(container)
            if not calls or ci + 1 >= len(data) or not isinstance(data[ci + 1], dict):
                continue
            results = self.read_outputs(data[ci + 1])
            if not results:
                continue
            problem = self._pairing_problem(calls, results)
            if problem:
                logger.warning(
                    "gemini: function responses at %d do not line up with calls at %d (%s); "
                    "leaving turn untouched",
                    ci + 1, ci, problem,
                )
                continue
            for ordinal, (call, result) in enumerate(zip(calls, results)):
                outputs.append(ToolOutput(
                    key=self._positional_key(ci, ordinal),
                    tool_name=call.tool_name,
                    container_index=ci + 1,
                    block_index=result.block_index,
                    size=serialized_size(result.content),
                    is_error=self._looks_like_error(result.content),
                ))
        return outputs

    @staticmethod
    def _pairing_problem(calls: list[RawCall], results: list[RawOutput]) -> str | None:
        if len(calls) != len(results):
            return f"{len(calls)} calls, {len(results)} responses"
        for ordinal, (call, result) in enumerate(zip(calls, results)):
            if result.tool_name and result.tool_name != call.tool_name:
                return f"position {ordinal}: call {call.tool_name!r}, response {result.tool_name!r}"
            if call.native_id and result.native_id and call.native_id != result.native_id:
                return f"position {ordinal}: id {call.native_id!r} != {result.native_id!r}"
        return None

    @staticmethod
    def _looks_like_error(response: object) -> bool:
        return isinstance(response, dict) and "error" in response and "output" not in response

    def write_output(self, container: dict, block_index: int, text: str) -> dict:
        updated = dict(container)
        parts = list(self._parts(container))
        part = dict(parts[block_index])
        response = dict(part["functionResponse"])
        response["response"] = {"content": text}
        part["functionResponse"] = response
        parts[block_index] = part
        updated["parts"] = parts
        return updated

    def write_input(self, container: dict, block_index: int, parameters: dict) -> dict:
        updated = dict(container)
        parts = list(self._parts(container))
        part = dict(parts[block_index])
        call = dict(part["functionCall"])
        call["args"] = dict(parameters)
        part["functionCall"] = call
        parts[block_index] = part
        updated["parts"] = parts
        return updated

    def append_user_text(self, container: dict, text: str) -> dict:
        updated = dict(container)
        updated["parts"] = [*self._parts(container), {"text": text}]
        return updated

    def append_assistant_text(self, container: dict, text: str) -> dict:
        return self.append_user_text(container, text)

    def new_user_turn(self, text: str) -> dict:
        return {"role": "user", "parts": [{"text": text}]}

    def new_assistant_turn(self, text: str) -> dict:
        return {"role": "model", "parts": [{"text": text}]}
