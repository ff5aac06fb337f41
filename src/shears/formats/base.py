"""FormatDescriptor ABC -- base class for all wire formats.

A descriptor knows how one provider lays out tool calls and tool
results inside a request body.  Subclasses only describe the shape
(which container is an assistant step, where call and result blocks
live, how to write replacement text); correlation, pairing checks and
parameter caching are implemented once here.

Descriptors are stateless.  Every mutating method replaces the touched
container with a shallow-copied one instead of editing the caller's
dicts in place.
"""

from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from shears.exceptions import PairingError
from shears.models.invocation import ToolInvocationRecord, ToolStatus
from shears.prompts import PRUNED_INPUT_PLACEHOLDER

if TYPE_CHECKING:
    from shears.models.state import ConversationState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallRef:
    """Location and payload of one tool call in a data array.

    ``turn`` is the 1-based ordinal of the assistant step holding the call,
    derived from the live list (before any turn offset is applied).
    """

    key: str
    tool_name: str
    parameters: dict
    container_index: int
    block_index: int
    turn: int


@dataclass(frozen=True)
class ToolOutput:
    """Location of one tool result in a data array."""

    key: str
    tool_name: str | None
    container_index: int
    block_index: int
    size: int = 0
    is_error: bool = False


@dataclass(frozen=True)
class ToolPair:
    """Both halves of a tool invocation, resolved together."""

    call: ToolCallRef
    output: ToolOutput


@dataclass(frozen=True)
class RawCall:
    """A call block as read from a container, before key assignment."""

    block_index: int
    native_id: str | None
    tool_name: str
    arguments: Any


@dataclass(frozen=True)
class RawOutput:
    """A result block as read from a container, before key assignment."""

    block_index: int
    native_id: str | None
    tool_name: str | None
    content: Any
    is_error: bool = False


def parse_arguments(raw: Any) -> dict:
    """Parse tool-call arguments into a dict.

    Accepts JSON strings (OpenAI style) and already-decoded dicts.

    Raises:
        ValueError: If the payload is not a JSON object.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        parsed = json.loads(raw)
    else:
        parsed = raw
    if not isinstance(parsed, dict):
        raise ValueError(f"Tool arguments must be an object, got {type(parsed).__name__}")
    return copy.deepcopy(parsed)


def serialized_size(value: Any) -> int:
    """Character length of a payload as it goes over the wire."""
    if value is None:
        return 0
    if isinstance(value, str):
        return len(value)
    return len(json.dumps(value, ensure_ascii=False, default=str))


class FormatDescriptor(ABC):
    """Capability table for one wire format.

    Class attributes:
        name: Human-readable format name used in logs.
        positional: True when the format has no native call identifiers
            and results are matched to calls by order.
        max_cache_markers: Maximum cache breakpoints the provider accepts
            (0 when the format has none).
        supports_trailing_assistant: False when the provider rejects a
            request whose last turn is assistant-authored.
        assistant_role: Role name the format uses for assistant turns.
    """

    name: str = "abstract"
    positional: bool = False
    max_cache_markers: int = 0
    supports_trailing_assistant: bool = True
    assistant_role: str = "assistant"

    # ------------------------------------------------------------------
    # Shape description (subclasses implement)
    # ------------------------------------------------------------------

    @abstractmethod
    def detect(self, body: dict) -> bool:
        """Return True if the request body is in this format."""
        ...

    @abstractmethod
    def get_data_array(self, body: dict) -> list | None:
        """Return the ordered turn containers (messages / contents / input)."""
        ...

    @abstractmethod
    def is_assistant(self, container: dict) -> bool:
        """True if the container was produced by the model."""
        ...

    @abstractmethod
    def is_user(self, container: dict) -> bool:
        """True if the container is a user turn that may carry extra text."""
        ...

    @abstractmethod
    def read_calls(self, container: dict) -> list[RawCall]:
        """Return call blocks in the container, in order."""
        ...

    @abstractmethod
    def read_outputs(self, container: dict) -> list[RawOutput]:
        """Return result blocks in the container, in order."""
        ...

    @abstractmethod
    def write_output(self, container: dict, block_index: int, text: str) -> dict:
        """Return a copy of the container with one result's content replaced."""
        ...

    @abstractmethod
    def write_input(self, container: dict, block_index: int, parameters: dict) -> dict:
        """Return a copy of the container with one call's arguments replaced."""
        ...

    @abstractmethod
    def append_user_text(self, container: dict, text: str) -> dict:
        """Return a copy of a user container with text appended."""
        ...

    @abstractmethod
    def new_assistant_turn(self, text: str) -> dict:
        """Build a synthetic assistant container holding text."""
        ...

    def new_user_turn(self, text: str) -> dict:
        return {"role": "user", "content": text}

    def append_assistant_text(self, container: dict, text: str) -> dict:
        """Return a copy of an assistant container with text appended."""
        updated = dict(container)
        content = updated.get("content")
        if isinstance(content, str):
            updated["content"] = f"{content}\n\n{text}" if content else text
        elif isinstance(content, list):
            updated["content"] = [*content, {"type": "text", "text": text}]
        else:
            updated["content"] = text
        return updated

    def count_cache_markers(self, body: dict) -> int:
        """Number of cache breakpoints in the body."""
        return 0

    def exceeds_cache_cap(self, body: dict, markers_before: int) -> bool:
        """True if the body now holds more cache breakpoints than the
        provider accepts and more than it arrived with.
        """
        after = self.count_cache_markers(body)
        return after > self.max_cache_markers and after > markers_before

    def starts_turn(self, data: list, container_index: int) -> bool:
        """True if the assistant container at the index opens a new step."""
        return True

    def accepts_text(self, container: dict) -> bool:
        """True if text can be appended to this container."""
        return True

    # ------------------------------------------------------------------
    # Key assignment
    # ------------------------------------------------------------------

    def _normalize_id(self, native_id: str) -> str:
        return native_id

    def _positional_key(self, container_index: int, ordinal: int) -> str:
        return f"{self.name}:{container_index}:{ordinal}"

    def _iter_call_refs(self, data: list) -> Iterator[tuple[ToolCallRef | None, RawCall, int]]:
        """Yield (ref, raw, container_index) for each call.

        ``ref`` is None when the arguments payload could not be parsed.
        """
        turn = 0
        for ci, container in enumerate(data):
            if not isinstance(container, dict):
                continue
            if not self.is_assistant(container):
                continue
            if self.starts_turn(data, ci):
                turn += 1
            for ordinal, raw in enumerate(self.read_calls(container)):
                key = self._call_key(raw, ci, ordinal)
                try:
                    params = parse_arguments(raw.arguments)
                except (ValueError, TypeError) as exc:
                    logger.debug(
                        "%s: skipping malformed arguments for %s (%s)",
                        self.name, raw.tool_name, exc,
                    )
                    yield None, raw, ci
                    continue
                yield (
                    ToolCallRef(
                        key=key,
                        tool_name=raw.tool_name,
                        parameters=params,
                        container_index=ci,
                        block_index=raw.block_index,
                        turn=turn,
                    ),
                    raw,
                    ci,
                )

    def _call_key(self, raw: RawCall, container_index: int, ordinal: int) -> str:
        if self.positional or not raw.native_id:
            return self._positional_key(container_index, ordinal)
        return self._normalize_id(raw.native_id)

    def is_positional_key(self, key: str) -> bool:
        """True if ``key`` was derived from list position, not a native id."""
        return key.startswith(f"{self.name}:")

    def still_matches(self, ref: ToolCallRef, record: ToolInvocationRecord) -> bool:
        """True if the live call at ``ref`` is the call ``record`` was made for.

        Native ids always match.  A positional key moves to another call
        when history before it is dropped, so the tool name and arguments
        must agree; arguments already collapsed by an input prune still
        match their original.
        """
        if not self.is_positional_key(ref.key):
            return True
        if ref.tool_name != record.tool_name:
            return False
        if ref.parameters == record.parameters:
            return True
        return set(ref.parameters) == set(record.parameters) and all(
            value == record.parameters[name] or value == PRUNED_INPUT_PLACEHOLDER
            for name, value in ref.parameters.items()
        )

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def iter_tool_calls(self, data: list) -> list[ToolCallRef]:
        """All well-formed tool calls in order of appearance."""
        return [ref for ref, _raw, _ci in self._iter_call_refs(data) if ref is not None]

    def count_turns(self, data: list) -> int:
        """Number of assistant steps in the data array."""
        return sum(
            1 for ci, c in enumerate(data)
            if isinstance(c, dict) and self.is_assistant(c) and self.starts_turn(data, ci)
        )

    def extract_tool_outputs(self, data: list) -> list[ToolOutput]:
        """Ordered list of every tool result with its correlation key."""
        names = {ref.key: ref.tool_name for ref in self.iter_tool_calls(data)}
        outputs: list[ToolOutput] = []
        for ci, container in enumerate(data):
            if not isinstance(container, dict):
                continue
            for raw in self.read_outputs(container):
                if not raw.native_id:
                    continue
                key = self._normalize_id(raw.native_id)
                outputs.append(
                    ToolOutput(
                        key=key,
                        tool_name=names.get(key, raw.tool_name),
                        container_index=ci,
                        block_index=raw.block_index,
                        size=serialized_size(raw.content),
                        is_error=raw.is_error,
                    )
                )
        return outputs

    def has_tool_outputs(self, data: list) -> bool:
        return bool(self.extract_tool_outputs(data))

    def cache_tool_parameters(
        self,
        data: list,
        state: ConversationState,
        *,
        turn_offset: int = 0,
    ) -> list[str]:
        """Record every tool call in the data into ``state.invocations``.

        Existing records keep their turn index; status is refreshed from
        the results present.  Malformed argument payloads are skipped.

        Returns:
            Correlation keys of the calls found, in order.
        """
        outputs = {o.key: o for o in self.extract_tool_outputs(data)}
        keys: list[str] = []
        for ref in self.iter_tool_calls(data):
            output = outputs.get(ref.key)
            if output is None:
                status = ToolStatus.PENDING
            elif output.is_error:
                status = ToolStatus.ERROR
            else:
                status = ToolStatus.COMPLETED
            record = state.invocations.get(ref.key)
            if record is not None and not self.still_matches(ref, record):
                logger.warning(
                    "%s: %s now holds %s, not the cached %s; dropping its mark",
                    self.name, ref.key, ref.tool_name, record.tool_name,
                )
                state.forget(ref.key)
                record = None
            if record is None:
                record = ToolInvocationRecord(
                    correlation_key=ref.key,
                    tool_name=ref.tool_name,
                    parameters=ref.parameters,
                    status=status,
                    turn_index=ref.turn + turn_offset,
                )
                state.invocations[ref.key] = record
                logger.debug(
                    "%s: cached %s (%s) at turn %d",
                    self.name, ref.key, ref.tool_name, record.turn_index,
                )
            else:
                # RUNNING is host-provided; only a result overrides it.
                if output is not None or record.status != ToolStatus.RUNNING:
                    record.status = status
                if record.correlation_key not in state.pruned:
                    record.parameters = ref.parameters
            keys.append(ref.key)
        return keys

    def resolve_pairs(self, data: list, keys: list[str]) -> dict[str, ToolPair | PairingError]:
        """Resolve many keys against one scan of the data array.

        Each key maps to its ToolPair, or to the PairingError explaining
        why it cannot be rewritten.
        """
        wanted = set(keys)
        calls: dict[str, list[ToolCallRef]] = {}
        for ref in self.iter_tool_calls(data):
            if ref.key in wanted:
                calls.setdefault(ref.key, []).append(ref)
        outputs: dict[str, list[ToolOutput]] = {}
        for out in self.extract_tool_outputs(data):
            if out.key in wanted:
                outputs.setdefault(out.key, []).append(out)

        resolved: dict[str, ToolPair | PairingError] = {}
        for key in keys:
            found_calls = calls.get(key, [])
            found_outputs = outputs.get(key, [])
            if not found_calls:
                resolved[key] = PairingError(key, "tool call not found")
            elif len(found_calls) > 1:
                resolved[key] = PairingError(key, f"{len(found_calls)} calls share this key")
            elif not found_outputs:
                resolved[key] = PairingError(key, "tool result not found")
            elif len(found_outputs) > 1:
                resolved[key] = PairingError(key, f"{len(found_outputs)} results share this key")
            else:
                resolved[key] = ToolPair(call=found_calls[0], output=found_outputs[0])
        return resolved

    def locate_pair(self, data: list, key: str) -> ToolPair:
        """Resolve both halves of the invocation at ``key``.

        Raises:
            PairingError: If either half is missing or ambiguous.
        """
        resolved = self.resolve_pairs(data, [key])[key]
        if isinstance(resolved, PairingError):
            raise resolved
        return resolved

    def replace_tool_output(self, data: list, key: str, text: str) -> bool:
        """Replace the result content at ``key``. Returns True if replaced.

        The paired call must resolve too; otherwise nothing is written.
        """
        try:
            pair = self.locate_pair(data, key)
        except PairingError as exc:
            logger.warning("%s: refusing output rewrite: %s", self.name, exc)
            return False
        return self.apply_pair_rewrite(data, pair, output_text=text)

    def replace_tool_input(self, data: list, key: str, parameters: dict) -> bool:
        """Replace the call arguments at ``key``. Returns True if replaced."""
        try:
            pair = self.locate_pair(data, key)
        except PairingError as exc:
            logger.warning("%s: refusing input rewrite: %s", self.name, exc)
            return False
        return self.apply_pair_rewrite(data, pair, input_parameters=parameters)

    def apply_pair_rewrite(
        self,
        data: list,
        pair: ToolPair,
        *,
        output_text: str | None = None,
        input_parameters: dict | None = None,
    ) -> bool:
        """Write new content into a resolved pair, all-or-nothing.

        Both containers are rebuilt first and swapped into ``data`` only
        after every write succeeded.

        Returns:
            True if either side's content changed.
        """
        ci_call = pair.call.container_index
        ci_out = pair.output.container_index
        staged: dict[int, dict] = {ci_call: data[ci_call], ci_out: data[ci_out]}

        if output_text is not None:
            staged[ci_out] = self.write_output(staged[ci_out], pair.output.block_index, output_text)
        if input_parameters is not None:
            staged[ci_call] = self.write_input(staged[ci_call], pair.call.block_index, input_parameters)

        changed = False
        for ci, container in staged.items():
            if container != data[ci]:
                data[ci] = container
                changed = True
        return changed

    def inject_auxiliary_content(
        self,
        data: list,
        text: str,
        *,
        as_assistant: bool = False,
    ) -> bool:
        """Append an instructional block the user never sees.

        By default the text is appended to the last user turn.  With
        ``as_assistant`` (provider routing that rejects trailing user
        text) it goes into a synthetic assistant turn at the end, unless
        the format itself cannot end on an assistant turn.
        """
        if not text:
            return False
        if as_assistant and self.supports_trailing_assistant:
            if data and isinstance(data[-1], dict) and self.is_assistant(data[-1]) \
                    and self.accepts_text(data[-1]) and not self.read_calls(data[-1]):
                data[-1] = self.append_assistant_text(data[-1], text)
            else:
                data.append(self.new_assistant_turn(text))
            return True
        for ci in range(len(data) - 1, -1, -1):
            container = data[ci]
            if isinstance(container, dict) and self.is_user(container):
                data[ci] = self.append_user_text(container, text)
                return True
        data.append(self.new_user_turn(text))
        return True
