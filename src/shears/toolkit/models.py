"""Toolkit data models for the directed pruning tools.

ToolDefinition renders itself in each supported wire format's tool
declaration shape; ToolResult is what the executor hands back to the
model.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

# Formats that declare tools with the OpenAI chat "function" wrapper.
_CHAT_FUNCTION_FORMATS = frozenset({"openai-chat", "openai-compatible", "mistral", "cohere"})


@dataclass(frozen=True)
class ToolDefinition:
    """One directed tool as offered to the model.

    Attributes:
        name: "discard", "extract" or "pin".
        description: When the model should call the tool.
        parameters: JSON Schema of the arguments.
        handler: Bound callable that performs the prune.
    """

    name: str
    description: str
    parameters: dict
    handler: Callable[..., object]

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_openai_responses(self) -> dict:
        # The Responses API flattens the function wrapper.
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def to_anthropic(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }

    def to_gemini(self) -> dict:
        """A ``functionDeclarations`` entry."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def to_bedrock(self) -> dict:
        """A Converse ``toolConfig.tools`` entry."""
        return {
            "toolSpec": {
                "name": self.name,
                "description": self.description,
                "inputSchema": {"json": self.parameters},
            },
        }

    def to_format(self, format_name: str) -> dict:
        """Declaration for a wire format name (as in ``FormatDescriptor.name``).

        Raises:
            ValueError: For an unknown format name.
        """
        if format_name in _CHAT_FUNCTION_FORMATS:
            return self.to_openai()
        renderers = {
            "openai-responses": self.to_openai_responses,
            "anthropic": self.to_anthropic,
            "gemini": self.to_gemini,
            "bedrock": self.to_bedrock,
        }
        try:
            return renderers[format_name]()
        except KeyError:
            raise ValueError(f"No tool declaration shape for format {format_name!r}") from None


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one directed tool call.

    Attributes:
        tool_name: Name of the tool that was executed.
        success: Whether the prune was applied.
        output: Confirmation text on success.
        error: Error message on failure, returned to the model so it can
            retry with current ids.
    """

    tool_name: str
    success: bool
    output: str = ""
    error: str = ""

    @property
    def text(self) -> str:
        return self.output if self.success else self.error

    def to_dict(self) -> dict:
        return {"tool": self.tool_name, "success": self.success, "text": self.text}
