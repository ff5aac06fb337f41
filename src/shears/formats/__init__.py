"""Wire format descriptors -- one per provider request layout.

``detect_format`` walks the registry in order and returns the first
descriptor whose ``detect`` accepts the body.  Order matters: the more
specific layouts are tried before the generic chat fallback.
"""

from __future__ import annotations

import logging

from shears.exceptions import FormatError
from shears.formats.anthropic import AnthropicFormat
from shears.formats.base import (
    FormatDescriptor,
    RawCall,
    RawOutput,
    ToolCallRef,
    ToolOutput,
    ToolPair,
    parse_arguments,
    serialized_size,
)
from shears.formats.bedrock import BedrockFormat
from shears.formats.gemini import GeminiFormat
from shears.formats.openai_chat import (
    CohereFormat,
    MistralFormat,
    OpenAIChatFormat,
    OpenAICompatibleFormat,
)
from shears.formats.openai_responses import OpenAIResponsesFormat

logger = logging.getLogger(__name__)

FORMATS: tuple[FormatDescriptor, ...] = (
    BedrockFormat(),
    GeminiFormat(),
    OpenAIResponsesFormat(),
    AnthropicFormat(),
    CohereFormat(),
    MistralFormat(),
    OpenAIChatFormat(),
    OpenAICompatibleFormat(),
)


def detect_format(body: object) -> FormatDescriptor | None:
    """Return the descriptor for a request body, or None if unrecognized."""
    if not isinstance(body, dict):
        return None
    for descriptor in FORMATS:
        if descriptor.detect(body):
            return descriptor
    logger.debug("No wire format matched body with keys %s", sorted(body))
    return None


def get_format(name: str) -> FormatDescriptor:
    """Look up a descriptor by name.

    Raises:
        FormatError: If no descriptor has that name.
    """
    for descriptor in FORMATS:
        if descriptor.name == name:
            return descriptor
    known = ", ".join(d.name for d in FORMATS)
    raise FormatError(f"Unknown format {name!r} (known: {known})")


__all__ = [
    "FORMATS",
    "AnthropicFormat",
    "BedrockFormat",
    "CohereFormat",
    "FormatDescriptor",
    "GeminiFormat",
    "MistralFormat",
    "OpenAIChatFormat",
    "OpenAICompatibleFormat",
    "OpenAIResponsesFormat",
    "RawCall",
    "RawOutput",
    "ToolCallRef",
    "ToolOutput",
    "ToolPair",
    "detect_format",
    "get_format",
    "parse_arguments",
    "serialized_size",
]
