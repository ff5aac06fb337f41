"""Tool definitions for the directed pruning tools.

Each definition carries a JSON Schema for its arguments and a handler
lambda bound to one pruner and one conversation.  Handler lambdas use
explicit parameter whitelisting (no ``**kwargs`` passthrough) so
hallucinated arguments fail instead of being ignored.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shears.toolkit.models import ToolDefinition

if TYPE_CHECKING:
    from shears.engine.pruner import ContextPruner
    from shears.models.config import PrunerConfig

logger = logging.getLogger(__name__)

_IDS_SCHEMA = {
    "type": "array",
    "items": {"type": "string"},
    "minItems": 1,
    "description": "Numeric ids from the latest <prunable-tools> list.",
}


def get_all_tools(pruner: ContextPruner, conversation_id: str) -> list[ToolDefinition]:
    """Build definitions for every directed tool, enabled or not.

    Each call returns fresh lambdas bound to ``pruner`` and
    ``conversation_id``.
    """
    return [
        ToolDefinition(
            name="discard",
            description=(
                "Remove tool outputs from your context. Use this for outputs that are "
                "noise (irrelevant, failed, or superseded) or that belong to a task you "
                "have completed. Only ids from the latest <prunable-tools> list are valid."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "ids": _IDS_SCHEMA,
                    "reason": {
                        "type": "string",
                        "enum": ["noise", "completion"],
                        "description": "'noise' for useless output, 'completion' for finished work.",
                    },
                },
                "required": ["ids", "reason"],
            },
            handler=lambda ids, reason: pruner.discard(conversation_id, ids, reason),
        ),
        ToolDefinition(
            name="extract",
            description=(
                "Replace large tool outputs with your own distilled summary, keeping only "
                "the facts you still need. distillation[i] replaces the output of ids[i]; "
                "both lists must have the same length."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "ids": _IDS_SCHEMA,
                    "distillation": {
                        "type": "array",
                        "items": {"type": "string"},
                        "minItems": 1,
                        "description": "One summary per id, in the same order.",
                    },
                },
                "required": ["ids", "distillation"],
            },
            handler=lambda ids, distillation: pruner.extract(conversation_id, ids, distillation),
        ),
        ToolDefinition(
            name="pin",
            description=(
                "Protect tool outputs you still need from automatic pruning for a number "
                "of turns. Unpinned outputs are discarded at each auto-prune cycle."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "ids": _IDS_SCHEMA,
                    "duration_turns": {
                        "type": "integer",
                        "minimum": 1,
                        "description": "Turns to keep the pin. Defaults to the configured pin length.",
                    },
                },
                "required": ["ids"],
            },
            handler=lambda ids, duration_turns=None: pruner.pin(conversation_id, ids, duration_turns),
        ),
    ]


def get_enabled_tools(
    pruner: ContextPruner,
    conversation_id: str,
    config: PrunerConfig | None = None,
) -> list[ToolDefinition]:
    """Definitions for the tools enabled in ``config`` (the pruner's by default)."""
    config = config or pruner.config
    return [t for t in get_all_tools(pruner, conversation_id) if getattr(config.tools, t.name).enabled]
