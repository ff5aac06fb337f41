"""Text injected into the conversation or returned to the model.

Provides the placeholder strings written over pruned content, the
``<prunable-tools>`` list wrapper, nudge / cooldown / auto-prune
warning blocks, and the system prompt describing the directed tools.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shears.models.config import PrunerConfig

# ---------------------------------------------------------------------------
# Replacement text
# ---------------------------------------------------------------------------

PRUNED_OUTPUT_PLACEHOLDER: str = (
    "[Output removed to save context - information superseded or no longer needed]"
)

PRUNED_INPUT_PLACEHOLDER: str = "[input removed to save context]"

TRUNCATION_MESSAGE: str = (
    "[TOOL RESULT TRUNCATED - Context limit exceeded. Original output was too large "
    "and has been truncated. Re-run this tool if you need the full output.]"
)

# ---------------------------------------------------------------------------
# Prunable list
# ---------------------------------------------------------------------------

PRUNABLE_LIST_HEADER: str = (
    "The following tools have been invoked and are available for pruning. "
    "This list does not mandate immediate action. Consider your current goals "
    "and the resources you need before discarding valuable tool inputs or outputs. "
    "Consolidate your prunes for efficiency; it is rarely worth pruning a single "
    "tiny tool output. Keep the context free of noise."
)


def wrap_prunable_tools(lines: list[str]) -> str:
    body = "\n".join(lines)
    return f"<prunable-tools>\n{PRUNABLE_LIST_HEADER}\n{body}\n</prunable-tools>"


def pinned_suffix(turns_remaining: int) -> str:
    return f" [PINNED, expires in {turns_remaining} turn(s)]"


def _directed_tool_phrase(config: PrunerConfig) -> str:
    tools = config.tools
    if tools.pin.enabled:
        return "pin or extract tools" if tools.extract.enabled else "pin tool"
    if tools.discard.enabled and tools.extract.enabled:
        return "discard or extract tools"
    if tools.discard.enabled:
        return "discard tool"
    return "extract tool"


def cooldown_message(config: PrunerConfig) -> str:
    """Shown instead of the list directly after a directed prune."""
    return (
        "<prunable-tools>\n"
        f"Context management was just performed. Do not use the {_directed_tool_phrase(config)} "
        "again. A fresh list will be available after your next tool use.\n"
        "</prunable-tools>"
    )


# ---------------------------------------------------------------------------
# Nudge
# ---------------------------------------------------------------------------

_NUDGE_BOTH: str = (
    "<instruction name=context_management_required>\n"
    "Several tool results have accumulated since you last managed context. "
    "Review the prunable list: use `discard` for outputs that are noise or whose task "
    "is complete, and `extract` to keep only the facts you still need from large outputs.\n"
    "</instruction>"
)

_NUDGE_DISCARD: str = (
    "<instruction name=context_management_required>\n"
    "Several tool results have accumulated since you last managed context. "
    "Review the prunable list and use `discard` for outputs that are noise "
    "or whose task is complete.\n"
    "</instruction>"
)

_NUDGE_EXTRACT: str = (
    "<instruction name=context_management_required>\n"
    "Several tool results have accumulated since you last managed context. "
    "Review the prunable list and use `extract` to distill large outputs "
    "down to the facts you still need.\n"
    "</instruction>"
)


def nudge_message(config: PrunerConfig) -> str:
    """Nudge variant matching the enabled tools ('' when none fits)."""
    discard = config.tools.discard.enabled
    extract = config.tools.extract.enabled
    if discard and extract:
        return _NUDGE_BOTH
    if discard:
        return _NUDGE_DISCARD
    if extract:
        return _NUDGE_EXTRACT
    return ""


def auto_prune_warning(turns: int, pinned: int) -> str:
    return (
        "<auto-prune-warning>\n"
        f"Auto-prune in {turns} turn(s). All unpinned tool outputs will be discarded.\n"
        f"Currently {pinned} tool(s) pinned. Use the `pin` tool NOW to preserve any context you need.\n"
        "</auto-prune-warning>"
    )


# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

SYSTEM_PROMPT_INTRO: str = (
    "You operate in a context-constrained environment. Tool outputs stay in your "
    "context until you remove them. A <prunable-tools> list, refreshed after each "
    "tool use, shows every tool output you may remove, each prefixed by a numeric id."
)

_SYSTEM_DISCARD: str = (
    "- `discard(ids, reason)`: remove outputs that are noise or belong to finished work. "
    "Reason is `noise` or `completion`."
)

_SYSTEM_EXTRACT: str = (
    "- `extract(ids, distillation)`: replace each output with your own summary. "
    "`distillation[i]` replaces output `ids[i]`; both lists must have the same length."
)

_SYSTEM_PIN: str = (
    "- `pin(ids, duration_turns)`: protect outputs you still need from automatic pruning "
    "for a number of turns."
)


def system_prompt(config: PrunerConfig) -> str:
    """Instructions for the enabled directed tools ('' when none is enabled)."""
    lines: list[str] = []
    if config.tools.discard.enabled:
        lines.append(_SYSTEM_DISCARD)
    if config.tools.extract.enabled:
        lines.append(_SYSTEM_EXTRACT)
    if config.tools.pin.enabled:
        lines.append(_SYSTEM_PIN)
    if not lines:
        return ""
    footer = "Only use ids from the latest list. Batch removals instead of pruning one tiny output at a time."
    return "\n".join([SYSTEM_PROMPT_INTRO, "", *lines, "", footer])
