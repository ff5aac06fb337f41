"""Pruning summaries shown to the user.

Two levels: ``minimal`` is one line with the savings of the cycle and
the session; ``detailed`` adds the pruned calls grouped by tool.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shears.formatting import extract_parameter_key, format_token_count

if TYPE_CHECKING:
    from shears.models.invocation import ToolInvocationRecord
    from shears.models.state import SessionStats

PREFIX = "🧹 shears"


@dataclass
class PruneSummary:
    """One notification's worth of pruning activity.

    Fields:
        tokens_saved: Tokens saved in this cycle.
        records: Records pruned in this cycle, in order.
        unknown: Keys pruned whose metadata was no longer cached.
        label: Heading for the detailed listing (who pruned).
    """

    tokens_saved: int
    records: list[ToolInvocationRecord] = field(default_factory=list)
    unknown: int = 0
    label: str = "Pruned"

    @property
    def count(self) -> int:
        return len(self.records) + self.unknown


def _session_suffix(stats: SessionStats | None, cycle_count: int) -> str:
    if stats is None or stats.prune_count <= cycle_count:
        return ""
    return f" │ session: ~{format_token_count(stats.tokens_saved)}, {stats.prune_count} tools"


def build_minimal(summary: PruneSummary, stats: SessionStats | None = None) -> str:
    noun = "tool" if summary.count == 1 else "tools"
    line = f"{PREFIX}: ~{format_token_count(summary.tokens_saved)} saved ({summary.count} {noun})"
    return line + _session_suffix(stats, summary.count)


def build_detailed(
    summary: PruneSummary,
    stats: SessionStats | None = None,
    working_directory: str | None = None,
) -> str:
    lines = [build_minimal(summary, stats), "", f"{summary.label} ({summary.count}):"]
    grouped: OrderedDict[str, list[str]] = OrderedDict()
    for record in summary.records:
        key = extract_parameter_key(record.tool_name, record.parameters, working_directory)
        grouped.setdefault(record.tool_name, []).append(key)
    for tool_name, keys in grouped.items():
        lines.append(f"  {tool_name} ({len(keys)}):")
        lines.extend(f"    {key}" for key in keys if key)
    if summary.unknown:
        noun = "tool" if summary.unknown == 1 else "tools"
        lines.append(f"  ({summary.unknown} {noun} with unknown metadata)")
    return "\n".join(lines)


def build_message(
    level: str,
    summary: PruneSummary,
    stats: SessionStats | None = None,
    working_directory: str | None = None,
) -> str | None:
    """Render a summary for ``level`` ('off' and empty summaries give None)."""
    if level == "off" or summary.count == 0:
        return None
    if level == "minimal":
        return build_minimal(summary, stats)
    return build_detailed(summary, stats, working_directory)
