"""Rich formatting helpers for the shears CLI.

Rich auto-detects TTY and degrades gracefully when piped (no ANSI codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shears.formatting import extract_parameter_key, format_token_count

if TYPE_CHECKING:
    from shears.models.state import ConversationState
    from shears.state.correlation import CanonicalIndex
    from shears.storage.schema import ConversationStateRow


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {message}", highlight=False)


def format_tool_table(
    state: ConversationState,
    live_keys: list[str],
    index: CanonicalIndex,
    sizes: dict[str, int],
    console: Console,
    working_directory: str | None = None,
) -> None:
    """One row per live tool call, with its canonical id if prunable."""
    if not live_keys:
        console.print("[dim]No tool calls.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("ID", style="yellow", justify="right")
    table.add_column("Turn", style="dim", justify="right")
    table.add_column("Tool", style="cyan")
    table.add_column("Key")
    table.add_column("Status")
    table.add_column("Size", justify="right", style="green")
    table.add_column("Pruned", style="magenta")

    for key in live_keys:
        record = state.invocations.get(key)
        if record is None:
            continue
        mark = state.pruned.get(key)
        pruned = f"{mark.reason} ({mark.target})" if mark else ""
        if state.is_pinned(key):
            pruned = f"pinned until turn {state.pins[key]}"
        table.add_row(
            index.id_for(key) or "-",
            str(record.turn_index),
            escape(record.tool_name),
            escape(extract_parameter_key(record.tool_name, record.parameters, working_directory)),
            str(record.status),
            str(sizes.get(key, "")),
            pruned,
        )
    console.print(table)


def format_state_rows(rows: list[ConversationStateRow], console: Console) -> None:
    """Summary table of persisted conversations."""
    if not rows:
        console.print("[dim]No stored conversations.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Conversation", style="yellow")
    table.add_column("Updated", style="dim")
    table.add_column("Turns", justify="right")
    table.add_column("Saved", justify="right", style="green")
    table.add_column("Prunes", justify="right")
    for row in rows:
        table.add_row(
            escape(row.conversation_id),
            row.updated_at.strftime("%Y-%m-%d %H:%M"),
            str(row.turn_counter),
            format_token_count(row.tokens_saved),
            str(row.prune_count),
        )
    console.print(table)


def format_state_detail(state: ConversationState, console: Console) -> None:
    """Savings and mark breakdown for one conversation."""
    stats = state.stats
    console.print(f"[bold]Conversation:[/bold] {escape(state.conversation_id)}")
    console.print(f"  Turn:         {state.turn_counter}")
    console.print(f"  Tokens saved: [green]{format_token_count(stats.tokens_saved)}[/green]")
    console.print(f"  Chars saved:  {stats.bytes_saved}")
    console.print(f"  Prunes:       {stats.prune_count}")
    console.print(f"  Cached calls: {len(state.invocations)}")
    console.print(f"  Pins:         {len(state.pins)}")
    if state.is_sub_agent:
        console.print("  [dim]sub-agent session[/dim]")

    by_reason: dict[str, int] = {}
    for mark in state.pruned.values():
        by_reason[str(mark.reason)] = by_reason.get(str(mark.reason), 0) + 1
    if by_reason:
        table = Table(title="Marks", show_header=True, header_style="bold")
        table.add_column("Reason", style="magenta")
        table.add_column("Count", justify="right")
        for reason, count in sorted(by_reason.items()):
            table.add_row(reason, str(count))
        console.print(table)
