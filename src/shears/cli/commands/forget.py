"""shears forget -- delete a conversation's persisted state."""

from __future__ import annotations

import click

from shears.cli import db_option
from shears.cli.formatting import format_error


@click.command()
@db_option
@click.argument("conversation_id")
def forget(db: str, conversation_id: str) -> None:
    """Delete the stored state for CONVERSATION_ID."""
    from shears.cli import _store_session

    with _store_session(db) as (store, console):
        if not store.evict(conversation_id):
            format_error(f"No stored state for conversation {conversation_id!r}.", console)
            raise SystemExit(1)
        console.print(f"Forgot conversation [yellow]{conversation_id}[/yellow].")
