"""shears stats -- show persisted savings."""

from __future__ import annotations

import click

from shears.cli import db_option
from shears.cli.formatting import format_error, format_state_detail, format_state_rows


@click.command()
@db_option
@click.argument("conversation_id", required=False)
def stats(db: str, conversation_id: str | None) -> None:
    """List stored conversations, or show one in detail."""
    from shears.cli import _store_session

    with _store_session(db) as (store, console):
        if conversation_id is None:
            format_state_rows(store.list_persisted(), console)
            return
        state = store.load(conversation_id)
        if state is None:
            format_error(f"No stored state for conversation {conversation_id!r}.", console)
            raise SystemExit(1)
        format_state_detail(state, console)
