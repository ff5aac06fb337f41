"""Shears CLI -- operator tooling for the context pruner.

This module is NEVER imported from shears/__init__.py.
It is only loaded via the ``shears`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import TYPE_CHECKING

import click

from shears._version import __version__
from shears.cli.formatting import format_error, get_console

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.console import Console

    from shears.state.store import StateStore

DEFAULT_DB = ".shears.db"


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log engine decisions to stderr.")
@click.version_option(__version__, prog_name="shears")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Shears: dynamic context pruning for LLM conversations."""
    ctx.ensure_object(dict)
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def db_option(func):  # type: ignore[no-untyped-def]
    return click.option(
        "--db",
        default=DEFAULT_DB,
        envvar="SHEARS_DB",
        show_default=True,
        help="Path to the shears state database.",
    )(func)


@contextmanager
def _store_session(db_path: str) -> Iterator[tuple[StateStore, Console]]:
    """Open a StateStore on an existing database, yield (store, console).

    Disposes the engine on exit and formats exceptions as CLI errors.
    """
    from shears.state.store import StateStore
    from shears.storage.engine import open_database

    console = get_console()
    if not os.path.exists(db_path):
        format_error(f"Database not found: {db_path}", console)
        raise SystemExit(1)
    try:
        engine, session_factory = open_database(db_path)
        try:
            yield StateStore(session_factory), console
        finally:
            engine.dispose()
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None


# Register subcommands after cli group is defined
from shears.cli.commands.forget import forget  # noqa: E402
from shears.cli.commands.inspect import inspect_body  # noqa: E402
from shears.cli.commands.limit import limit  # noqa: E402
from shears.cli.commands.stats import stats  # noqa: E402

cli.add_command(inspect_body)
cli.add_command(stats)
cli.add_command(limit)
cli.add_command(forget)
