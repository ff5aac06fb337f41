"""shears limit -- show the inferred context window of a model."""

from __future__ import annotations

import click

from shears.cli.formatting import get_console


@click.command()
@click.argument("model_id")
@click.option("--threshold", type=float, default=None, help="Also show the token count at this usage ratio.")
def limit(model_id: str, threshold: float | None) -> None:
    """Print the context limit compaction would assume for MODEL_ID."""
    from shears.compaction.model_limits import infer_context_limit

    console = get_console()
    context_limit = infer_context_limit(model_id)
    console.print(f"{model_id}: [green]{context_limit:,}[/green] tokens", highlight=False)
    if threshold is not None:
        console.print(f"  at {threshold:.2f}: {int(context_limit * threshold):,} tokens", highlight=False)
