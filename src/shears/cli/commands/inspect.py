"""shears inspect -- show the tool calls in a request body."""

from __future__ import annotations

import copy
import json

import click

from shears.cli.formatting import format_error, format_tool_table, get_console


@click.command(name="inspect")
@click.argument("body_file", type=click.File("r", encoding="utf-8"))
@click.option("--conversation", "conversation_id", default="inspect", help="Conversation id to use.")
@click.option("--provider", "provider_id", default=None, help="Provider id (selects overrides).")
@click.option("--config-dir", default=None, type=click.Path(file_okay=False), help="Project directory for config lookup.")
@click.option("--expect-format", "format_name", default=None, help="Fail unless the body is in this wire format.")
@click.option("--prune", is_flag=True, help="Run the automatic strategies and show the result.")
@click.option("--output", type=click.File("w", encoding="utf-8"), default=None, help="Write the pruned body here.")
def inspect_body(
    body_file,  # type: ignore[no-untyped-def]
    conversation_id: str,
    provider_id: str | None,
    config_dir: str | None,
    format_name: str | None,
    prune: bool,
    output,  # type: ignore[no-untyped-def]
) -> None:
    """Detect BODY_FILE's wire format and list its tool calls with canonical ids."""
    from shears.engine.pruner import ContextPruner
    from shears.engine.rewrite import output_sizes
    from shears.engine.tokens import CharTokenCounter
    from shears.exceptions import ShearsError
    from shears.formats import detect_format, get_format
    from shears.models.config import load_config

    console = get_console()
    try:
        body = json.load(body_file)
    except json.JSONDecodeError as e:
        format_error(f"Not valid JSON: {e}", console)
        raise SystemExit(1) from None

    fmt = detect_format(body)
    if fmt is None:
        format_error("Unrecognized request body format.", console)
        raise SystemExit(1)
    if format_name:
        try:
            expected = get_format(format_name)
        except ShearsError as e:
            format_error(str(e), console)
            raise SystemExit(1) from None
        if expected is not fmt:
            format_error(f"Body is {fmt.name}, not {expected.name}.", console)
            raise SystemExit(1)

    try:
        config = load_config(config_dir) if config_dir else load_config(paths=[])
    except ShearsError as e:
        format_error(str(e), console)
        raise SystemExit(1) from None

    body = copy.deepcopy(body)
    if not prune:
        # Listing only: strategies off, so nothing gets marked.
        config = config.model_copy(deep=True)
        for name in ("deduplication", "supersede_writes", "purge_errors"):
            getattr(config.strategies, name).enabled = False
        config.tools.pinning_mode.enabled = False
    pruner = ContextPruner(config, token_counter=CharTokenCounter(), working_directory=config_dir)

    result = pruner.transform(body, conversation_id, provider_id)
    state = pruner.state(conversation_id)
    data = fmt.get_data_array(body) or []
    live_keys = result.sync.live_keys if result.sync else []

    console.print(
        f"[bold]Format:[/bold] {fmt.name}  [bold]Turns:[/bold] {state.turn_counter}  "
        f"[bold]Calls:[/bold] {len(live_keys)}"
    )
    format_tool_table(
        state, live_keys, pruner.prunable(conversation_id), output_sizes(fmt, data), console,
        working_directory=config_dir,
    )
    if prune and result.rewrite is not None:
        console.print(
            f"Pruned {len(result.rewrite.rewritten)} tool(s), "
            f"~{result.rewrite.tokens_saved} tokens saved"
        )
    for error in result.errors:
        format_error(error, console)
    if output is not None:
        json.dump(body, output, ensure_ascii=False, indent=2)
