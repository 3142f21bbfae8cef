"""cbo-stat-dump CLI: capture and replay planner statistics.

Usage: cbo-stat-dump <command> [options]
"""

from __future__ import annotations

import click


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-essential output.")
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool) -> None:
    """Dump PostgreSQL / YugabyteDB optimizer statistics as replayable SQL."""
    import logging

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(message)s")
    elif quiet:
        logging.basicConfig(level=logging.WARNING)
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")


# --- Lazy command registration ---

def _register_commands() -> None:
    """Import and register all sub-commands."""
    from .cmd_dump import dump
    from .cmd_benchmark import benchmark

    main.add_command(dump)
    main.add_command(benchmark)


_register_commands()
