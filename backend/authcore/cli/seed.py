"""Flask CLI commands for idempotent database seeding."""

from __future__ import annotations

import logging

import click
from flask import current_app
from flask.cli import with_appcontext

from authcore.container import get_services
from authcore.seeds import seed_data
from authcore.services._shared.errors import ServiceError

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    """Raise logging verbosity for seed modules when requested."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.getLogger(seed_data.__name__).setLevel(level)
    LOGGER.setLevel(level)


def _echo_summary(summary: dict[str, dict[str, int]]) -> None:
    """Pretty-print a tabular summary of seed results."""
    click.echo("Seed summary:")
    if not summary:
        click.echo("  (no changes)")
        return
    width = max(len(name) for name in summary)
    for table, counters in sorted(summary.items()):
        created = counters.get("created", 0)
        existing = counters.get("existing", 0)
        click.echo(f"  {table.ljust(width)}  created={created:>2}  existing={existing:>2}")


@click.group("seed")
@click.option("--verbose", is_flag=True, help="Enable verbose logging for seeding.")
@click.pass_context
def seed_cli(ctx: click.Context, verbose: bool) -> None:
    """Collection of database seeding commands."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _configure_logging(verbose)


@seed_cli.command("run")
@click.pass_context
@with_appcontext
def run_command(ctx: click.Context) -> None:
    """Seed default roles and the bootstrap administrator."""
    verbose = bool(ctx.obj.get("verbose", False))
    try:
        summary = seed_data.run_all(get_services(), current_app.config, verbose=verbose)
    except (ServiceError, RuntimeError) as exc:
        raise click.ClickException(f"Seeding failed: {exc}") from exc
    _echo_summary(summary)
