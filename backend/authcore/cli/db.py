"""Flask CLI commands for schema management."""

from __future__ import annotations

import click
from flask import current_app
from flask.cli import with_appcontext

from authcore.core.extensions import db


@click.group("db")
def db_cli() -> None:
    """Database schema commands."""


@db_cli.command("init")
@with_appcontext
def init_command() -> None:
    """Create every table that does not exist yet."""
    db.create_all()
    click.echo("Schema ready.")


@db_cli.command("drop")
@click.option("--yes", is_flag=True, help="Skip the destructive confirmation prompt.")
@with_appcontext
def drop_command(yes: bool) -> None:
    """Drop every table (non-production only)."""
    if str(current_app.config.get("APP_ENV", "")).lower() == "production":
        raise click.UsageError("'flask db drop' is restricted to non-production environments.")
    if not yes:
        click.confirm("This will DROP all tables. Continue?", abort=True)
    db.session.remove()
    db.drop_all()
    click.echo("Schema dropped.")
