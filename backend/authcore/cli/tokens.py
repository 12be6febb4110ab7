"""Flask CLI commands for refresh token housekeeping."""

from __future__ import annotations

from datetime import timedelta

import click
from flask.cli import with_appcontext

from authcore.container import get_services


@click.group("tokens")
def tokens_cli() -> None:
    """Refresh token maintenance commands."""


@tokens_cli.command("purge")
@click.option(
    "--retention-days",
    type=click.IntRange(min=0),
    default=None,
    help="Keep tokens that expired less than this many days ago "
    "(default: REFRESH_TOKEN_RETENTION_SECONDS).",
)
@with_appcontext
def purge_command(retention_days: int | None) -> None:
    """Hard-delete refresh tokens past their retention window."""
    retention = timedelta(days=retention_days) if retention_days is not None else None
    deleted = get_services().refresh_tokens.purge_stale(retention)
    click.echo(f"Purged {deleted} refresh token(s).")


@tokens_cli.command("revoke-identity")
@click.argument("email")
@with_appcontext
def revoke_identity_command(email: str) -> None:
    """Revoke every live refresh token of the identity owning EMAIL."""
    services = get_services()
    identity = services.identities.find_by_email(email)
    if identity is None:
        raise click.ClickException(f"No identity with email {email!r}.")
    count = services.refresh_tokens.revoke_all_for_identity(identity.id)
    click.echo(f"Revoked {count} refresh token(s).")
