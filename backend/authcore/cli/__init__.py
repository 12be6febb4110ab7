"""Command-line interface registration for the Flask application."""

from __future__ import annotations

from flask import Flask

from .db import db_cli
from .seed import seed_cli
from .tokens import tokens_cli


def init_app(app: Flask) -> None:
    """Register application-specific CLI command groups.

    Parameters
    ----------
    app:
        Flask application instance whose CLI registry will receive the
        ``db``, ``seed`` and ``tokens`` command groups.
    """
    app.cli.add_command(db_cli)
    app.cli.add_command(seed_cli)
    app.cli.add_command(tokens_cli)
