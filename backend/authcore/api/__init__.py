"""HTTP adapter: versioned blueprint groups mounted under ``API_BASE_PREFIX``."""

from __future__ import annotations

from collections.abc import Iterable

from flask import Blueprint, Flask


def join_prefix(*segments: str) -> str:
    """Join URL segments into one absolute prefix, dropping empty parts.

    >>> join_prefix("/api/", "v1", "")
    '/api/v1'
    """
    return "/" + "/".join(s.strip("/") for s in segments if s.strip("/"))


def register_blueprint_group(
    app: Flask,
    *,
    base_prefix: str,
    entries: Iterable[tuple[Blueprint, str]],
) -> None:
    """Register related blueprints beneath a common prefix.

    Parameters
    ----------
    app:
        Application instance receiving the blueprints.
    base_prefix:
        Prefix applied to all entries, such as ``"/api/v1"``.
    entries:
        ``(blueprint, relative_prefix)`` pairs; an empty relative prefix
        mounts the blueprint at the version root.
    """
    for bp, rel_prefix in entries:
        app.register_blueprint(bp, url_prefix=join_prefix(base_prefix, rel_prefix))


def init_app(app: Flask) -> None:
    """Mount every API version on the Flask app."""
    from authcore.api import v1

    api_base = app.config.get("API_BASE_PREFIX", "/api")
    for version in (v1,):
        register_blueprint_group(
            app,
            base_prefix=join_prefix(api_base, version.API_VERSION),
            entries=version.REGISTRY,
        )


__all__ = ["init_app", "join_prefix", "register_blueprint_group"]
