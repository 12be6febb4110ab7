"""Application factory wiring Flask extensions, services and blueprints."""

from __future__ import annotations

from flask import Flask

from authcore.core.config import BaseConfig, get_config
from authcore.core.logger import configure_logging
from authcore.core.logger import init_app as init_logging


def create_app(
    config: str | type[BaseConfig] | object | None = None,
    *,
    instance_relative_config: bool = True,
    instance_config_filename: str = "config.py",
) -> Flask:
    """Build and configure the Flask application.

    :param config: Config class, import path or object; defaults to
        :func:`authcore.core.config.get_config`.
    :returns: Application with storage, services, API and CLI registered.
    :rtype: flask.Flask
    """

    app = Flask(__name__, instance_relative_config=instance_relative_config)

    app.config.from_object(get_config() if config is None else config)
    if instance_relative_config and instance_config_filename:
        app.config.from_pyfile(instance_config_filename, silent=True)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    from authcore.core import extensions

    extensions.init_app(app)

    init_logging(app)

    from authcore import container

    container.init_app(app)

    from authcore.api import init_app as init_api

    init_api(app)

    from authcore.core import errors

    errors.init_app(app)

    from authcore import cli as app_cli

    app_cli.init_app(app)

    return app
