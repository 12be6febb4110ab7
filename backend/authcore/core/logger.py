"""JSON logging with request correlation and credential redaction.

Records leave the process as one JSON object per line. Every record carries
the request id of the HTTP request that produced it (``None`` outside a
request). Credentials never reach a handler: bearer headers, JWT-looking
strings and ``extra`` values under sensitive keys are masked by
:class:`RedactionFilter` before formatting.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from flask import Flask, g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_HEADERS = ("X-Request-ID", "X-Correlation-ID")

# Structured ``extra`` keys copied onto the JSON payload when present.
EXTRA_KEYS = ("endpoint", "elapsed_ms", "identity_id", "device_id", "token_id", "event")

SENSITIVE_KEYS = frozenset(
    {"password", "secret", "access_token", "refresh_token", "token", "authorization"}
)
REDACTED = "[redacted]"

_BEARER_RE = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+")
_JWT_RE = re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")


def redact(text: str) -> str:
    """Mask bearer credentials and compact JWTs inside ``text``."""
    return _JWT_RE.sub(REDACTED, _BEARER_RE.sub(f"Bearer {REDACTED}", text))


class RedactionFilter(logging.Filter):
    """Scrub credentials from the message and from sensitive ``extra`` keys."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        scrubbed = redact(message)
        if scrubbed != message:
            record.msg, record.args = scrubbed, None
        for key in SENSITIVE_KEYS & record.__dict__.keys():
            setattr(record, key, REDACTED)
        return True


class RequestIdFilter(logging.Filter):
    """Ensure a ``request_id`` attribute is always present on log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        record.request_id = ensure_request_id() if has_request_context() else None
        return True


class JSONFormatter(logging.Formatter):
    """Render log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.now(UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update({key: getattr(record, key) for key in EXTRA_KEYS if hasattr(record, key)})
        if record.exc_info:
            payload["exc_info"] = redact(self.formatException(record.exc_info))
        return json.dumps(payload, default=str)


def ensure_request_id() -> str:
    """Return the current request identifier, generating one when necessary.

    An incoming ``X-Request-ID`` (or ``X-Correlation-ID``) wins; the value is
    cached on ``g`` for the rest of the request.
    """
    if not has_request_context():
        return str(uuid4())
    request_id = g.get("request_id")
    if request_id is None:
        request_id = next(
            (request.headers[h] for h in CORRELATION_HEADERS if request.headers.get(h)),
            str(uuid4()),
        )
        g.request_id = request_id
    return request_id


def configure_logging(level: str | int = "INFO") -> None:
    """Send every record to stdout as JSON, with request ids and redaction."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(RequestIdFilter())
    handler.addFilter(RedactionFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.INFO
    root.setLevel(level)


def init_app(app: Flask) -> None:
    """Seed a request id per request and echo it on every response."""
    app.logger.addFilter(RequestIdFilter())
    app.logger.addFilter(RedactionFilter())

    @app.before_request
    def _seed_request_id() -> None:  # pragma: no cover - integration glue
        # ``g`` outlives the request when an app context was already pushed.
        g.pop("request_id", None)
        ensure_request_id()

    @app.after_request
    def _inject_response_header(response):  # pragma: no cover - integration glue
        response.headers.setdefault(REQUEST_ID_HEADER, ensure_request_id())
        return response


__all__ = [
    "RedactionFilter",
    "configure_logging",
    "ensure_request_id",
    "init_app",
    "redact",
]
