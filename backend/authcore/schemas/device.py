"""Device-related Marshmallow schemas."""

from __future__ import annotations

from marshmallow import Schema, fields


class DeviceSchema(Schema):
    """Output representation of a registered device."""

    id = fields.String(required=True)
    fingerprint = fields.String(required=True)
    user_agent = fields.String(allow_none=True)
    ip_address = fields.String(allow_none=True)
    status = fields.String(required=True)
    last_seen_at = fields.DateTime(allow_none=True)
