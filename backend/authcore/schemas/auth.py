"""Authentication-related Marshmallow schemas."""

from __future__ import annotations

from marshmallow import Schema, fields, validate


class LoginSchema(Schema):
    """Input payload for credential login."""

    email = fields.Email(required=True, validate=validate.Length(max=254))
    password = fields.String(required=True, validate=validate.Length(min=1, max=128))
    fingerprint = fields.String(required=True, validate=validate.Length(min=1, max=255))


class RefreshSchema(Schema):
    """Input payload for refresh token rotation."""

    refresh_token = fields.String(required=True, validate=validate.Length(min=1, max=512))
    fingerprint = fields.String(load_default=None, validate=validate.Length(min=1, max=255))


class LogoutSchema(Schema):
    """Input payload for logout."""

    refresh_token = fields.String(required=True, validate=validate.Length(min=1, max=512))
    all_sessions = fields.Boolean(load_default=False)


class AuthorizeSchema(Schema):
    """Input payload asking whether the caller holds a permission."""

    permission = fields.String(required=True, validate=validate.Length(min=1, max=128))


class TokenPairSchema(Schema):
    """Response payload containing an access/refresh token pair."""

    access_token = fields.String(required=True)
    refresh_token = fields.String(required=True)
    expires_in = fields.Integer(required=True)
    token_type = fields.String(dump_default="Bearer")


class ClaimsSchema(Schema):
    """Response payload exposing the verified access token claims."""

    identity_id = fields.String(required=True)
    role = fields.String(required=True)
    permissions = fields.List(fields.String(), required=True)
    device_id = fields.String(required=True)
    expires_at = fields.DateTime(required=True)


class DecisionSchema(Schema):
    """Response payload of an authorization decision."""

    permission = fields.String(required=True)
    decision = fields.String(required=True)
