"""Authentication endpoints using the service layer."""

from __future__ import annotations

from flask import Blueprint, request

from authcore.api.deps import (
    bearer_token,
    client_metadata,
    current_claims,
    json_response,
    no_store,
    require_auth,
    services,
    timing,
)
from authcore.schemas import (
    AuthorizeSchema,
    ClaimsSchema,
    DecisionSchema,
    LoginSchema,
    LogoutSchema,
    RefreshSchema,
    TokenPairSchema,
)
from authcore.services.auth.dto import LoginIn, LogoutIn
from authcore.services.tokens.dto import RefreshIn

bp = Blueprint("auth", __name__, url_prefix="/auth")

login_schema = LoginSchema()
refresh_schema = RefreshSchema()
logout_schema = LogoutSchema()
authorize_schema = AuthorizeSchema()
token_schema = TokenPairSchema()
claims_schema = ClaimsSchema()
decision_schema = DecisionSchema()


@bp.post("/login")
@timing
def login():
    """Authenticate credentials and issue a device-bound token pair."""

    data = login_schema.load(request.get_json(silent=True) or {})
    pair = services().auth.authenticate(
        LoginIn(
            email=data["email"],
            secret=data["password"],
            fingerprint=data["fingerprint"],
            **client_metadata(),
        )
    )
    return no_store(json_response({"data": token_schema.dump(pair)}))


@bp.post("/refresh")
@timing
def refresh():
    """Rotate a refresh token into a new token pair."""

    data = refresh_schema.load(request.get_json(silent=True) or {})
    pair = services().auth.refresh(
        RefreshIn(refresh_token=data["refresh_token"], fingerprint=data["fingerprint"])
    )
    return no_store(json_response({"data": token_schema.dump(pair)}))


@bp.post("/logout")
@timing
def logout():
    """End the session (or every session) behind a refresh token."""

    data = logout_schema.load(request.get_json(silent=True) or {})
    services().auth.logout(
        LogoutIn(
            refresh_token=data["refresh_token"],
            all_sessions=data["all_sessions"],
            access_token=bearer_token(optional=True),
        )
    )
    return "", 204


@bp.get("/me")
@require_auth
@timing
def me():
    """Return the verified claims of the presented access token."""

    return json_response({"data": claims_schema.dump(current_claims())})


@bp.post("/authorize")
@require_auth
@timing
def authorize():
    """Answer whether the caller's token grants the requested permission."""

    data = authorize_schema.load(request.get_json(silent=True) or {})
    decision = services().authz.authorize(bearer_token() or "", data["permission"])
    body = {"permission": data["permission"], "decision": decision.value}
    return json_response({"data": decision_schema.dump(body)})
