"""Device management endpoints for the authenticated identity."""

from __future__ import annotations

from flask import Blueprint

from authcore.api.deps import current_claims, json_response, require_permission, services, timing
from authcore.schemas import DeviceSchema
from authcore.services._shared.errors import NotFoundError

bp = Blueprint("devices", __name__, url_prefix="/devices")

devices_schema = DeviceSchema(many=True)
device_schema = DeviceSchema()


@bp.get("")
@require_permission("devices:read")
@timing
def list_devices():
    """List the caller's devices, most recently seen first."""

    items = services().devices.list_for_identity(current_claims().identity_id)
    return json_response({"data": devices_schema.dump(items)})


@bp.delete("/<device_id>")
@require_permission("devices:revoke")
@timing
def revoke_device(device_id: str):
    """Revoke one of the caller's devices and every session bound to it."""

    claims = current_claims()
    owned = {d.id for d in services().devices.list_for_identity(claims.identity_id)}
    if device_id not in owned:
        raise NotFoundError("Device", device_id)
    device = services().devices.revoke(device_id)
    return json_response({"data": device_schema.dump(device)})
