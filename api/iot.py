""" api/iot.py: Staff-only device endpoints.

These routes bypass the credential gate and call the command orchestrator directly. Every route
requires a staff principal (see core.auth.require_staff). Unlike the public endpoint, responses
carry the full CommandResult, vendor metadata included, for debugging.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from core.auth import StaffPrincipal, require_staff
from core.errors import DeviceNotFoundError
from shared.models import AccessCodeRequest, CommandResult, OpenDoorRequest
from . import status_code_for
from .public_actions import client_ip

# Get a logger instance for this module
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/iot")


def _result_response(result: CommandResult) -> JSONResponse:
    status_code = 200 if result.success else status_code_for(result.error)
    return JSONResponse(result.to_dict(), status_code=status_code)


@router.post("/open-door")
async def open_door(
    body: OpenDoorRequest, request: Request, principal: StaffPrincipal = Depends(require_staff)
):
    """Open a device on behalf of a staff member."""
    logger.info(f"[open_door] {principal.role} {principal.user_id} opening device {body.deviceId}")
    try:
        result = await request.app.state.orchestrator.open_by_device_id(
            body.deviceId, client_ip(request), f"staff:{principal.user_id}"
        )
    except DeviceNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return _result_response(result)


@router.post("/close-door")
async def close_door(
    body: OpenDoorRequest, request: Request, principal: StaffPrincipal = Depends(require_staff)
):
    """Lock a device on behalf of a staff member."""
    logger.info(f"[close_door] {principal.role} {principal.user_id} closing device {body.deviceId}")
    try:
        result = await request.app.state.orchestrator.close_by_device_id(
            body.deviceId, client_ip(request), f"staff:{principal.user_id}"
        )
    except DeviceNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return _result_response(result)


@router.get("/device/{device_id}/status")
async def device_status(
    device_id: str, request: Request, principal: StaffPrincipal = Depends(require_staff)
):
    """Query a device's state through its adapter."""
    try:
        result = await request.app.state.orchestrator.status(device_id)
    except DeviceNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return _result_response(result)


@router.post("/device/{device_id}/access-code")
async def create_access_code(
    device_id: str,
    body: AccessCodeRequest,
    request: Request,
    principal: StaffPrincipal = Depends(require_staff),
):
    """Create a temporary keypad code for a lock that supports it."""
    if body.validTo <= body.validFrom:
        raise HTTPException(status_code=400, detail="validTo must be after validFrom")
    logger.info(f"[create_access_code] {principal.user_id} requesting code for device {device_id}")
    try:
        result = await request.app.state.orchestrator.generate_access_code(
            device_id, body.validFrom, body.validTo
        )
    except DeviceNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return _result_response(result)


@router.get("/providers")
def list_providers(request: Request, principal: StaffPrincipal = Depends(require_staff)):
    """List registered and enabled providers."""
    registry = request.app.state.registry
    return {"enabled": registry.list_enabled(), "registered": registry.names()}
