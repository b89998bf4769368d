""" api/public_actions.py: Guest-facing unlock endpoint.

POST /public/actions/open-lock takes {slug, deviceId, token} and no authentication header: the
one-time token in the body is the only credential. The heavy lifting (token lookup, binding
check, atomic claim, dispatch, release on failure, audit) lives in core.credential_gate; this
module only maps its outcomes to HTTP:

- 200 {success, message, deviceId, timestamp, metadata} on success
- 401 for an invalid, expired, revoked or already used token
- 404 when the device does not belong to a published unit with that slug
- 4xx/5xx with a generic message for a failed dispatch (the token stays usable)

Guests never see vendor detail on failures.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from core.errors import BindingNotFoundError, CredentialRejectedError, DispatchFailedError
from shared.models import OpenLockRequest
from . import status_code_for

# Get a logger instance for this module
logger = logging.getLogger(__name__)

router = APIRouter()


def client_ip(request: Request) -> Optional[str]:
    """
    Origin IP for the access log.

    X-Forwarded-For is read only when `server.trust_forwarded_for` is on, and then only its
    last hop: the address our own proxy appended. Earlier hops come from the caller.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and getattr(request.app.state, "trust_forwarded_for", False):
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        if hops:
            return hops[-1]
    return request.client.host if request.client else None


@router.post("/public/actions/open-lock")
async def open_lock(body: OpenLockRequest, request: Request):
    """
    Open a lock with a one-time guest token.

    Args:
        body (OpenLockRequest): slug, deviceId and token.

    Returns:
        JSONResponse: See module docstring for the status codes.
    """
    gate = request.app.state.gate
    ip_address = client_ip(request)
    logger.info(f"[open_lock] Unlock requested for device {body.deviceId} in unit '{body.slug}' from {ip_address}")

    try:
        result = await gate.open_lock(body.slug, body.deviceId, body.token, ip_address)
    except CredentialRejectedError:
        raise HTTPException(status_code=401, detail="Invalid or expired access token")
    except BindingNotFoundError:
        raise HTTPException(status_code=404, detail="Device not found")
    except DispatchFailedError as e:
        return JSONResponse(
            {
                "success": False,
                "message": "The door could not be opened. Please try again.",
                "error": e.code.value,
                "deviceId": body.deviceId,
            },
            status_code=status_code_for(e.code),
        )

    return JSONResponse(
        {
            "success": True,
            "message": result.message,
            "deviceId": body.deviceId,
            "timestamp": result.timestamp.isoformat(),
            "metadata": result.metadata,
        }
    )
