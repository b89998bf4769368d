"""
Health endpoint for the access gateway.

Returns a constant status and a UTC timestamp, plus the providers that came up enabled, so a
misconfigured deployment (every vendor disabled) is visible from a plain curl.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from shared.utils import utc_now
from version import __version__

router = APIRouter()


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    """
    Return a simple health status payload.

    Returns:
        Dict[str, Any]: "status", "version", ISO-8601 "timestamp" and "providers"
        (names of the enabled adapters).
    """
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": utc_now().isoformat(),
        "providers": request.app.state.registry.list_enabled(),
    }
