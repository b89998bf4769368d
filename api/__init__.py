"""
api package: FastAPI routers for the access gateway.

- health: liveness check.
- public_actions: unauthenticated guest unlock, gated by a one-time token.
- iot: staff-only device operations and provider introspection.
"""

from typing import Optional

from shared.models import ErrorCode

# Dispatch failure codes -> HTTP status.
ERROR_STATUS_CODES = {
    ErrorCode.TIMEOUT: 504,
    ErrorCode.VENDOR_ERROR: 502,
    ErrorCode.PROVIDER_DISABLED: 503,
    ErrorCode.PROVIDER_NOT_SUPPORTED: 503,
    ErrorCode.UNSUPPORTED_OPERATION: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.NOT_FOUND: 404,
}


def status_code_for(error: Optional[ErrorCode]) -> int:
    """HTTP status for a failed CommandResult; 400 when the code is missing or unmapped."""
    return ERROR_STATUS_CODES.get(error, 400)
