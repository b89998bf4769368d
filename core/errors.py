"""
core/errors.py

Exception hierarchy for the gateway.

Vendor and network failures never appear here: adapters turn them into CommandResult values.
These exceptions cover the conditions that callers must handle as control flow:

- Registry resolution (a known vendor that is switched off, or an unknown vendor when the
  generic fallback is disabled). The orchestrator converts both into structured results.
- A missing device record, which is terminal for staff endpoints (404).
- Credential gate rejections, which the public router maps to 401 / 404 / dispatch errors.
- Staff principal problems (401 / 403).
"""

from typing import Optional

from shared.models import CommandResult, ErrorCode


class GatewayError(Exception):
    """Base class for all gateway errors; carries the taxonomy code."""

    code: ErrorCode = ErrorCode.VENDOR_ERROR

    def __init__(self, message: str = "", code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ProviderDisabledError(GatewayError):
    """The vendor is registered but its feature flag is off or its secrets are missing."""

    code = ErrorCode.PROVIDER_DISABLED


class ProviderNotSupportedError(GatewayError):
    """No adapter matches the vendor identifier and no fallback is available."""

    code = ErrorCode.PROVIDER_NOT_SUPPORTED


class DeviceNotFoundError(GatewayError):
    """The requested device record does not exist."""

    code = ErrorCode.NOT_FOUND


class CredentialRejectedError(GatewayError):
    """
    The presented token is invalid, expired, revoked, or lost the claim race.

    The public router answers 401 without saying which of those applied.
    """

    code = ErrorCode.UNAUTHORIZED


class BindingNotFoundError(GatewayError):
    """
    The device is not active, not in the slug's unit, or the unit is unpublished.

    Reported as NOT_FOUND rather than UNAUTHORIZED so that probing device/unit pairs does not
    reveal whether a token was valid.
    """

    code = ErrorCode.NOT_FOUND


class DispatchFailedError(GatewayError):
    """The adapter reported a failed dispatch; the credential was left usable."""

    def __init__(self, result: CommandResult):
        code = result.error or ErrorCode.VENDOR_ERROR
        super().__init__(result.message, code)
        self.result = result


class StaffAuthError(Exception):
    """A staff endpoint was called without a valid principal or with an insufficient role."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
