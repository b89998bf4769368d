"""
shared/models.py

Common data models and type definitions used across the gateway.

This module contains the records that flow between the provider adapters, the command
orchestrator, the credential gate and the HTTP layer:

1. Domain records read from the access store (Unit, Device, AccessCredential) and the
   immutable audit record written back to it (AccessLogEntry).
2. CommandResult, the single shape every adapter returns regardless of vendor. Failures are
   data here, not exceptions, so callers can always answer the request and audit it.
3. Pydantic request bodies for the public and staff endpoints.

Timestamps are timezone-aware UTC datetimes everywhere in the core; they are rendered as ISO
8601 strings only at the API boundary.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from shared.utils import ensure_utc, utc_now


class LockOperation(Enum):
    """Operations a provider adapter may be asked to perform."""
    OPEN = "OPEN"
    CLOSE = "CLOSE"
    STATUS = "STATUS"
    GENERATE_CODE = "GENERATE_CODE"
    REVOKE_CODE = "REVOKE_CODE"


class ErrorCode(Enum):
    """
    Failure classification carried in CommandResult.error and in API error bodies.

    The first five values are produced by the dispatch path (registry, orchestrator and
    adapters); UNAUTHORIZED and NOT_FOUND are produced by the credential gate.
    """
    PROVIDER_NOT_SUPPORTED = "PROVIDER_NOT_SUPPORTED"
    PROVIDER_DISABLED = "PROVIDER_DISABLED"
    TIMEOUT = "TIMEOUT"
    VENDOR_ERROR = "VENDOR_ERROR"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"


class AccessAction(Enum):
    """Action tags recorded on access log entries."""
    UNLOCK = "unlock"
    UNLOCK_FAILED = "unlock_failed"
    UNLOCK_UNAUTHORIZED = "unlock_unauthorized"
    LOCK = "lock"
    LOCK_FAILED = "lock_failed"


@dataclass
class Unit:
    """A rentable apartment; guests address it by slug."""
    id: str
    slug: str
    name: str = ""
    published: bool = False


@dataclass
class Device:
    """
    A controllable endpoint (lock, relay, hub entity) owned by a unit.

    `vendor` selects the provider adapter. `config` is the opaque per-vendor blob; only the
    adapter that owns the vendor interprets its keys.
    """
    id: str
    vendor: str
    external_id: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)
    active: bool = True
    unit_id: Optional[str] = None
    name: str = ""


@dataclass
class AccessCredential:
    """
    One-time authorization to operate one device.

    Only the SHA-256 hash of the guest token is kept. The credential is usable iff
    valid_from <= now <= valid_to and it is not revoked.
    """
    id: str
    device_id: str
    token_hash: str
    valid_from: datetime
    valid_to: datetime
    revoked: bool = False
    revoked_at: Optional[datetime] = None

    def is_valid_at(self, now: datetime) -> bool:
        """Return True when the credential may be used at `now` (bounds inclusive)."""
        return (not self.revoked) and self.valid_from <= now <= self.valid_to


@dataclass
class CommandResult:
    """
    Outcome of one dispatch against a provider adapter.

    Adapters never raise for vendor problems; they return a result with success=False and
    an ErrorCode in `error`. Vendor-specific detail (HTTP status, vendor message, battery
    level, lock state) goes into `metadata`, which only staff endpoints expose.
    """
    success: bool
    operation: LockOperation
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ErrorCode] = None
    retries: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """
        Render the result as a JSON-ready dictionary for staff-facing responses.

        Returns:
            Dict[str, Any]: Keys success, operation, message, timestamp (ISO 8601), metadata,
            error (code string or None) and retries.
        """
        return {
            "success": self.success,
            "operation": self.operation.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
            "error": self.error.value if self.error else None,
            "retries": self.retries,
        }


@dataclass(frozen=True)
class AccessLogEntry:
    """Immutable audit record of one access attempt."""
    unit_id: str
    device_id: str
    action: AccessAction
    success: bool
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)


class OpenLockRequest(BaseModel):
    """
    Body of the public one-time unlock endpoint.

    Fields keep the camelCase names used by the guest web app.
    """
    slug: str = Field(..., min_length=1, description="Apartment slug, e.g. 'sol-101'")
    deviceId: str = Field(..., min_length=1, description="Device identifier inside the apartment")
    token: str = Field(..., min_length=1, description="One-time access token")


class OpenDoorRequest(BaseModel):
    """Body of the staff open/close endpoints."""
    deviceId: str = Field(..., min_length=1, description="Device identifier")


class AccessCodeRequest(BaseModel):
    """Body of the staff access-code endpoint."""
    validFrom: datetime = Field(..., description="Start of the code validity window")
    validTo: datetime = Field(..., description="End of the code validity window")

    @field_validator("validFrom", "validTo")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are read as UTC so mixed payloads stay comparable.
        return ensure_utc(value)
