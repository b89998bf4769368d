"""
Provider-agnostic adapter interface for smart lock, relay and hub vendors.

This module defines the abstract contract that every concrete vendor adapter must fulfill in
order to be used by the orchestrator. The design uses the adapter pattern to separate the
dispatch logic from vendor-specific concerns like authentication, HTTP transport, retry
policy and response normalization. Every adapter speaks in terms of the same Device record
and returns the same CommandResult, so the orchestrator, the credential gate and the API
layers stay vendor-agnostic.

Capabilities:
- OPEN is mandatory; every adapter implements `open`.
- CLOSE, STATUS and GENERATE_CODE are optional. An adapter lists what it supports in its
  `capabilities` set and implements the matching coroutine. Callers ask the registry
  (`supports(vendor, capability)`) before invoking an optional operation instead of probing
  for methods at runtime; the base class implementations of the optional operations return
  an UNSUPPORTED_OPERATION result so a wrong call is still harmless.

Enablement:
- Adapters are constructed once, at registry build time, from an environment mapping. An
  adapter whose feature flag is off or whose secrets are missing starts disabled and logs the
  reason; construction never raises.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from shared.models import CommandResult, Device, ErrorCode, LockOperation
from shared.utils import parse_device_config

logger = logging.getLogger(__name__)


class Capability(Enum):
    """Operations an adapter can declare support for."""
    OPEN = "open"
    CLOSE = "close"
    STATUS = "status"
    GENERATE_CODE = "generate_code"


def env_flag(env: Mapping[str, str], name: str) -> bool:
    """Return True when the environment variable is set to 'true' (case-insensitive)."""
    return str(env.get(name, "")).strip().lower() == "true"


def env_int(env: Mapping[str, str], name: str, default: int) -> int:
    """Read an integer environment variable, falling back to `default` on absence or junk."""
    try:
        return int(env.get(name, default))
    except (TypeError, ValueError):
        return default


class DeviceConfigError(ValueError):
    """A value in a device's vendor blob has the wrong type or format."""


def blob_int(config: Mapping[str, Any], key: str, default: int) -> int:
    value = config.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DeviceConfigError(f"'{key}' must be an integer, got {value!r}") from None


def blob_float(config: Mapping[str, Any], key: str, default: float) -> float:
    value = config.get(key, default)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise DeviceConfigError(f"'{key}' must be a number, got {value!r}") from None


def blob_str(config: Mapping[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
    """Read a string blob value. Numbers are accepted and stringified; other types are not."""
    value = config.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise DeviceConfigError(f"'{key}' must be a string, got {type(value).__name__}")
    return str(value)


def blob_dict(config: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = config.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DeviceConfigError(f"'{key}' must be an object, got {type(value).__name__}")
    return value


class ProviderAdapter(ABC):
    """
    Abstract adapter executing physical commands against one vendor's network API.

    Subclasses set `name` (the vendor identifier used by the registry) and `capabilities`,
    and implement `open`. Implementations must convert every vendor or network failure, and
    every malformed blob value (DeviceConfigError), into a CommandResult with success=False.
    Only cancellation may escape; the orchestrator still turns any other stray exception into
    a VENDOR_ERROR result.

    Note:
        `transport` is forwarded to httpx by the adapters that use HTTP. Production code
        leaves it as None; tests pass an httpx.MockTransport.
    """

    name: str = ""
    capabilities: FrozenSet[Capability] = frozenset({Capability.OPEN})

    def __init__(self, transport: Any = None) -> None:
        self._enabled = False
        self._transport = transport

    def is_enabled(self) -> bool:
        """Return True if the feature flag was set and all required secrets were present."""
        return self._enabled

    def supports(self, capability: Capability) -> bool:
        """Return True when this adapter implements the given capability."""
        return capability in self.capabilities

    @abstractmethod
    async def open(self, device: Device) -> CommandResult:
        """
        Open (unlock, trigger, switch on) the device.

        Args:
            device (Device): Device record; the adapter reads its external id and vendor
                configuration blob.

        Returns:
            CommandResult: success=True when the vendor acknowledged the command; otherwise
            success=False with an ErrorCode and vendor detail in metadata.
        """
        raise NotImplementedError

    async def close(self, device: Device) -> CommandResult:
        """Close (lock, switch off) the device. Only valid when CLOSE is declared."""
        return self.unsupported(LockOperation.CLOSE)

    async def status(self, device: Device) -> CommandResult:
        """Query the device state into metadata. Only valid when STATUS is declared."""
        return self.unsupported(LockOperation.STATUS)

    async def generate_access_code(
        self, device: Device, valid_from: datetime, valid_to: datetime
    ) -> CommandResult:
        """Create a temporary keypad code. Only valid when GENERATE_CODE is declared."""
        return self.unsupported(LockOperation.GENERATE_CODE)

    # --- helpers shared by all adapters ---

    def device_config(self, device: Device) -> Dict[str, Any]:
        """Return the device's vendor configuration blob as a dictionary."""
        return parse_device_config(device.config)

    def ok(
        self,
        operation: LockOperation,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        retries: int = 0,
    ) -> CommandResult:
        """Build a successful result tagged with this provider's name."""
        meta = {"provider": self.name}
        meta.update(metadata or {})
        return CommandResult(
            success=True,
            operation=operation,
            message=message,
            metadata=meta,
            retries=retries,
        )

    def failure(
        self,
        operation: LockOperation,
        error: ErrorCode,
        message: str = "Operation failed",
        metadata: Optional[Dict[str, Any]] = None,
        retries: int = 0,
    ) -> CommandResult:
        """Build a failed result tagged with this provider's name."""
        meta = {"provider": self.name}
        meta.update(metadata or {})
        return CommandResult(
            success=False,
            operation=operation,
            message=message,
            metadata=meta,
            error=error,
            retries=retries,
        )

    def unsupported(self, operation: LockOperation) -> CommandResult:
        """Result for an operation this adapter does not implement."""
        return self.failure(
            operation,
            ErrorCode.UNSUPPORTED_OPERATION,
            message="Operation not supported by this provider",
        )

    def invalid_config(self, operation: LockOperation, device: Device, error: DeviceConfigError) -> CommandResult:
        """Result for a device whose vendor blob cannot be used."""
        logger.warning(f"{self.name} device {device.id} has an invalid config: {error}")
        return self.failure(
            operation,
            ErrorCode.VENDOR_ERROR,
            message=f"Invalid device configuration: {error}",
        )

    def disabled(self, operation: LockOperation) -> CommandResult:
        """Result for a call made while the adapter is disabled."""
        return self.failure(
            operation,
            ErrorCode.PROVIDER_DISABLED,
            message=f"Provider {self.name} is disabled",
        )
