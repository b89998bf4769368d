"""
core/orchestrator.py

Command orchestrator: device record -> provider adapter -> CommandResult.

This module contains the dispatch logic shared by the staff endpoints and the public
credential gate:
1. Loads the device record (a missing record is terminal: DeviceNotFoundError)
2. Resolves the adapter through the registry and checks the requested capability
3. Invokes the adapter under an overall deadline
4. Classifies the outcome into a CommandResult and records metrics
5. Writes an access log entry for open and close attempts (best-effort)

Operational failures (unknown or disabled vendor, unsupported operation, vendor errors,
timeouts, and any exception an adapter lets slip) are returned as results with
success=False, never raised, so every caller can answer the request and audit it.
Only cancellation propagates.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional

from config.logging_config import get_logger
from monitoring.metrics import DISPATCH_COUNT
from provider_api.base import Capability, ProviderAdapter
from provider_api.registry import ProviderRegistry
from services.access_store import AccessStore
from services.audit import AuditSink
from shared.models import AccessAction, AccessLogEntry, CommandResult, Device, ErrorCode, LockOperation
from .errors import DeviceNotFoundError, ProviderDisabledError, ProviderNotSupportedError

logger = get_logger(__name__)

DEFAULT_DISPATCH_TIMEOUT_S = 30.0


class CommandOrchestrator:
    """
    Routes device commands to provider adapters.

    Responsibilities:
    - Device loading and the "inactive devices are never dispatched to" rule
    - Adapter resolution, including disabled and unknown vendors
    - Capability checks before optional operations
    - Overall dispatch deadline (covers an adapter's whole retry chain)
    - Audit entries for open/close attempts
    """

    def __init__(
        self,
        store: AccessStore,
        registry: ProviderRegistry,
        audit: AuditSink,
        dispatch_timeout_s: float = DEFAULT_DISPATCH_TIMEOUT_S,
    ):
        """
        Args:
            store (AccessStore): Record store used to load devices.
            registry (ProviderRegistry): Immutable vendor -> adapter mapping.
            audit (AuditSink): Best-effort access log writer.
            dispatch_timeout_s (float): Upper bound for one adapter call, retries included.
        """
        self.store = store
        self.registry = registry
        self.audit = audit
        self.dispatch_timeout_s = dispatch_timeout_s
        logger.info(f"Command orchestrator ready (dispatch timeout: {dispatch_timeout_s}s)")

    async def load_device(self, device_id: str) -> Device:
        """
        Load a device record.

        Raises:
            DeviceNotFoundError: No device with this id.
        """
        device = await asyncio.to_thread(self.store.get_device, device_id)
        if device is None:
            raise DeviceNotFoundError(f"Device {device_id} not found")
        return device

    async def _dispatch(
        self,
        device: Device,
        operation: LockOperation,
        capability: Capability,
        call: Callable[[ProviderAdapter], Awaitable[CommandResult]],
    ) -> CommandResult:
        if not device.active:
            result = CommandResult(
                success=False,
                operation=operation,
                message=f"Device {device.id} is inactive",
                error=ErrorCode.NOT_FOUND,
            )
            self._record(device, operation, result, provider=device.vendor)
            return result

        try:
            adapter = self.registry.resolve(device.vendor)
        except (ProviderNotSupportedError, ProviderDisabledError) as e:
            logger.warning(f"Cannot dispatch {operation.value} to device {device.id}: {e.message}")
            result = CommandResult(
                success=False,
                operation=operation,
                message=e.message,
                metadata={"vendor": device.vendor},
                error=e.code,
            )
            self._record(device, operation, result, provider=device.vendor)
            return result

        if not self.registry.supports(device.vendor, capability):
            result = adapter.unsupported(operation)
            self._record(device, operation, result, provider=adapter.name)
            return result

        try:
            result = await asyncio.wait_for(call(adapter), timeout=self.dispatch_timeout_s)
        except asyncio.TimeoutError:
            result = adapter.failure(
                operation,
                ErrorCode.TIMEOUT,
                message=f"Device did not respond within {self.dispatch_timeout_s:.0f}s",
            )
        except Exception as e:
            # CancelledError is a BaseException and still propagates.
            logger.error(
                f"Adapter {adapter.name} raised during {operation.value} on device {device.id}: {e}",
                exc_info=True,
            )
            result = adapter.failure(
                operation,
                ErrorCode.VENDOR_ERROR,
                message="Provider adapter failed unexpectedly",
                metadata={"exception": type(e).__name__},
            )
        self._record(device, operation, result, provider=adapter.name)
        return result

    def _record(self, device: Device, operation: LockOperation, result: CommandResult, provider: str) -> None:
        outcome = "success" if result.success else (result.error.value if result.error else "failed")
        DISPATCH_COUNT.labels(
            provider=(provider or "unknown").upper(), operation=operation.value, outcome=outcome
        ).inc()
        log = logger.info if result.success else logger.warning
        log(
            f"{operation.value} on device {device.id} via {provider}: {outcome} "
            f"(retries: {result.retries}) - {result.message}"
        )

    async def _audit(
        self,
        device: Device,
        action: AccessAction,
        success: bool,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        if not device.unit_id:
            logger.warning(f"Device {device.id} has no unit; access log skipped")
            return
        await self.audit.record(
            AccessLogEntry(
                unit_id=device.unit_id,
                device_id=device.id,
                action=action,
                success=success,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )

    async def open(
        self, device: Device, ip_address: Optional[str] = None, user_agent: Optional[str] = None
    ) -> CommandResult:
        """
        Open an already loaded device and audit the attempt.

        Args:
            device (Device): Device record.
            ip_address (Optional[str]): Origin IP for the access log.
            user_agent (Optional[str]): Source tag for the access log ("staff", "public-api").

        Returns:
            CommandResult: The classified outcome; never raises for operational failures.
        """
        result = await self._dispatch(device, LockOperation.OPEN, Capability.OPEN, lambda a: a.open(device))
        action = AccessAction.UNLOCK if result.success else AccessAction.UNLOCK_FAILED
        await self._audit(device, action, result.success, ip_address, user_agent)
        return result

    async def open_by_device_id(
        self, device_id: str, ip_address: Optional[str] = None, user_agent: Optional[str] = "staff"
    ) -> CommandResult:
        """Load the device and open it. Raises DeviceNotFoundError for unknown ids."""
        device = await self.load_device(device_id)
        return await self.open(device, ip_address, user_agent)

    async def close_by_device_id(
        self, device_id: str, ip_address: Optional[str] = None, user_agent: Optional[str] = "staff"
    ) -> CommandResult:
        """Load the device and lock it, when its adapter supports CLOSE."""
        device = await self.load_device(device_id)
        result = await self._dispatch(
            device, LockOperation.CLOSE, Capability.CLOSE, lambda a: a.close(device)
        )
        action = AccessAction.LOCK if result.success else AccessAction.LOCK_FAILED
        await self._audit(device, action, result.success, ip_address, user_agent)
        return result

    async def status(self, device_id: str) -> CommandResult:
        """Query device state; UNSUPPORTED_OPERATION when the adapter has no STATUS."""
        device = await self.load_device(device_id)
        return await self._dispatch(
            device, LockOperation.STATUS, Capability.STATUS, lambda a: a.status(device)
        )

    async def generate_access_code(
        self, device_id: str, valid_from: datetime, valid_to: datetime
    ) -> CommandResult:
        """Create a temporary keypad code; UNSUPPORTED_OPERATION without GENERATE_CODE."""
        device = await self.load_device(device_id)
        return await self._dispatch(
            device,
            LockOperation.GENERATE_CODE,
            Capability.GENERATE_CODE,
            lambda a: a.generate_access_code(device, valid_from, valid_to),
        )
