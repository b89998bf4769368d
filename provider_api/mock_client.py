"""
Deterministic mock lock adapter for local runs, demos, and tests.

This module provides a reference implementation of the provider-agnostic adapter interface
so the gateway can be executed end-to-end without any vendor credentials or network access.
The mock keeps lock state in memory and supports open, close and status. Because behavior and
outputs are stable, unit tests and manual demonstrations are reproducible across machines.

Usage:
- Register a device with vendor "MOCK" and set IOT_MOCK_ENABLED=true.
- The device blob can steer the outcome of `open`, which is handy for exercising failure
  paths of the credential gate:
    {"fail": true}                      -> VENDOR_ERROR
    {"fail": true, "error": "TIMEOUT"}  -> the named ErrorCode
    {"delay_s": 0.2}                    -> wait before answering
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from shared.models import CommandResult, Device, ErrorCode, LockOperation
from .base import Capability, DeviceConfigError, ProviderAdapter, blob_float, env_flag

logger = logging.getLogger(__name__)


class MockLockAdapter(ProviderAdapter):
    """
    In-memory implementation of `ProviderAdapter` with deterministic behavior.

    State is stored in a simple dictionary keyed by device identifier; unknown devices start
    "locked". `open_calls` counts dispatched opens so tests can assert how many times the
    physical action would have happened.
    """

    name = "MOCK"
    capabilities = frozenset({Capability.OPEN, Capability.CLOSE, Capability.STATUS})

    def __init__(self, env: Optional[Mapping[str, str]] = None, transport: Any = None) -> None:
        super().__init__(transport)
        self._states: Dict[str, str] = {}
        self.open_calls = 0
        if env is not None and not env_flag(env, "IOT_MOCK_ENABLED"):
            logger.info("Mock provider disabled (IOT_MOCK_ENABLED is not 'true')")
            return
        self._enabled = True

    def state_of(self, device_id: str) -> str:
        """Return the simulated lock state ("locked" or "unlocked")."""
        return self._states.get(device_id, "locked")

    async def open(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.OPEN)
        config = self.device_config(device)
        try:
            delay = blob_float(config, "delay_s", 0.0)
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.OPEN, device, e)
        self.open_calls += 1

        if delay > 0:
            await asyncio.sleep(delay)

        if config.get("fail"):
            try:
                error = ErrorCode(config.get("error", ErrorCode.VENDOR_ERROR.value))
            except ValueError:
                error = ErrorCode.VENDOR_ERROR
            return self.failure(
                LockOperation.OPEN, error, message="Simulated vendor failure", metadata={"device_id": device.id}
            )

        self._states[device.id] = "unlocked"
        return self.ok(LockOperation.OPEN, "Door opened (mock)", metadata={"state": "unlocked"})

    async def close(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.CLOSE)
        self._states[device.id] = "locked"
        return self.ok(LockOperation.CLOSE, "Door locked (mock)", metadata={"state": "locked"})

    async def status(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.STATUS)
        return self.ok(
            LockOperation.STATUS, "Status retrieved (mock)", metadata={"state": self.state_of(device.id)}
        )
