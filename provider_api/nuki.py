"""
Nuki Smart Lock adapter (Nuki Web API).

    POST {IOT_NUKI_API_URL}/smartlock/{id}/action   {"action": 1}   open (1 = unlock)
    POST {IOT_NUKI_API_URL}/smartlock/{id}/action   {"action": 2}   close (lock)
    GET  {IOT_NUKI_API_URL}/smartlock/{id}                          status
    PUT  {IOT_NUKI_API_URL}/smartlock/{id}/auth                     keypad code (type 13)

The smartlock id comes from the device blob (`smartlockId`, then `deviceId`) or the
external id. The blob may override the open action (3 = unlatch, 4 = lock'n'go).
"""

import logging
import secrets
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from monitoring.metrics import track_vendor_latency
from shared.models import CommandResult, Device, ErrorCode, LockOperation
from shared.utils import ensure_utc
from .base import Capability, DeviceConfigError, ProviderAdapter, blob_int, blob_str, env_flag, env_int
from .http import VendorCallError, call_vendor

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.nuki.io"

ACTION_UNLOCK = 1
ACTION_LOCK = 2
KEYPAD_AUTH_TYPE = 13
ALL_WEEK_DAYS = 127


def generate_keypad_code() -> str:
    """Random 6-digit keypad code: digits 1-9 only and never starting with '12'."""
    while True:
        code = "".join(secrets.choice("123456789") for _ in range(6))
        if not code.startswith("12"):
            return code


class NukiAdapter(ProviderAdapter):
    """Adapter for Nuki smart locks through the Nuki Web API."""

    name = "NUKI"
    capabilities = frozenset(
        {Capability.OPEN, Capability.CLOSE, Capability.STATUS, Capability.GENERATE_CODE}
    )

    def __init__(self, env: Mapping[str, str], transport: Any = None) -> None:
        super().__init__(transport)
        self.api_url = (env.get("IOT_NUKI_API_URL") or DEFAULT_API_URL).rstrip("/")
        self.api_token: Optional[str] = env.get("IOT_NUKI_API_TOKEN") or None
        self.timeout_s = env_int(env, "IOT_NUKI_TIMEOUT", 5000) / 1000.0

        if not env_flag(env, "IOT_NUKI_ENABLED"):
            logger.warning("Nuki provider disabled (IOT_NUKI_ENABLED is not 'true')")
            return
        if not self.api_token:
            logger.error("Nuki provider enabled but IOT_NUKI_API_TOKEN is missing")
            return
        self._enabled = True
        logger.info("Nuki provider initialized")

    def _smartlock_id(self, device: Device, config: Dict[str, Any]) -> Optional[str]:
        return blob_str(config, "smartlockId") or blob_str(config, "deviceId") or device.external_id or None

    @track_vendor_latency()
    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        return await call_vendor(
            method,
            path,
            base_url=self.api_url,
            headers={"Authorization": f"Bearer {self.api_token}"},
            timeout_s=self.timeout_s,
            transport=self._transport,
            **kwargs,
        )

    async def _action(self, device: Device, operation: LockOperation, action: int) -> CommandResult:
        try:
            smartlock_id = self._smartlock_id(device, self.device_config(device))
        except DeviceConfigError as e:
            return self.invalid_config(operation, device, e)
        if not smartlock_id:
            return self.failure(
                operation,
                ErrorCode.VENDOR_ERROR,
                message=f"Device {device.id} has no Nuki smartlock id configured",
            )
        try:
            await self._request("POST", f"/smartlock/{smartlock_id}/action", json={"action": action})
        except VendorCallError as e:
            logger.error(
                f"Nuki action {action} failed for smartlock {smartlock_id}: {e.message}",
                extra={'provider': self.name, 'device_id': device.id},
            )
            return self.failure(
                operation, e.code, message="Lock did not accept the command", metadata=e.to_metadata()
            )
        verb = "unlocked" if operation == LockOperation.OPEN else "locked"
        return self.ok(
            operation, f"Lock {verb} successfully", metadata={"smartlockId": smartlock_id, "action": action}
        )

    async def open(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.OPEN)
        try:
            action = blob_int(self.device_config(device), "action", ACTION_UNLOCK)
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.OPEN, device, e)
        return await self._action(device, LockOperation.OPEN, action)

    async def close(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.CLOSE)
        return await self._action(device, LockOperation.CLOSE, ACTION_LOCK)

    async def status(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.STATUS)
        try:
            smartlock_id = self._smartlock_id(device, self.device_config(device))
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.STATUS, device, e)
        if not smartlock_id:
            return self.failure(
                LockOperation.STATUS,
                ErrorCode.VENDOR_ERROR,
                message=f"Device {device.id} has no Nuki smartlock id configured",
            )
        try:
            body = await self._request("GET", f"/smartlock/{smartlock_id}")
        except VendorCallError as e:
            return self.failure(
                LockOperation.STATUS, e.code, message="Failed to read status", metadata=e.to_metadata()
            )
        body = body if isinstance(body, dict) else {}
        return self.ok(
            LockOperation.STATUS,
            "Status retrieved",
            metadata={"smartlockId": smartlock_id, "state": body.get("state")},
        )

    async def generate_access_code(
        self, device: Device, valid_from: datetime, valid_to: datetime
    ) -> CommandResult:
        """
        Create a keypad authorization valid between `valid_from` and `valid_to`.

        Returns:
            CommandResult: On success the code and its window are in metadata; the code is
            shown to staff once and is not stored by the gateway.
        """
        if not self._enabled:
            return self.disabled(LockOperation.GENERATE_CODE)
        config = self.device_config(device)
        try:
            smartlock_id = self._smartlock_id(device, config)
            code_name = blob_str(config, "codeName", "Guest")
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.GENERATE_CODE, device, e)
        if not smartlock_id:
            return self.failure(
                LockOperation.GENERATE_CODE,
                ErrorCode.VENDOR_ERROR,
                message=f"Device {device.id} has no Nuki smartlock id configured",
            )

        code = generate_keypad_code()
        valid_from = ensure_utc(valid_from)
        valid_to = ensure_utc(valid_to)
        payload = {
            "name": code_name,
            "type": KEYPAD_AUTH_TYPE,
            "code": int(code),
            "allowedFromDate": valid_from.isoformat(),
            "allowedUntilDate": valid_to.isoformat(),
            "allowedWeekDays": ALL_WEEK_DAYS,
            "allowedFromTime": 0,
            "allowedUntilTime": 0,
        }
        try:
            await self._request("PUT", f"/smartlock/{smartlock_id}/auth", json=payload)
        except VendorCallError as e:
            logger.error(
                f"Nuki keypad code creation failed for smartlock {smartlock_id}: {e.message}",
                extra={'provider': self.name, 'device_id': device.id},
            )
            return self.failure(
                LockOperation.GENERATE_CODE,
                e.code,
                message="Failed to create access code",
                metadata=e.to_metadata(),
            )
        return self.ok(
            LockOperation.GENERATE_CODE,
            "Access code created",
            metadata={
                "smartlockId": smartlock_id,
                "code": code,
                "validFrom": valid_from.isoformat(),
                "validTo": valid_to.isoformat(),
            },
        )
