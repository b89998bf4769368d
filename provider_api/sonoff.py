"""
Sonoff (eWeLink) adapter.

Two transports are supported, selected by the device blob's `mode`:

- cloud (default): POST {IOT_SONOFF_CLOUD_URL}/v2/device/thing/status with a bearer token
  taken from the blob's `authToken` or IOT_SONOFF_AUTH_TOKEN.
- ihost: POST http://{ihostIp}/api/v1/devices/{id}/action on an eWeLink iHost bridge,
  authenticated with the blob's `ihostToken` or IOT_SONOFF_IHOST_TOKEN.

LAN mode (encrypted local protocol) is not implemented and answers UNSUPPORTED_OPERATION.
"""

import logging
from typing import Any, Mapping, Optional

from monitoring.metrics import track_vendor_latency
from shared.models import CommandResult, Device, ErrorCode, LockOperation
from .base import Capability, DeviceConfigError, ProviderAdapter, blob_str, env_flag, env_int
from .http import VendorCallError, call_vendor

logger = logging.getLogger(__name__)

DEFAULT_CLOUD_URL = "https://eu-apia.coolkit.cc"


class SonoffAdapter(ProviderAdapter):
    """Switch adapter for Sonoff devices through eWeLink cloud or an iHost bridge."""

    name = "SONOFF"
    capabilities = frozenset({Capability.OPEN, Capability.STATUS})

    def __init__(self, env: Mapping[str, str], transport: Any = None) -> None:
        super().__init__(transport)
        self.cloud_url = (env.get("IOT_SONOFF_CLOUD_URL") or DEFAULT_CLOUD_URL).rstrip("/")
        self.region = env.get("IOT_SONOFF_REGION") or "eu"
        self.auth_token: Optional[str] = env.get("IOT_SONOFF_AUTH_TOKEN") or None
        self.ihost_ip: Optional[str] = env.get("IOT_SONOFF_IHOST_IP") or None
        self.ihost_token: Optional[str] = env.get("IOT_SONOFF_IHOST_TOKEN") or None
        self.timeout_s = env_int(env, "IOT_SONOFF_TIMEOUT", 5000) / 1000.0

        if not env_flag(env, "IOT_SONOFF_ENABLED"):
            logger.warning("Sonoff provider disabled (IOT_SONOFF_ENABLED is not 'true')")
            return
        self._enabled = True
        logger.info(f"Sonoff provider initialized (region: {self.region})")

    @track_vendor_latency()
    async def _cloud_switch(self, device_id: str, token: str) -> Any:
        return await call_vendor(
            "POST",
            f"{self.cloud_url}/v2/device/thing/status",
            headers={"Authorization": f"Bearer {token}"},
            timeout_s=self.timeout_s,
            transport=self._transport,
            json={"type": 1, "id": device_id, "params": {"switch": "on"}},
        )

    @track_vendor_latency()
    async def _ihost_switch(self, device_id: str, ihost_ip: str, token: Optional[str]) -> Any:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return await call_vendor(
            "POST",
            f"http://{ihost_ip}/api/v1/devices/{device_id}/action",
            headers=headers,
            timeout_s=self.timeout_s,
            transport=self._transport,
            json={"action": "switch", "params": {"switch": "on"}},
        )

    async def open(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.OPEN)
        config = self.device_config(device)
        try:
            mode = blob_str(config, "mode", "cloud")
            device_id = blob_str(config, "deviceId") or device.external_id
            ihost_ip = blob_str(config, "ihostIp") or self.ihost_ip
            ihost_token = blob_str(config, "ihostToken") or self.ihost_token
            token = blob_str(config, "authToken") or self.auth_token
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.OPEN, device, e)
        if not device_id:
            return self.failure(
                LockOperation.OPEN,
                ErrorCode.VENDOR_ERROR,
                message=f"Device {device.id} has no Sonoff device id configured",
            )

        if mode == "lan":
            return self.failure(
                LockOperation.OPEN,
                ErrorCode.UNSUPPORTED_OPERATION,
                message="Sonoff LAN mode is not supported; use cloud or ihost",
            )

        try:
            if mode == "ihost":
                if not ihost_ip:
                    return self.failure(
                        LockOperation.OPEN,
                        ErrorCode.VENDOR_ERROR,
                        message="Sonoff iHost address is not configured",
                    )
                body = await self._ihost_switch(device_id, ihost_ip, ihost_token)
            else:
                if not token:
                    return self.failure(
                        LockOperation.OPEN,
                        ErrorCode.VENDOR_ERROR,
                        message="Sonoff auth token is not configured",
                    )
                body = await self._cloud_switch(device_id, token)
        except VendorCallError as e:
            logger.error(
                f"Sonoff open failed for device {device.id}: {e.message}",
                extra={'provider': self.name, 'device_id': device.id},
            )
            return self.failure(
                LockOperation.OPEN, e.code, message="Failed to open door", metadata=e.to_metadata()
            )

        # eWeLink reports failures in-band with a non-zero `error` field.
        if isinstance(body, dict) and body.get("error") not in (None, 0):
            return self.failure(
                LockOperation.OPEN,
                ErrorCode.VENDOR_ERROR,
                message="Sonoff rejected the command",
                metadata={"vendor_error": body.get("error"), "vendor_message": body.get("msg")},
            )
        return self.ok(LockOperation.OPEN, "Switch activated", metadata={"mode": mode})

    async def status(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.STATUS)
        config = self.device_config(device)
        try:
            device_id = blob_str(config, "deviceId") or device.external_id
            token = blob_str(config, "authToken") or self.auth_token
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.STATUS, device, e)
        if not device_id or not token:
            return self.failure(
                LockOperation.STATUS,
                ErrorCode.VENDOR_ERROR,
                message="Sonoff device id or auth token is not configured",
            )

        try:
            body = await call_vendor(
                "GET",
                f"{self.cloud_url}/v2/device/thing",
                headers={"Authorization": f"Bearer {token}"},
                timeout_s=self.timeout_s,
                transport=self._transport,
                params={"id": device_id},
            )
        except VendorCallError as e:
            return self.failure(
                LockOperation.STATUS, e.code, message="Failed to read status", metadata=e.to_metadata()
            )
        state = body.get("data", body) if isinstance(body, dict) else body
        return self.ok(LockOperation.STATUS, "Status retrieved", metadata={"state": state})
