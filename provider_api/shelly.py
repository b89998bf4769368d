"""
Shelly relay adapter (local HTTP or Shelly Cloud).

Per-device configuration blob:
    mode      "local" (default) or "cloud"
    channel   relay channel, default 0
    deviceId  local IP address (local mode) or cloud device id; defaults to external_id
    username / password   optional basic auth for local devices

Local mode:  GET http://{ip}/relay/{channel}?turn=on       status: GET http://{ip}/status
Cloud mode:  POST {IOT_SHELLY_CLOUD_URL}/device/relay/control {id, channel, turn}
             status: GET {IOT_SHELLY_CLOUD_URL}/device/status?id=...
"""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from monitoring.metrics import track_vendor_latency
from shared.models import CommandResult, Device, ErrorCode, LockOperation
from .base import (
    Capability,
    DeviceConfigError,
    ProviderAdapter,
    blob_int,
    blob_str,
    env_flag,
    env_int,
)
from .http import VendorCallError, call_vendor

logger = logging.getLogger(__name__)

DEFAULT_CLOUD_URL = "https://shelly-api-cloud.shelly.cloud"


class ShellyAdapter(ProviderAdapter):
    """Relay adapter for Shelly devices; no retries."""

    name = "SHELLY"
    capabilities = frozenset({Capability.OPEN, Capability.STATUS})

    def __init__(self, env: Mapping[str, str], transport: Any = None) -> None:
        super().__init__(transport)
        self.cloud_url = (env.get("IOT_SHELLY_CLOUD_URL") or DEFAULT_CLOUD_URL).rstrip("/")
        self.api_key: Optional[str] = env.get("IOT_SHELLY_API_KEY") or None
        self.timeout_s = env_int(env, "IOT_SHELLY_TIMEOUT", 5000) / 1000.0

        if not env_flag(env, "IOT_SHELLY_ENABLED"):
            logger.warning("Shelly provider disabled (IOT_SHELLY_ENABLED is not 'true')")
            return
        self._enabled = True
        logger.info("Shelly provider initialized")

    def _target(self, device: Device, config: Dict[str, Any]) -> Optional[str]:
        return blob_str(config, "deviceId") or device.external_id

    def _cloud_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    @track_vendor_latency()
    async def _switch_on(self, target: str, channel: int, config: Dict[str, Any]) -> Any:
        if config.get("mode", "local") == "cloud":
            return await call_vendor(
                "POST",
                f"{self.cloud_url}/device/relay/control",
                headers=self._cloud_headers(),
                timeout_s=self.timeout_s,
                transport=self._transport,
                json={"id": target, "channel": channel, "turn": "on"},
            )

        auth = None
        username, password = blob_str(config, "username"), blob_str(config, "password")
        if username and password:
            auth = httpx.BasicAuth(username, password)
        return await call_vendor(
            "GET",
            f"http://{target}/relay/{channel}",
            auth=auth,
            timeout_s=self.timeout_s,
            transport=self._transport,
            params={"turn": "on"},
        )

    async def open(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.OPEN)
        config = self.device_config(device)
        try:
            target = self._target(device, config)
            channel = blob_int(config, "channel", 0)
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.OPEN, device, e)
        if not target:
            return self.failure(
                LockOperation.OPEN,
                ErrorCode.VENDOR_ERROR,
                message=f"Device {device.id} has no Shelly address configured",
            )

        try:
            body = await self._switch_on(target, channel, config)
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.OPEN, device, e)
        except VendorCallError as e:
            logger.error(
                f"Shelly open failed for device {device.id}: {e.message}",
                extra={'provider': self.name, 'device_id': device.id},
            )
            return self.failure(
                LockOperation.OPEN, e.code, message="Failed to open door", metadata=e.to_metadata()
            )

        # Local relays echo their state; cloud answers with isok.
        if isinstance(body, dict) and (body.get("ison") is False or body.get("isok") is False):
            return self.failure(
                LockOperation.OPEN,
                ErrorCode.VENDOR_ERROR,
                message="Relay did not switch on",
                metadata={"vendor_response": body},
            )
        return self.ok(
            LockOperation.OPEN,
            "Relay activated",
            metadata={"mode": config.get("mode", "local"), "channel": channel},
        )

    async def status(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.STATUS)
        config = self.device_config(device)
        try:
            target = self._target(device, config)
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.STATUS, device, e)
        if not target:
            return self.failure(
                LockOperation.STATUS,
                ErrorCode.VENDOR_ERROR,
                message=f"Device {device.id} has no Shelly address configured",
            )

        try:
            if config.get("mode", "local") == "cloud":
                body = await call_vendor(
                    "GET",
                    f"{self.cloud_url}/device/status",
                    headers=self._cloud_headers(),
                    timeout_s=self.timeout_s,
                    transport=self._transport,
                    params={"id": target},
                )
            else:
                body = await call_vendor(
                    "GET",
                    f"http://{target}/status",
                    timeout_s=self.timeout_s,
                    transport=self._transport,
                )
        except VendorCallError as e:
            return self.failure(
                LockOperation.STATUS, e.code, message="Failed to read status", metadata=e.to_metadata()
            )
        return self.ok(LockOperation.STATUS, "Status retrieved", metadata={"state": body})
