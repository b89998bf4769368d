"""
Home Assistant adapter.

Calls the Home Assistant REST API with a long-lived access token:

    POST {IOT_HA_URL}/api/services/{domain}/{service}   {"entity_id": ...}
    GET  {IOT_HA_URL}/api/states/{entity_id}

The entity id comes from the device blob (`entityId`, then `deviceId`) or the device's
external id. The service is derived from the entity domain.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from monitoring.metrics import track_vendor_latency
from shared.models import CommandResult, Device, ErrorCode, LockOperation
from .base import Capability, DeviceConfigError, ProviderAdapter, blob_str, env_flag, env_int
from .http import VendorCallError, call_vendor

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://homeassistant.local:8123"

OPEN_SERVICES = {"lock": "unlock", "switch": "turn_on", "cover": "open_cover"}
CLOSE_SERVICES = {"lock": "lock", "switch": "turn_off", "cover": "close_cover"}


class HomeAssistantAdapter(ProviderAdapter):
    """Adapter for lock, switch and cover entities exposed by Home Assistant."""

    name = "HOME_ASSISTANT"
    capabilities = frozenset({Capability.OPEN, Capability.CLOSE, Capability.STATUS})

    def __init__(self, env: Mapping[str, str], transport: Any = None) -> None:
        super().__init__(transport)
        self.base_url = (env.get("IOT_HA_URL") or DEFAULT_URL).rstrip("/")
        self.access_token: Optional[str] = env.get("IOT_HA_ACCESS_TOKEN") or None
        self.timeout_s = env_int(env, "IOT_HA_TIMEOUT", 5000) / 1000.0

        if not env_flag(env, "IOT_HA_ENABLED"):
            logger.warning("Home Assistant provider disabled (IOT_HA_ENABLED is not 'true')")
            return
        if not self.access_token:
            logger.error("Home Assistant provider enabled but IOT_HA_ACCESS_TOKEN is missing")
            return
        self._enabled = True
        logger.info(f"Home Assistant provider initialized ({self.base_url})")

    def _entity_id(self, device: Device, config: Dict[str, Any]) -> Optional[str]:
        return blob_str(config, "entityId") or blob_str(config, "deviceId") or device.external_id

    @track_vendor_latency()
    async def _call_service(self, domain: str, service: str, entity_id: str) -> Any:
        return await call_vendor(
            "POST",
            f"/api/services/{domain}/{service}",
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.access_token}"},
            timeout_s=self.timeout_s,
            transport=self._transport,
            json={"entity_id": entity_id},
        )

    async def _run_service(
        self, device: Device, operation: LockOperation, services: Dict[str, str], verb: str
    ) -> CommandResult:
        if not self._enabled:
            return self.disabled(operation)
        config = self.device_config(device)
        try:
            entity_id = self._entity_id(device, config)
            custom_action = blob_str(config, "action")
        except DeviceConfigError as e:
            return self.invalid_config(operation, device, e)
        if not entity_id:
            return self.failure(
                operation,
                ErrorCode.VENDOR_ERROR,
                message=f"Device {device.id} has no Home Assistant entity configured",
            )

        domain = entity_id.split(".", 1)[0]
        service = services.get(domain)
        if service is None:
            # Unknown domains: the blob's action, else the generic toggle service.
            if operation == LockOperation.OPEN:
                service = custom_action or "turn_on"
            else:
                service = "turn_off"

        try:
            await self._call_service(domain, service, entity_id)
        except VendorCallError as e:
            logger.error(
                f"Home Assistant {domain}.{service} failed for {entity_id}: {e.message}",
                extra={'provider': self.name, 'device_id': device.id},
            )
            return self.failure(
                operation, e.code, message=f"Failed to {verb} device", metadata=e.to_metadata()
            )
        return self.ok(
            operation,
            f"Device {verb} command sent",
            metadata={"entity_id": entity_id, "service": f"{domain}.{service}"},
        )

    async def open(self, device: Device) -> CommandResult:
        return await self._run_service(device, LockOperation.OPEN, OPEN_SERVICES, "open")

    async def close(self, device: Device) -> CommandResult:
        return await self._run_service(device, LockOperation.CLOSE, CLOSE_SERVICES, "close")

    async def status(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.STATUS)
        try:
            entity_id = self._entity_id(device, self.device_config(device))
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.STATUS, device, e)
        if not entity_id:
            return self.failure(
                LockOperation.STATUS,
                ErrorCode.VENDOR_ERROR,
                message=f"Device {device.id} has no Home Assistant entity configured",
            )
        try:
            body = await call_vendor(
                "GET",
                f"/api/states/{entity_id}",
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout_s=self.timeout_s,
                transport=self._transport,
            )
        except VendorCallError as e:
            return self.failure(
                LockOperation.STATUS, e.code, message="Failed to read status", metadata=e.to_metadata()
            )
        body = body if isinstance(body, dict) else {}
        return self.ok(
            LockOperation.STATUS,
            "Status retrieved",
            metadata={
                "entity_id": entity_id,
                "state": body.get("state"),
                "attributes": body.get("attributes", {}),
                "last_changed": body.get("last_changed"),
            },
        )
