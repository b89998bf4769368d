"""
Generic HTTP adapter.

Drives any device that exposes a plain HTTP endpoint. Everything is configured per device
in the vendor blob, so the adapter needs no environment and is always enabled. It also serves
as the fallback for unknown vendor identifiers when `iot.fallback_to_generic` is on.

Blob keys:
    baseUrl         default "http://localhost:3000"
    method          default "POST"
    endpoint        default "/device/{id}/action"
    statusEndpoint  default "/device/{id}/status"
    headers         extra headers
    auth            {"type": "bearer", "token"} | {"type": "basic", "username", "password"}
                    | {"type": "apikey", "key"}  (sent as X-API-Key)
    body            default {"action": "unlock"}
    timeout         milliseconds, default 5000

`{id}` in endpoints is replaced by the device's external id (or its own id).
"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from monitoring.metrics import track_vendor_latency
from shared.models import CommandResult, Device, LockOperation
from .base import Capability, DeviceConfigError, ProviderAdapter, blob_dict, blob_str
from .http import VendorCallError, call_vendor

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000"
DEFAULT_ENDPOINT = "/device/{id}/action"
DEFAULT_STATUS_ENDPOINT = "/device/{id}/status"


def build_auth(auth_config: Optional[Dict[str, Any]]) -> Tuple[Dict[str, str], Optional[httpx.Auth]]:
    """
    Translate the blob's `auth` section into headers and an httpx auth object.

    Args:
        auth_config (Optional[Dict[str, Any]]): The `auth` mapping from the device blob.

    Returns:
        Tuple[Dict[str, str], Optional[httpx.Auth]]: Headers to add, and basic auth if any.

    Raises:
        DeviceConfigError: A credential field is not a string.
    """
    if not auth_config:
        return {}, None
    auth_type = str(auth_config.get("type", "")).lower()
    token = blob_str(auth_config, "token")
    if auth_type == "bearer" and token:
        return {"Authorization": f"Bearer {token}"}, None
    username = blob_str(auth_config, "username")
    if auth_type == "basic" and username:
        return {}, httpx.BasicAuth(username, blob_str(auth_config, "password", ""))
    key = blob_str(auth_config, "key")
    if auth_type == "apikey" and key:
        return {"X-API-Key": key}, None
    logger.warning(f"Ignoring unrecognized generic auth config of type '{auth_type}'")
    return {}, None


class GenericHttpAdapter(ProviderAdapter):
    """Blob-configured HTTP adapter; always enabled."""

    name = "GENERIC"
    capabilities = frozenset({Capability.OPEN, Capability.STATUS})

    def __init__(self, env: Optional[Mapping[str, str]] = None, transport: Any = None) -> None:
        super().__init__(transport)
        self._enabled = True

    @track_vendor_latency()
    async def _send(self, device: Device, config: Dict[str, Any], method: str, endpoint: str, **kwargs: Any) -> Any:
        headers, auth = build_auth(blob_dict(config, "auth"))
        headers.update({str(k): str(v) for k, v in blob_dict(config, "headers").items()})
        target = device.external_id or device.id
        try:
            timeout_s = float(config.get("timeout", 5000)) / 1000.0
        except (TypeError, ValueError):
            timeout_s = 5.0
        return await call_vendor(
            method,
            endpoint.replace("{id}", str(target)),
            base_url=blob_str(config, "baseUrl", DEFAULT_BASE_URL).rstrip("/"),
            headers=headers,
            auth=auth,
            timeout_s=timeout_s,
            transport=self._transport,
            expect_json=False,
            **kwargs,
        )

    async def open(self, device: Device) -> CommandResult:
        config = self.device_config(device)
        method = str(config.get("method", "POST")).upper()
        body = config.get("body", {"action": "unlock"})
        kwargs = {} if method in ("GET", "DELETE") else {"json": body}
        try:
            response = await self._send(
                device, config, method, blob_str(config, "endpoint", DEFAULT_ENDPOINT), **kwargs
            )
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.OPEN, device, e)
        except VendorCallError as e:
            logger.error(
                f"Generic HTTP open failed for device {device.id}: {e.message}",
                extra={'provider': self.name, 'device_id': device.id},
            )
            return self.failure(
                LockOperation.OPEN, e.code, message="Failed to open door", metadata=e.to_metadata()
            )
        return self.ok(LockOperation.OPEN, "Device opened", metadata={"response": response})

    async def status(self, device: Device) -> CommandResult:
        config = self.device_config(device)
        try:
            response = await self._send(
                device, config, "GET", blob_str(config, "statusEndpoint", DEFAULT_STATUS_ENDPOINT)
            )
        except DeviceConfigError as e:
            return self.invalid_config(LockOperation.STATUS, device, e)
        except VendorCallError as e:
            return self.failure(
                LockOperation.STATUS, e.code, message="Failed to read status", metadata=e.to_metadata()
            )
        return self.ok(LockOperation.STATUS, "Status retrieved", metadata={"state": response})
