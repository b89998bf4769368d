"""
Raixer intercom / door opener adapter.

Raixer exposes a cloud REST API keyed by an API key. The only supported action is opening:

    POST {IOT_RAIXER_API_URL}/locks/{external_id}/open
    X-API-Key: {IOT_RAIXER_API_KEY}

The response carries `lockId` and `batteryLevel`, which are surfaced in result metadata.
Raixer is the one adapter that retries: up to IOT_RAIXER_MAX_RETRIES attempts with
exponential backoff (0.5s, 1s, 2s...). Each attempt is bounded by IOT_RAIXER_TIMEOUT
(milliseconds).
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from monitoring.metrics import track_vendor_latency
from shared.models import CommandResult, Device, ErrorCode, LockOperation
from .base import Capability, ProviderAdapter, env_flag, env_int
from .http import call_vendor
from .retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)


class RaixerAdapter(ProviderAdapter):
    """Open-only adapter for Raixer devices, with bounded retries."""

    name = "RAIXER"
    capabilities = frozenset({Capability.OPEN})

    def __init__(
        self,
        env: Mapping[str, str],
        transport: Any = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        super().__init__(transport)
        self._sleep = sleep
        self.api_url: Optional[str] = None
        self.api_key: Optional[str] = None
        self.timeout_s = env_int(env, "IOT_RAIXER_TIMEOUT", 5000) / 1000.0
        self.retry_policy = RetryPolicy.single(self.timeout_s)

        if not env_flag(env, "IOT_RAIXER_ENABLED"):
            logger.warning("Raixer provider disabled (IOT_RAIXER_ENABLED is not 'true')")
            return

        api_url = env.get("IOT_RAIXER_API_URL")
        api_key = env.get("IOT_RAIXER_API_KEY")
        if not api_url or not api_key:
            logger.error(
                "Raixer provider enabled but credentials are missing "
                "(IOT_RAIXER_API_URL, IOT_RAIXER_API_KEY)"
            )
            return

        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.retry_policy = RetryPolicy(
            max_attempts=max(1, env_int(env, "IOT_RAIXER_MAX_RETRIES", 3)),
            base_delay_s=0.5,
            attempt_timeout_s=self.timeout_s,
        )
        self._enabled = True
        logger.info(
            f"Raixer provider initialized (max attempts: {self.retry_policy.max_attempts})"
        )

    @track_vendor_latency()
    async def _post_open(self, external_id: str) -> Dict[str, Any]:
        return await call_vendor(
            "POST",
            f"/locks/{external_id}/open",
            base_url=self.api_url,
            headers={"X-API-Key": self.api_key},
            timeout_s=self.timeout_s,
            transport=self._transport,
        )

    async def open(self, device: Device) -> CommandResult:
        if not self._enabled:
            return self.disabled(LockOperation.OPEN)
        if not device.external_id:
            return self.failure(
                LockOperation.OPEN,
                ErrorCode.VENDOR_ERROR,
                message=f"Device {device.id} has no Raixer external id configured",
            )

        outcome = await run_with_retry(
            lambda: self._post_open(device.external_id),
            self.retry_policy,
            provider=self.name,
            sleep=self._sleep,
        )

        if outcome.succeeded:
            body = outcome.value if isinstance(outcome.value, dict) else {}
            return self.ok(
                LockOperation.OPEN,
                "Door opened successfully",
                metadata={
                    "lockId": body.get("lockId"),
                    "batteryLevel": body.get("batteryLevel"),
                    "attempts": outcome.attempts,
                },
                retries=outcome.retries,
            )

        error = outcome.last_error
        logger.error(
            f"Raixer open failed for device {device.id} after {outcome.attempts} attempts: "
            f"{error.message}",
            extra={'provider': self.name, 'device_id': device.id},
        )
        metadata = error.to_metadata()
        metadata["attempts"] = outcome.attempts
        return self.failure(
            LockOperation.OPEN,
            error.code,
            message=f"Failed to open door after {outcome.attempts} attempts",
            metadata=metadata,
            retries=outcome.retries,
        )
