"""
core/credential_gate.py

One-time credential gate in front of the public unlock endpoint.

Each request runs through a fixed sequence in a single pass:
1. Lookup: an unrevoked credential for (device, token hash) whose window contains now.
   Absence -> UNAUTHORIZED, audited as `unlock_unauthorized` when the slug resolves to a unit.
2. Binding: the device is active and belongs to the published unit named by the slug.
   Violation -> NOT_FOUND, not audited.
3. Claim: atomic conditional update revoked 0 -> 1. Losing the race -> UNAUTHORIZED.
4. Dispatch through the orchestrator (which audits `unlock` / `unlock_failed`).
5. A failed result releases the claim so the legitimate holder can retry. A cancelled
   dispatch keeps the credential consumed, since the physical outcome is unknown.
"""

import asyncio
from enum import Enum
from typing import Optional

from config.logging_config import get_logger
from monitoring.metrics import UNLOCK_OUTCOME_COUNT
from services.access_store import AccessStore
from services.audit import AuditSink
from shared.models import AccessAction, AccessLogEntry, CommandResult
from shared.utils import hash_token, utc_now
from .errors import BindingNotFoundError, CredentialRejectedError, DispatchFailedError
from .orchestrator import CommandOrchestrator

logger = get_logger(__name__)

PUBLIC_USER_AGENT = "public-api"
UNAUTHORIZED_USER_AGENT = "public-api-unauthorized"


class UnlockOutcome(Enum):
    """Terminal states of one public unlock request."""
    SUCCESS = "success"
    REJECTED_INVALID_TOKEN = "rejected-invalid-token"
    REJECTED_NOT_FOUND = "rejected-not-found"
    REJECTED_DISPATCH_FAILED = "rejected-dispatch-failed"


class CredentialGate:
    """Validates, consumes and audits one-time guest tokens before opening a lock."""

    def __init__(self, store: AccessStore, orchestrator: CommandOrchestrator, audit: AuditSink):
        self.store = store
        self.orchestrator = orchestrator
        self.audit = audit

    def _finish(self, outcome: UnlockOutcome, device_id: str) -> None:
        UNLOCK_OUTCOME_COUNT.labels(state=outcome.value).inc()
        logger.info(f"Unlock request for device {device_id}: {outcome.value}")

    async def _audit_unauthorized(self, slug: str, device_id: str, ip_address: Optional[str]) -> None:
        try:
            unit = await asyncio.to_thread(self.store.get_unit_by_slug, slug)
        except Exception as e:
            logger.warning(f"Could not resolve unit '{slug}' for access log: {e}")
            return
        if unit is None:
            return
        await self.audit.record(
            AccessLogEntry(
                unit_id=unit.id,
                device_id=device_id,
                action=AccessAction.UNLOCK_UNAUTHORIZED,
                success=False,
                ip_address=ip_address,
                user_agent=UNAUTHORIZED_USER_AGENT,
            )
        )

    async def _reject_token(self, slug: str, device_id: str, ip_address: Optional[str]) -> None:
        await self._audit_unauthorized(slug, device_id, ip_address)
        self._finish(UnlockOutcome.REJECTED_INVALID_TOKEN, device_id)
        raise CredentialRejectedError("Invalid or expired access token")

    async def open_lock(
        self, slug: str, device_id: str, token: str, ip_address: Optional[str] = None
    ) -> CommandResult:
        """
        Run the full unlock sequence for a guest request.

        Args:
            slug (str): Unit slug from the request.
            device_id (str): Target device id.
            token (str): Raw one-time token.
            ip_address (Optional[str]): Origin IP for the access log.

        Returns:
            CommandResult: The successful dispatch result; the credential is consumed.

        Raises:
            CredentialRejectedError: Token unknown, outside its window, revoked, or lost the claim.
            BindingNotFoundError: Device/unit binding violated.
            DispatchFailedError: The adapter reported a failure; the credential stays usable.
        """
        credential = await asyncio.to_thread(
            self.store.find_valid_credential, device_id, hash_token(token), utc_now()
        )
        if credential is None:
            await self._reject_token(slug, device_id, ip_address)

        device = await asyncio.to_thread(self.store.find_bound_device, device_id, slug)
        if device is None:
            self._finish(UnlockOutcome.REJECTED_NOT_FOUND, device_id)
            raise BindingNotFoundError("Device not found")

        claimed = await asyncio.to_thread(self.store.claim_credential, credential.id)
        if not claimed:
            logger.warning(f"Credential {credential.id} was consumed by a concurrent request")
            await self._reject_token(slug, device_id, ip_address)

        try:
            result = await self.orchestrator.open(device, ip_address, PUBLIC_USER_AGENT)
        except asyncio.CancelledError:
            logger.warning(f"Dispatch for device {device_id} cancelled; credential {credential.id} stays consumed")
            raise

        if not result.success:
            try:
                released = await asyncio.to_thread(self.store.release_credential, credential.id)
            except Exception as e:
                logger.error(f"Could not release credential {credential.id}: {e}", exc_info=True)
                released = False
            if not released:
                logger.error(f"Failed to release credential {credential.id} after a failed dispatch")
            self._finish(UnlockOutcome.REJECTED_DISPATCH_FAILED, device_id)
            raise DispatchFailedError(result)

        self._finish(UnlockOutcome.SUCCESS, device_id)
        return result
