"""
Tests for `core/credential_gate.py` - the one-time unlock sequence.

Covers the terminal states (success, invalid token, binding not found, dispatch failed), the
single-use guarantee under concurrency, and which attempts leave an access log entry.
"""

import asyncio
import sqlite3
from datetime import timedelta
from unittest.mock import patch

import pytest

from core.credential_gate import CredentialGate
from core.errors import BindingNotFoundError, CredentialRejectedError, DispatchFailedError
from core.orchestrator import CommandOrchestrator
from provider_api.mock_client import MockLockAdapter
from provider_api.registry import ProviderRegistry
from provider_api.shelly import ShellyAdapter
from services.audit import AuditSink
from shared.models import AccessAction, Device, ErrorCode
from shared.utils import utc_now

TOKEN = "guest-token"


@pytest.fixture
def mock_adapter():
    return MockLockAdapter()


@pytest.fixture
def gate(seeded_store, mock_adapter):
    audit = AuditSink(seeded_store)
    orchestrator = CommandOrchestrator(seeded_store, ProviderRegistry([mock_adapter]), audit)
    return CredentialGate(seeded_store, orchestrator, audit)


def test_valid_token_opens_once_then_is_rejected(gate, seeded_store, mock_adapter):
    result = asyncio.run(gate.open_lock("sol-101", "door-1", TOKEN, ip_address="203.0.113.5"))

    assert result.success is True
    assert mock_adapter.state_of("door-1") == "unlocked"
    assert seeded_store.get_credential("cred-1").revoked is True

    with pytest.raises(CredentialRejectedError):
        asyncio.run(gate.open_lock("sol-101", "door-1", TOKEN))
    assert mock_adapter.open_calls == 1

    actions = [e.action for e in seeded_store.list_access_logs(device_id="door-1")]
    assert actions == [AccessAction.UNLOCK_UNAUTHORIZED, AccessAction.UNLOCK]


def test_success_log_carries_origin(gate, seeded_store):
    asyncio.run(gate.open_lock("sol-101", "door-1", TOKEN, ip_address="203.0.113.5"))

    entry = seeded_store.list_access_logs(device_id="door-1")[0]
    assert entry.success is True
    assert entry.ip_address == "203.0.113.5"
    assert entry.user_agent == "public-api"
    assert entry.unit_id == "unit-1"


def test_binding_violation_is_not_found_and_not_logged(gate, seeded_store, mock_adapter):
    with pytest.raises(BindingNotFoundError):
        asyncio.run(gate.open_lock("luna-202", "door-1", TOKEN))

    assert seeded_store.get_credential("cred-1").revoked is False
    assert seeded_store.list_access_logs() == []
    assert mock_adapter.open_calls == 0


def test_unknown_token_is_logged_as_unauthorized(gate, seeded_store):
    with pytest.raises(CredentialRejectedError):
        asyncio.run(gate.open_lock("sol-101", "door-1", "wrong-token", ip_address="198.51.100.7"))

    entries = seeded_store.list_access_logs()
    assert len(entries) == 1
    assert entries[0].action == AccessAction.UNLOCK_UNAUTHORIZED
    assert entries[0].success is False
    assert entries[0].user_agent == "public-api-unauthorized"


def test_unknown_slug_skips_unauthorized_log(gate, seeded_store):
    with pytest.raises(CredentialRejectedError):
        asyncio.run(gate.open_lock("no-such-unit", "door-1", "wrong-token"))
    assert seeded_store.list_access_logs() == []


def test_expired_token_is_rejected(gate, seeded_store):
    now = utc_now()
    seeded_store.add_credential("door-1", "old-token", now - timedelta(days=3), now - timedelta(days=1))

    with pytest.raises(CredentialRejectedError):
        asyncio.run(gate.open_lock("sol-101", "door-1", "old-token"))


def test_failed_dispatch_keeps_token_usable(gate, seeded_store):
    seeded_store.upsert_device(Device(id="door-1", vendor="MOCK", unit_id="unit-1", config={"fail": True}))

    with pytest.raises(DispatchFailedError) as exc_info:
        asyncio.run(gate.open_lock("sol-101", "door-1", TOKEN))

    assert exc_info.value.code == ErrorCode.VENDOR_ERROR
    assert seeded_store.get_credential("cred-1").revoked is False
    assert seeded_store.list_access_logs()[0].action == AccessAction.UNLOCK_FAILED

    seeded_store.upsert_device(Device(id="door-1", vendor="MOCK", unit_id="unit-1"))
    result = asyncio.run(gate.open_lock("sol-101", "door-1", TOKEN))
    assert result.success is True
    assert seeded_store.get_credential("cred-1").revoked is True


def test_malformed_vendor_config_releases_token_and_is_logged(seeded_store):
    audit = AuditSink(seeded_store)
    registry = ProviderRegistry([ShellyAdapter({"IOT_SHELLY_ENABLED": "true"})])
    gate = CredentialGate(seeded_store, CommandOrchestrator(seeded_store, registry, audit), audit)
    seeded_store.upsert_device(
        Device(id="door-1", vendor="SHELLY", external_id="10.0.0.2", unit_id="unit-1", config={"channel": "front"})
    )

    with pytest.raises(DispatchFailedError) as exc_info:
        asyncio.run(gate.open_lock("sol-101", "door-1", TOKEN))

    assert exc_info.value.code == ErrorCode.VENDOR_ERROR
    assert seeded_store.get_credential("cred-1").revoked is False
    assert [e.action for e in seeded_store.list_access_logs()] == [AccessAction.UNLOCK_FAILED]


def test_release_error_still_reports_dispatch_failure(gate, seeded_store):
    seeded_store.upsert_device(Device(id="door-1", vendor="MOCK", unit_id="unit-1", config={"fail": True}))

    with patch.object(seeded_store, "release_credential", side_effect=sqlite3.OperationalError("database is locked")):
        with pytest.raises(DispatchFailedError):
            asyncio.run(gate.open_lock("sol-101", "door-1", TOKEN))

    assert seeded_store.get_credential("cred-1").revoked is True


def test_concurrent_requests_with_same_token_open_once(gate, seeded_store, mock_adapter):
    seeded_store.upsert_device(Device(id="door-1", vendor="MOCK", unit_id="unit-1", config={"delay_s": 0.05}))

    async def race():
        return await asyncio.gather(
            gate.open_lock("sol-101", "door-1", TOKEN),
            gate.open_lock("sol-101", "door-1", TOKEN),
            return_exceptions=True,
        )

    outcomes = asyncio.run(race())

    successes = [o for o in outcomes if not isinstance(o, Exception)]
    rejections = [o for o in outcomes if isinstance(o, CredentialRejectedError)]
    assert len(successes) == 1
    assert len(rejections) == 1
    assert mock_adapter.open_calls == 1


def test_cancelled_dispatch_keeps_token_consumed(gate, seeded_store):
    seeded_store.upsert_device(Device(id="door-1", vendor="MOCK", unit_id="unit-1", config={"delay_s": 5}))

    async def cancel_midway():
        task = asyncio.create_task(gate.open_lock("sol-101", "door-1", TOKEN))
        while not seeded_store.get_credential("cred-1").revoked:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(cancel_midway())
    assert seeded_store.get_credential("cred-1").revoked is True
