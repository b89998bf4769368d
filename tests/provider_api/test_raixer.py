"""
Tests for `provider_api/raixer.py` and the retry helper it runs on.

Vendor traffic goes through `httpx.MockTransport`; the backoff sleep is replaced by a recorder
so no test actually waits.
"""

import asyncio

import httpx
import pytest

from provider_api.raixer import RaixerAdapter
from provider_api.http import VendorCallError
from provider_api.retry import RetryPolicy, run_with_retry
from shared.models import Device, ErrorCode, LockOperation

ENV = {
    "IOT_RAIXER_ENABLED": "true",
    "IOT_RAIXER_API_URL": "https://raixer.test/api",
    "IOT_RAIXER_API_KEY": "raixer-key",
    "IOT_RAIXER_MAX_RETRIES": "3",
}

DEVICE = Device(id="door-1", vendor="RAIXER", external_id="ext-9", unit_id="unit-1")


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_adapter(handler, env=None, sleep=None):
    return RaixerAdapter(env or ENV, transport=httpx.MockTransport(handler), sleep=sleep or SleepRecorder())


def test_disabled_without_flag_or_secrets():
    assert not RaixerAdapter({}).is_enabled()
    assert not RaixerAdapter({"IOT_RAIXER_ENABLED": "true", "IOT_RAIXER_API_URL": "https://x"}).is_enabled()
    assert RaixerAdapter(ENV).is_enabled()


def test_open_posts_to_lock_endpoint_with_api_key():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"lockId": "L-1", "batteryLevel": 87})

    result = asyncio.run(make_adapter(handler).open(DEVICE))

    assert result.success is True
    assert result.retries == 0
    assert result.metadata["lockId"] == "L-1"
    assert result.metadata["batteryLevel"] == 87
    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/locks/ext-9/open"
    assert seen[0].headers["X-API-Key"] == "raixer-key"


def test_two_timeouts_then_success_reports_two_retries():
    attempts = {"count": 0}
    sleep = SleepRecorder()

    def handler(request):
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise httpx.ReadTimeout("vendor too slow", request=request)
        return httpx.Response(200, json={"lockId": "L-1", "batteryLevel": 50})

    result = asyncio.run(make_adapter(handler, sleep=sleep).open(DEVICE))

    assert result.success is True
    assert result.retries == 2
    assert attempts["count"] == 3
    assert sleep.delays == [0.5, 1.0]


def test_all_attempts_fail_reports_max_minus_one_retries():
    def handler(request):
        return httpx.Response(503, json={"message": "gateway offline"})

    result = asyncio.run(make_adapter(handler).open(DEVICE))

    assert result.success is False
    assert result.operation == LockOperation.OPEN
    assert result.error == ErrorCode.VENDOR_ERROR
    assert result.retries == 2
    assert result.metadata["vendor_status"] == 503
    assert result.metadata["vendor_message"] == "gateway offline"


def test_attempt_timeout_is_enforced():
    async def handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    env = dict(ENV, IOT_RAIXER_TIMEOUT="20", IOT_RAIXER_MAX_RETRIES="2")
    result = asyncio.run(make_adapter(handler, env=env).open(DEVICE))

    assert result.success is False
    assert result.error == ErrorCode.TIMEOUT
    assert result.retries == 1


def test_malformed_response_is_vendor_error():
    def handler(request):
        return httpx.Response(200, text="<html>oops</html>")

    env = dict(ENV, IOT_RAIXER_MAX_RETRIES="1")
    result = asyncio.run(make_adapter(handler, env=env).open(DEVICE))

    assert result.success is False
    assert result.error == ErrorCode.VENDOR_ERROR
    assert result.retries == 0


def test_missing_external_id_fails_without_network():
    def handler(request):
        raise AssertionError("no request expected")

    device = Device(id="door-x", vendor="RAIXER", unit_id="unit-1")
    result = asyncio.run(make_adapter(handler).open(device))

    assert result.success is False
    assert result.error == ErrorCode.VENDOR_ERROR


def test_disabled_adapter_returns_provider_disabled():
    result = asyncio.run(RaixerAdapter({}).open(DEVICE))
    assert result.error == ErrorCode.PROVIDER_DISABLED


def test_retry_policy_delays_double():
    policy = RetryPolicy(max_attempts=4, base_delay_s=0.5)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]
    assert RetryPolicy.single().max_attempts == 1


def test_backoff_wait_is_cancellable():
    calls = {"count": 0}

    async def failing_call():
        calls["count"] += 1
        raise VendorCallError(ErrorCode.VENDOR_ERROR, "down")

    async def scenario():
        policy = RetryPolicy(max_attempts=5, base_delay_s=10.0)
        task = asyncio.create_task(run_with_retry(failing_call, policy, provider="RAIXER"))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert calls["count"] == 1
