"""
Tests for the single-attempt vendor adapters: Shelly, Sonoff, Home Assistant, Nuki, generic HTTP
and the in-memory mock.

Each test asserts the outgoing request shape (method, URL, auth header, payload) and the
classification of the vendor's answer into a CommandResult.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx

from provider_api.generic import GenericHttpAdapter
from provider_api.homeassistant import HomeAssistantAdapter
from provider_api.mock_client import MockLockAdapter
from provider_api.nuki import NukiAdapter, generate_keypad_code
from provider_api.shelly import ShellyAdapter
from provider_api.sonoff import SonoffAdapter
from shared.models import Device, ErrorCode, LockOperation


def recording_transport(response_factory):
    """MockTransport that records requests and answers with `response_factory(request)`."""
    seen = []

    def handler(request):
        seen.append(request)
        return response_factory(request)

    return httpx.MockTransport(handler), seen


# --- Shelly ---

def test_shelly_local_mode_switches_relay_with_basic_auth():
    transport, seen = recording_transport(lambda r: httpx.Response(200, json={"ison": True}))
    adapter = ShellyAdapter({"IOT_SHELLY_ENABLED": "true"}, transport=transport)
    device = Device(
        id="relay-1",
        vendor="SHELLY",
        config={"deviceId": "192.168.1.50", "channel": 1, "username": "admin", "password": "pw"},
    )

    result = asyncio.run(adapter.open(device))

    assert result.success is True
    request = seen[0]
    assert request.method == "GET"
    assert request.url.host == "192.168.1.50"
    assert request.url.path == "/relay/1"
    assert request.url.params["turn"] == "on"
    assert request.headers["Authorization"].startswith("Basic ")


def test_shelly_relay_reporting_off_is_vendor_error():
    transport, _ = recording_transport(lambda r: httpx.Response(200, json={"ison": False}))
    adapter = ShellyAdapter({"IOT_SHELLY_ENABLED": "true"}, transport=transport)
    device = Device(id="relay-1", vendor="SHELLY", external_id="10.0.0.2")

    result = asyncio.run(adapter.open(device))

    assert result.success is False
    assert result.error == ErrorCode.VENDOR_ERROR


def test_shelly_cloud_mode_posts_control_request():
    transport, seen = recording_transport(lambda r: httpx.Response(200, json={"isok": True}))
    env = {"IOT_SHELLY_ENABLED": "true", "IOT_SHELLY_API_KEY": "cloud-key"}
    adapter = ShellyAdapter(env, transport=transport)
    device = Device(id="relay-2", vendor="SHELLY", config={"mode": "cloud", "deviceId": "abc123"})

    result = asyncio.run(adapter.open(device))

    assert result.success is True
    request = seen[0]
    assert str(request.url) == "https://shelly-api-cloud.shelly.cloud/device/relay/control"
    assert request.headers["Authorization"] == "Bearer cloud-key"
    assert json.loads(request.content) == {"id": "abc123", "channel": 0, "turn": "on"}


def test_shelly_network_failure_is_vendor_error():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    adapter = ShellyAdapter({"IOT_SHELLY_ENABLED": "true"}, transport=httpx.MockTransport(handler))
    result = asyncio.run(adapter.open(Device(id="relay-1", vendor="SHELLY", external_id="10.0.0.2")))

    assert result.success is False
    assert result.error == ErrorCode.VENDOR_ERROR


def test_shelly_non_numeric_channel_is_vendor_error():
    transport, seen = recording_transport(lambda r: httpx.Response(200, json={"ison": True}))
    adapter = ShellyAdapter({"IOT_SHELLY_ENABLED": "true"}, transport=transport)
    device = Device(id="relay-1", vendor="SHELLY", external_id="10.0.0.2", config={"channel": "front"})

    result = asyncio.run(adapter.open(device))

    assert result.success is False
    assert result.error == ErrorCode.VENDOR_ERROR
    assert "channel" in result.message
    assert seen == []


def test_shelly_invalid_address_is_vendor_error():
    transport, seen = recording_transport(lambda r: httpx.Response(200, json={"ison": True}))
    adapter = ShellyAdapter({"IOT_SHELLY_ENABLED": "true"}, transport=transport)

    result = asyncio.run(adapter.open(Device(id="relay-1", vendor="SHELLY", external_id="10.0.0.5:99999")))

    assert result.success is False
    assert result.error == ErrorCode.VENDOR_ERROR
    assert seen == []


# --- Sonoff ---

def test_sonoff_cloud_mode_uses_device_token():
    transport, seen = recording_transport(lambda r: httpx.Response(200, json={"error": 0, "data": {}}))
    adapter = SonoffAdapter({"IOT_SONOFF_ENABLED": "true"}, transport=transport)
    device = Device(id="sw-1", vendor="SONOFF", external_id="1000abcd", config={"authToken": "dev-token"})

    result = asyncio.run(adapter.open(device))

    assert result.success is True
    request = seen[0]
    assert request.url.path == "/v2/device/thing/status"
    assert request.headers["Authorization"] == "Bearer dev-token"
    assert json.loads(request.content) == {"type": 1, "id": "1000abcd", "params": {"switch": "on"}}


def test_sonoff_in_band_error_is_vendor_error():
    transport, _ = recording_transport(lambda r: httpx.Response(200, json={"error": 406, "msg": "auth"}))
    env = {"IOT_SONOFF_ENABLED": "true", "IOT_SONOFF_AUTH_TOKEN": "env-token"}
    adapter = SonoffAdapter(env, transport=transport)

    result = asyncio.run(adapter.open(Device(id="sw-1", vendor="SONOFF", external_id="1000abcd")))

    assert result.success is False
    assert result.error == ErrorCode.VENDOR_ERROR
    assert result.metadata["vendor_error"] == 406


def test_sonoff_lan_mode_is_unsupported():
    adapter = SonoffAdapter({"IOT_SONOFF_ENABLED": "true"})
    device = Device(id="sw-1", vendor="SONOFF", external_id="1000abcd", config={"mode": "lan"})

    result = asyncio.run(adapter.open(device))

    assert result.error == ErrorCode.UNSUPPORTED_OPERATION


def test_sonoff_ihost_mode_posts_to_bridge():
    transport, seen = recording_transport(lambda r: httpx.Response(200, json={}))
    env = {"IOT_SONOFF_ENABLED": "true", "IOT_SONOFF_IHOST_IP": "192.168.1.9"}
    adapter = SonoffAdapter(env, transport=transport)
    device = Device(id="sw-2", vendor="SONOFF", external_id="dev-7", config={"mode": "ihost"})

    result = asyncio.run(adapter.open(device))

    assert result.success is True
    assert str(seen[0].url) == "http://192.168.1.9/api/v1/devices/dev-7/action"


# --- Home Assistant ---

HA_ENV = {"IOT_HA_ENABLED": "true", "IOT_HA_URL": "http://ha.test:8123", "IOT_HA_ACCESS_TOKEN": "ha-token"}


def test_home_assistant_requires_token():
    assert not HomeAssistantAdapter({"IOT_HA_ENABLED": "true"}).is_enabled()
    assert HomeAssistantAdapter(HA_ENV).is_enabled()


def test_home_assistant_maps_domain_to_service():
    transport, seen = recording_transport(lambda r: httpx.Response(200, json=[]))
    adapter = HomeAssistantAdapter(HA_ENV, transport=transport)
    device = Device(id="lock-1", vendor="HOME_ASSISTANT", config={"entityId": "lock.front_door"})

    opened = asyncio.run(adapter.open(device))
    closed = asyncio.run(adapter.close(device))

    assert opened.success and closed.success
    assert seen[0].url.path == "/api/services/lock/unlock"
    assert seen[1].url.path == "/api/services/lock/lock"
    assert seen[0].headers["Authorization"] == "Bearer ha-token"
    assert json.loads(seen[0].content) == {"entity_id": "lock.front_door"}


def test_home_assistant_status_reads_entity_state():
    body = {"entity_id": "switch.gate", "state": "off", "attributes": {"friendly_name": "Gate"}}
    transport, seen = recording_transport(lambda r: httpx.Response(200, json=body))
    adapter = HomeAssistantAdapter(HA_ENV, transport=transport)

    result = asyncio.run(adapter.status(Device(id="gate", vendor="HOME_ASSISTANT", external_id="switch.gate")))

    assert result.success is True
    assert result.operation == LockOperation.STATUS
    assert result.metadata["state"] == "off"
    assert seen[0].url.path == "/api/states/switch.gate"


def test_home_assistant_non_string_entity_is_vendor_error():
    transport, seen = recording_transport(lambda r: httpx.Response(200, json=[]))
    adapter = HomeAssistantAdapter(HA_ENV, transport=transport)
    device = Device(id="lock-1", vendor="HOME_ASSISTANT", config={"entityId": ["lock.front_door"]})

    result = asyncio.run(adapter.open(device))

    assert result.success is False
    assert result.error == ErrorCode.VENDOR_ERROR
    assert seen == []


# --- Nuki ---

NUKI_ENV = {"IOT_NUKI_ENABLED": "true", "IOT_NUKI_API_TOKEN": "nuki-token"}


def test_nuki_open_and_close_send_actions():
    transport, seen = recording_transport(lambda r: httpx.Response(204))
    adapter = NukiAdapter(NUKI_ENV, transport=transport)
    device = Device(id="lock-2", vendor="NUKI", config={"smartlockId": 12345})

    assert asyncio.run(adapter.open(device)).success
    assert asyncio.run(adapter.close(device)).success
    assert str(seen[0].url) == "https://api.nuki.io/smartlock/12345/action"
    assert json.loads(seen[0].content) == {"action": 1}
    assert json.loads(seen[1].content) == {"action": 2}


def test_nuki_non_numeric_action_is_vendor_error():
    transport, seen = recording_transport(lambda r: httpx.Response(204))
    adapter = NukiAdapter(NUKI_ENV, transport=transport)
    device = Device(id="lock-2", vendor="NUKI", config={"smartlockId": 12345, "action": "unlatch"})

    result = asyncio.run(adapter.open(device))

    assert result.error == ErrorCode.VENDOR_ERROR
    assert seen == []


def test_nuki_generate_access_code_creates_keypad_auth():
    transport, seen = recording_transport(lambda r: httpx.Response(204))
    adapter = NukiAdapter(NUKI_ENV, transport=transport)
    device = Device(id="lock-2", vendor="NUKI", external_id="777")
    valid_from = datetime(2026, 7, 1, 15, 0, tzinfo=timezone.utc)

    result = asyncio.run(adapter.generate_access_code(device, valid_from, valid_from + timedelta(days=3)))

    assert result.success is True
    assert result.operation == LockOperation.GENERATE_CODE
    request = seen[0]
    assert request.method == "PUT"
    assert request.url.path == "/smartlock/777/auth"
    payload = json.loads(request.content)
    assert payload["type"] == 13
    assert str(payload["code"]) == result.metadata["code"]


def test_nuki_vendor_error_carries_status():
    transport, _ = recording_transport(lambda r: httpx.Response(401, json={"detailMessage": "x"}))
    adapter = NukiAdapter(NUKI_ENV, transport=transport)

    result = asyncio.run(adapter.open(Device(id="lock-2", vendor="NUKI", external_id="777")))

    assert result.success is False
    assert result.error == ErrorCode.VENDOR_ERROR
    assert result.metadata["vendor_status"] == 401


def test_keypad_codes_avoid_forbidden_digits():
    for _ in range(200):
        code = generate_keypad_code()
        assert len(code) == 6
        assert "0" not in code
        assert not code.startswith("12")


# --- Generic HTTP ---

def test_generic_adapter_uses_blob_configuration():
    transport, seen = recording_transport(lambda r: httpx.Response(200, text="OK"))
    adapter = GenericHttpAdapter(transport=transport)
    device = Device(
        id="gate-1",
        vendor="ACME",
        external_id="g1",
        config={
            "baseUrl": "http://relay.local:9000",
            "endpoint": "/api/open/{id}",
            "method": "PUT",
            "auth": {"type": "apikey", "key": "k-1"},
            "body": {"pulse": 2},
        },
    )

    result = asyncio.run(adapter.open(device))

    assert adapter.is_enabled()
    assert result.success is True
    assert result.metadata["response"] == "OK"
    request = seen[0]
    assert request.method == "PUT"
    assert str(request.url) == "http://relay.local:9000/api/open/g1"
    assert request.headers["X-API-Key"] == "k-1"
    assert json.loads(request.content) == {"pulse": 2}


def test_generic_adapter_defaults():
    transport, seen = recording_transport(lambda r: httpx.Response(200, json={"ok": True}))
    adapter = GenericHttpAdapter(transport=transport)

    result = asyncio.run(adapter.open(Device(id="dev-5", vendor="UNKNOWN")))

    assert result.success is True
    assert str(seen[0].url) == "http://localhost:3000/device/dev-5/action"
    assert json.loads(seen[0].content) == {"action": "unlock"}


def test_generic_adapter_classifies_timeout():
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    adapter = GenericHttpAdapter(transport=httpx.MockTransport(handler))
    result = asyncio.run(adapter.open(Device(id="dev-5", vendor="UNKNOWN")))

    assert result.success is False
    assert result.error == ErrorCode.TIMEOUT


def test_generic_adapter_non_2xx_is_vendor_error():
    transport, _ = recording_transport(lambda r: httpx.Response(500, text="boom"))
    adapter = GenericHttpAdapter(transport=transport)

    result = asyncio.run(adapter.open(Device(id="dev-5", vendor="UNKNOWN")))

    assert result.error == ErrorCode.VENDOR_ERROR
    assert result.metadata["vendor_status"] == 500


def test_generic_adapter_rejects_malformed_auth_and_headers():
    transport, seen = recording_transport(lambda r: httpx.Response(200, text="OK"))
    adapter = GenericHttpAdapter(transport=transport)

    bad_auth = asyncio.run(adapter.open(Device(id="dev-5", vendor="UNKNOWN", config={"auth": "Bearer abc"})))
    bad_headers = asyncio.run(adapter.status(Device(id="dev-5", vendor="UNKNOWN", config={"headers": ["X-A: 1"]})))

    assert bad_auth.error == ErrorCode.VENDOR_ERROR
    assert bad_headers.error == ErrorCode.VENDOR_ERROR
    assert bad_headers.operation == LockOperation.STATUS
    assert seen == []


def test_generic_adapter_invalid_base_url_is_vendor_error():
    transport, seen = recording_transport(lambda r: httpx.Response(200, text="OK"))
    adapter = GenericHttpAdapter(transport=transport)
    device = Device(id="dev-5", vendor="UNKNOWN", config={"baseUrl": "http://relay.local:70000"})

    result = asyncio.run(adapter.open(device))

    assert result.success is False
    assert result.error == ErrorCode.VENDOR_ERROR
    assert seen == []


# --- Mock ---

def test_mock_adapter_tracks_state():
    adapter = MockLockAdapter()
    device = Device(id="door-1", vendor="MOCK")

    assert asyncio.run(adapter.status(device)).metadata["state"] == "locked"
    assert asyncio.run(adapter.open(device)).success
    assert adapter.state_of("door-1") == "unlocked"
    assert asyncio.run(adapter.close(device)).success
    assert adapter.state_of("door-1") == "locked"
    assert adapter.open_calls == 1


def test_mock_adapter_simulated_failure():
    adapter = MockLockAdapter()
    device = Device(id="door-1", vendor="MOCK", config={"fail": True, "error": "TIMEOUT"})

    result = asyncio.run(adapter.open(device))

    assert result.success is False
    assert result.error == ErrorCode.TIMEOUT
    assert adapter.state_of("door-1") == "locked"


def test_mock_adapter_non_numeric_delay_is_vendor_error():
    adapter = MockLockAdapter()

    result = asyncio.run(adapter.open(Device(id="door-1", vendor="MOCK", config={"delay_s": "soon"})))

    assert result.error == ErrorCode.VENDOR_ERROR
    assert adapter.open_calls == 0


def test_mock_adapter_disabled_by_env():
    assert not MockLockAdapter({}).is_enabled()
    assert MockLockAdapter({"IOT_MOCK_ENABLED": "true"}).is_enabled()
