"""Tests for autoconnect_agent.api_client."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from autoconnect_agent.api_client import TelemetryAPIClient
from autoconnect_agent.schemas import IgnitionStatus

from conftest import TEST_CLIENT_ID

_BASE = "http://test-api:5000"
_SESSIONS = f"{_BASE}/api/vehiclesessions"
_DATA = f"{_BASE}/api/vehicledata"


@pytest.fixture()
def live_settings(make_settings):
    return make_settings(dry_run=False, api_base_url=_BASE, max_retry_attempts=2)


@pytest.mark.asyncio
@respx.mock
async def test_create_session_returns_id(live_settings) -> None:
    route = respx.post(_SESSIONS).mock(
        return_value=httpx.Response(
            201, json={"success": True, "data": {"id": "abc-123"}, "message": "created"}
        )
    )
    client = TelemetryAPIClient(live_settings)
    await client.start()
    try:
        session_id = await client.create_session(
            TEST_CLIENT_ID, "ELM327 v1.5", "ISO 15765-4 (CAN 11/500)", vin="WBAPH7G56DNB12345"
        )
    finally:
        await client.close()

    assert session_id == "abc-123"
    body = json.loads(route.calls.last.request.content)
    assert body == {
        "clientId": TEST_CLIENT_ID,
        "vin": "WBAPH7G56DNB12345",
        "obdAdapterType": "ELM327 v1.5",
        "obdProtocol": "ISO 15765-4 (CAN 11/500)",
    }


@pytest.mark.asyncio
@respx.mock
async def test_session_retries_server_errors(live_settings) -> None:
    route = respx.post(_SESSIONS).mock(
        side_effect=[
            httpx.Response(503),
            httpx.Response(200, json={"success": True, "data": {"id": "retry-ok"}}),
        ]
    )
    client = TelemetryAPIClient(live_settings)
    await client.start()
    try:
        assert await client.create_session(TEST_CLIENT_ID, "ELM327", "CAN") == "retry-ok"
    finally:
        await client.close()
    assert route.call_count == 2


@pytest.mark.asyncio
@respx.mock
async def test_client_error_is_not_retried(live_settings) -> None:
    route = respx.post(_SESSIONS).mock(
        return_value=httpx.Response(
            400, json={"success": False, "error": "Client not found"}
        )
    )
    client = TelemetryAPIClient(live_settings)
    await client.start()
    try:
        assert await client.create_session(TEST_CLIENT_ID, "ELM327", "CAN") is None
    finally:
        await client.close()
    assert route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_network_errors_exhaust_and_return_none(live_settings) -> None:
    route = respx.post(_SESSIONS).mock(side_effect=httpx.ConnectError("refused"))
    client = TelemetryAPIClient(live_settings)
    await client.start()
    try:
        assert await client.create_session(TEST_CLIENT_ID, "ELM327", "CAN") is None
    finally:
        await client.close()
    assert route.call_count == 2


@pytest.mark.asyncio
@respx.mock
async def test_create_sample_single_attempt(live_settings) -> None:
    route = respx.post(_DATA).mock(return_value=httpx.Response(500))
    client = TelemetryAPIClient(live_settings)
    await client.start()
    try:
        ok = await client.create_sample("s-1", 12.6, IgnitionStatus.OFF, 0, "debug")
    finally:
        await client.close()
    assert ok is False
    assert route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_create_sample_payload(live_settings) -> None:
    route = respx.post(_DATA).mock(
        return_value=httpx.Response(201, json={"success": True, "data": {"id": 9}})
    )
    client = TelemetryAPIClient(live_settings)
    await client.start()
    try:
        assert await client.create_sample(
            "s-1", 13.9, IgnitionStatus.RUNNING, 1726, "Mode: Hardware"
        )
        assert await client.create_sample("s-1", 12.2, IgnitionStatus.OFF, 0, "off")
    finally:
        await client.close()

    running = json.loads(route.calls[0].request.content)
    assert running["vehicleSessionId"] == "s-1"
    assert running["kl15Voltage"] == 13.9
    assert running["kl30Voltage"] == 13.9
    assert running["ignitionStatus"] == 3
    assert running["engineRPM"] == 1726
    assert running["rawObdData"] == "Mode: Hardware"

    off = json.loads(route.calls[1].request.content)
    assert off["kl15Voltage"] is None
    assert off["ignitionStatus"] == 0


@pytest.mark.asyncio
@respx.mock
async def test_end_session(live_settings) -> None:
    route = respx.post(f"{_SESSIONS}/abc/end").mock(
        return_value=httpx.Response(200, json={"success": True})
    )
    client = TelemetryAPIClient(live_settings)
    await client.start()
    try:
        assert await client.end_session("abc") is True
    finally:
        await client.close()
    assert route.called


@pytest.mark.asyncio
@respx.mock
async def test_non_json_success_body(live_settings) -> None:
    respx.post(f"{_SESSIONS}/abc/end").mock(return_value=httpx.Response(204))
    client = TelemetryAPIClient(live_settings)
    await client.start()
    try:
        assert await client.end_session("abc") is True
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_dry_run_never_touches_network(make_settings) -> None:
    client = TelemetryAPIClient(make_settings(dry_run=True))
    await client.start()
    session_id = await client.create_session(TEST_CLIENT_ID, "Simulated", "CAN")
    assert session_id
    assert await client.create_sample(session_id, 12.4, IgnitionStatus.KL15_ON, 0, "x")
    assert await client.end_session(session_id)
    await client.close()
