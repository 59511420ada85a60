"""Tests for autoconnect_agent.schemas and autoconnect_agent.config."""

from __future__ import annotations

import uuid

import pytest
from pydantic import ValidationError

from autoconnect_agent.config import AgentSettings
from autoconnect_agent.schemas import (
    ApiEnvelope,
    IgnitionStatus,
    SourceMode,
    TunnelConnectionState,
    TunnelStatus,
    VehicleSample,
)

from conftest import TEST_CLIENT_ID


def test_sample_voltage_rounded_to_one_decimal() -> None:
    sample = VehicleSample(battery_voltage=12.649, mode=SourceMode.HARDWARE)
    assert sample.battery_voltage == 12.6


def test_sample_is_frozen() -> None:
    sample = VehicleSample(mode=SourceMode.SIMULATED)
    with pytest.raises(ValidationError):
        sample.ignition_on = True


@pytest.mark.parametrize(
    "ignition_on, rpm, expected",
    [
        (False, None, IgnitionStatus.OFF),
        (False, 900, IgnitionStatus.OFF),
        (True, None, IgnitionStatus.KL15_ON),
        (True, 0, IgnitionStatus.KL15_ON),
        (True, 850, IgnitionStatus.RUNNING),
    ],
)
def test_ignition_status_mapping(ignition_on, rpm, expected) -> None:
    sample = VehicleSample(ignition_on=ignition_on, engine_speed=rpm, mode=SourceMode.HARDWARE)
    assert sample.ignition_status is expected


def test_tunnel_status_defaults() -> None:
    status = TunnelStatus(state=TunnelConnectionState.IDLE)
    assert not status.connected
    assert status.latency_ms == -1
    assert status.local_address is None


def test_envelope_keeps_unknown_fields() -> None:
    envelope = ApiEnvelope.model_validate({"success": True, "data": [], "traceId": "x"})
    assert envelope.success
    assert envelope.model_extra == {"traceId": "x"}


def test_configured_client_id_is_kept() -> None:
    settings = AgentSettings(client_id=TEST_CLIENT_ID.upper())
    assert settings.resolved_client_id == TEST_CLIENT_ID


@pytest.mark.parametrize("configured", [None, "", "not-a-uuid"])
def test_client_id_generated_once(configured) -> None:
    settings = AgentSettings(client_id=configured)
    generated = settings.resolved_client_id
    assert uuid.UUID(generated)
    assert settings.resolved_client_id == generated


def test_port_modes() -> None:
    assert AgentSettings(obd_port="SIM").is_simulation
    assert AgentSettings(obd_port="auto").scan_all_ports
    manual = AgentSettings(obd_port="/dev/ttyUSB0")
    assert not manual.is_simulation and not manual.scan_all_ports
