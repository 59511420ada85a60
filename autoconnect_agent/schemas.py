"""Pydantic v2 models: published events and API payloads.

Events (``VehicleSample``, ``TunnelStatus``) are frozen so one instance
can be handed to several subscribers.  Request models serialise with
camelCase aliases to match the AutoConnect API contract.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

VIN_PATTERN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")

VIN_READ_FAILED = "VIN_READ_FAILED"


def is_valid_vin(value: Optional[str]) -> bool:
    """17 chars, upper-case alphanumeric, never I, O or Q (ISO 3779)."""
    return bool(value) and VIN_PATTERN.match(value) is not None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SourceMode(str, Enum):
    HARDWARE = "hardware"
    SIMULATED = "simulated"


class VehicleLinkState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HARDWARE = "hardware"
    SIMULATED = "simulated"


class TunnelConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


class IgnitionStatus(IntEnum):
    """Ignition codes understood by the API (terminal naming)."""

    OFF = 0
    KL15_ON = 1
    KL30_ON = 2
    RUNNING = 3


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class VehicleSample(BaseModel):
    """One poll of the vehicle link."""

    model_config = {"frozen": True}

    vin: Optional[str] = Field(
        default=None,
        description="VIN, or the read-failed sentinel",
    )
    battery_voltage: Optional[float] = Field(
        default=None, description="Battery voltage, one decimal"
    )
    ignition_on: bool = False
    engine_speed: Optional[int] = Field(default=None, description="RPM")
    mode: SourceMode
    ts: datetime = Field(default_factory=_utcnow)

    @field_validator("battery_voltage")
    @classmethod
    def round_to_decivolt(cls, v: Optional[float]) -> Optional[float]:
        return None if v is None else round(v, 1)

    @property
    def ignition_status(self) -> IgnitionStatus:
        if not self.ignition_on:
            return IgnitionStatus.OFF
        if self.engine_speed:
            return IgnitionStatus.RUNNING
        return IgnitionStatus.KL15_ON


class TunnelStatus(BaseModel):
    """Tunnel link snapshot, recomputed on every status check."""

    model_config = {"frozen": True}

    state: TunnelConnectionState
    connected: bool = False
    local_address: Optional[str] = None
    interface_name: Optional[str] = None
    latency_ms: int = Field(default=-1, description="-1 when unmeasured")
    error: Optional[str] = None
    simulated: bool = False
    ts: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class CreateSessionRequest(_CamelModel):
    client_id: str
    vin: Optional[str] = None
    obd_adapter_type: str
    obd_protocol: str


class CreateVehicleDataRequest(_CamelModel):
    vehicle_session_id: str
    battery_voltage: Optional[float] = None
    kl15_voltage: Optional[float] = None
    kl30_voltage: Optional[float] = None
    ignition_status: IgnitionStatus = IgnitionStatus.OFF
    engine_rpm: Optional[int] = Field(default=None, alias="engineRPM")
    raw_obd_data: Optional[str] = None


class ApiEnvelope(BaseModel):
    """Response wrapper returned by every API endpoint."""

    model_config = {"extra": "allow"}

    success: bool = False
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[str] = None
