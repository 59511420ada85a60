"""Simulated vehicle source (no hardware required).

Battery voltage follows a bounded random walk in whole decivolts, so
consecutive readings never differ by more than the configured step.
"""

from __future__ import annotations

import random
from typing import Optional

from autoconnect_agent.reader.base import VehicleSource
from autoconnect_agent.schemas import SourceMode

SIM_VINS = (
    "WBAPH7G56DNB12345",
    "WBAXA72010DN13703",
    "1HGCM82633A004352",
    "WVWZZZ1JZXW000001",
    "JTDKB20U793512345",
)

VOLTAGE_FLOOR = 11.5
VOLTAGE_CEILING = 14.5
_START_VOLTAGE = 12.4

_IGNITION_ON_PROBABILITY = 0.8
_RPM_RANGE = (700, 2000)


class SimulatedSource(VehicleSource):
    """Plausible vehicle data for demos and adapter-less machines."""

    mode = SourceMode.SIMULATED

    def __init__(
        self,
        *,
        voltage_step: float = 0.1,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._max_step_dv = max(int(round(voltage_step * 10)), 0)
        self._decivolts = int(round(_START_VOLTAGE * 10))
        self._vin = self._rng.choice(SIM_VINS)
        self._engine_speed: Optional[int] = None

    @property
    def adapter_type(self) -> str:
        return "Simulated"

    @property
    def protocol_name(self) -> str:
        return "ISO 15765-4 (CAN 11/500)"

    @property
    def last_engine_speed(self) -> Optional[int]:
        return self._engine_speed

    async def read_identity(self) -> str:
        return self._vin

    async def read_voltage(self) -> Optional[float]:
        step = self._rng.randint(-self._max_step_dv, self._max_step_dv)
        floor, ceiling = int(VOLTAGE_FLOOR * 10), int(VOLTAGE_CEILING * 10)
        self._decivolts = min(max(self._decivolts + step, floor), ceiling)
        return self._decivolts / 10

    async def is_ignition_on(self) -> bool:
        on = self._rng.random() < _IGNITION_ON_PROBABILITY
        self._engine_speed = self._rng.randint(*_RPM_RANGE) if on else 0
        return on
