"""Telemetry emitter: forwards the latest vehicle sample to the API.

Runs on its own timer, independent of the poll rate.  A sample is sent
at most once, and never sooner than ``telemetry_min_interval_seconds``
after the previous successful upload.  A failed upload leaves the
emitter's state untouched so the next tick retries with fresher data.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import structlog

from autoconnect_agent.api_client import TelemetryAPIClient
from autoconnect_agent.config import AgentSettings
from autoconnect_agent.schemas import SourceMode, VehicleSample
from autoconnect_agent.timers import PeriodicTimer
from autoconnect_agent.vehicle_link import VehicleLinkEngine

logger = structlog.get_logger(__name__)


def format_raw_debug(sample: VehicleSample) -> str:
    mode = "Hardware" if sample.mode is SourceMode.HARDWARE else "Simulation"
    stamp = sample.ts.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    return f"Mode: {mode}, VIN: {sample.vin}, Time: {stamp}"


class TelemetryEmitter:
    def __init__(
        self,
        settings: AgentSettings,
        engine: VehicleLinkEngine,
        api: TelemetryAPIClient,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._api = api
        self._clock = clock
        self._min_interval = settings.telemetry_min_interval_seconds
        self._last_sent: Optional[VehicleSample] = None
        self._last_success_at: Optional[float] = None
        self._timer = PeriodicTimer(
            "telemetry_emit", settings.telemetry_interval_seconds, self.emit
        )

    @property
    def last_sent(self) -> Optional[VehicleSample]:
        return self._last_sent

    def start(self) -> None:
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()

    async def emit(self) -> bool:
        """One emitter tick.  Returns ``True`` when a sample was uploaded."""
        sample = self._engine.latest_sample
        session_id = self._engine.session_id
        if sample is None or session_id is None:
            return False
        if sample is self._last_sent:
            return False
        now = self._clock()
        if (
            self._last_success_at is not None
            and now - self._last_success_at < self._min_interval
        ):
            return False

        ok = await self._api.create_sample(
            session_id,
            sample.battery_voltage,
            sample.ignition_status,
            sample.engine_speed,
            format_raw_debug(sample),
        )
        if not ok:
            logger.warning("telemetry_emit_failed", session_id=session_id)
            return False

        self._last_sent = sample
        self._last_success_at = now
        logger.debug(
            "telemetry_emitted",
            session_id=session_id,
            voltage=sample.battery_voltage,
            ignition=sample.ignition_status.name,
        )
        return True
