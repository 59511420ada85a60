"""Vehicle link engine: adapter session lifecycle and periodic polling.

The engine picks its data source once per session -- a ``HardwareSource``
when discovery finds an adapter, a ``SimulatedSource`` otherwise -- and
never swaps it mid-session.  A single ``asyncio.Lock`` guards connect,
disconnect, reconnect and poll; a timer tick that finds the lock held is
skipped rather than queued.

When the consecutive-error counter reaches the threshold the session is
closed and the engine drops to ``disconnected``.  The next timer tick
reconnects: discovery runs again and the counters start from zero.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from autoconnect_agent.api_client import TelemetryAPIClient
from autoconnect_agent.config import AgentSettings
from autoconnect_agent.elm.discovery import AdapterDiscovery
from autoconnect_agent.events import EventChannel
from autoconnect_agent.reader.base import VehicleSource
from autoconnect_agent.reader.live import HardwareSource
from autoconnect_agent.reader.simulation import SimulatedSource
from autoconnect_agent.schemas import (
    VIN_READ_FAILED,
    SourceMode,
    VehicleLinkState,
    VehicleSample,
)
from autoconnect_agent.timers import PeriodicTimer

logger = structlog.get_logger(__name__)

_FIRST_POLL_DELAY = 0.5


def create_discovery(settings: AgentSettings) -> AdapterDiscovery:
    """Factory: discovery over every port, or only the configured one."""
    ports = None if settings.scan_all_ports else [settings.obd_port.strip()]
    return AdapterDiscovery(
        ports=ports,
        baudrates=settings.obd_baudrates,
        settle_delay=settings.obd_settle_delay_seconds,
        poll_interval=settings.obd_poll_granularity_seconds,
        max_polls=settings.obd_max_polls,
    )


class VehicleLinkEngine:
    """Owns the adapter session and produces ``VehicleSample`` events."""

    def __init__(
        self,
        settings: AgentSettings,
        *,
        discovery: Optional[AdapterDiscovery] = None,
        api: Optional[TelemetryAPIClient] = None,
    ) -> None:
        self._settings = settings
        self._discovery = discovery
        self._api = api
        self._lock = asyncio.Lock()
        self._disconnecting = False
        self._link_lost = False
        self._state = VehicleLinkState.DISCONNECTED
        self._source: Optional[VehicleSource] = None
        self._cached_vin: Optional[str] = None
        self._session_id: Optional[str] = None
        self._latest: Optional[VehicleSample] = None
        self._timer = PeriodicTimer(
            "vehicle_poll",
            settings.poll_interval_seconds,
            self._tick,
            initial_delay=_FIRST_POLL_DELAY,
        )
        self.samples: EventChannel[VehicleSample] = EventChannel("vehicle_samples")

    # -- properties ---------------------------------------------------------

    @property
    def state(self) -> VehicleLinkState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._source is not None

    @property
    def link_lost(self) -> bool:
        """``True`` after the error threshold closed the session."""
        return self._link_lost

    @property
    def polling(self) -> bool:
        return self._timer.running

    @property
    def mode(self) -> Optional[SourceMode]:
        return self._source.mode if self._source else None

    @property
    def source(self) -> Optional[VehicleSource]:
        return self._source

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def cached_vin(self) -> Optional[str]:
        return self._cached_vin

    @property
    def latest_sample(self) -> Optional[VehicleSample]:
        return self._latest

    @property
    def error_count(self) -> int:
        return self._source.error_count if self._source else 0

    # -- lifecycle ----------------------------------------------------------

    async def connect(self, *, start_polling: bool = True) -> VehicleLinkState:
        """Discover an adapter (or fall back to simulation) and open a session."""
        async with self._lock:
            if self._source is None:
                await self._open_locked()
            if start_polling and not self._disconnecting:
                self._timer.start()
            return self._state

    async def reconnect(self) -> VehicleLinkState:
        """Close the current session, if any, and open a fresh one.

        Discovery runs again and every error counter starts from zero.
        Failures are logged; the engine stays disconnected and the next
        timer tick tries again.
        """
        async with self._lock:
            if self._disconnecting:
                return self._state
            await self._close_locked()
            try:
                await self._open_locked()
            except Exception:
                logger.exception("vehicle_link_reconnect_failed")
                self._link_lost = True
            else:
                logger.info("vehicle_link_reconnected", mode=self._state.value)
            return self._state

    async def disconnect(self) -> None:
        """Stop polling, release the adapter and end the API session.

        Safe to call repeatedly and while a poll or connect is in flight.
        """
        self._disconnecting = True
        try:
            await self._timer.stop()
            async with self._lock:
                self._link_lost = False
                was_connected = self._state is not VehicleLinkState.DISCONNECTED
                await self._close_locked()
                if was_connected:
                    logger.info("vehicle_link_disconnected")
        finally:
            self._disconnecting = False

    def reset_errors(self) -> None:
        if self._source is not None:
            self._source.reset_errors()

    # -- polling ------------------------------------------------------------

    async def poll(self) -> Optional[VehicleSample]:
        """Gather one sample and publish it.  Returns ``None`` when skipped."""
        if self._disconnecting or self._lock.locked():
            logger.debug("vehicle_poll_skipped", reason="busy")
            return None

        async with self._lock:
            source = self._source
            if source is None:
                return None
            if await self._drop_if_failing(source):
                return None

            vin = self._cached_vin
            if vin is None:
                vin = await source.read_identity()
                if vin != VIN_READ_FAILED:
                    self._cached_vin = vin
                if await self._drop_if_failing(source):
                    return None

            voltage = await source.read_voltage()
            if await self._drop_if_failing(source):
                return None
            ignition_on = await source.is_ignition_on()
            if await self._drop_if_failing(source):
                return None

            sample = VehicleSample(
                vin=vin,
                battery_voltage=voltage,
                ignition_on=ignition_on,
                engine_speed=source.last_engine_speed,
                mode=source.mode,
            )
            self._latest = sample

        self.samples.publish(sample)
        return sample

    async def _tick(self) -> None:
        if self._link_lost:
            if self._disconnecting or self._lock.locked():
                return
            await self.reconnect()
        else:
            await self.poll()

    # -- internal -----------------------------------------------------------

    async def _open_locked(self) -> None:
        self._state = VehicleLinkState.CONNECTING
        logger.info("vehicle_link_connecting", port=self._settings.obd_port)
        try:
            source = await self._select_source()
            await source.initialize()
        except BaseException:
            self._state = VehicleLinkState.DISCONNECTED
            raise

        self._source = source
        self._link_lost = False
        self._state = (
            VehicleLinkState.HARDWARE
            if source.mode is SourceMode.HARDWARE
            else VehicleLinkState.SIMULATED
        )

        vin = await source.read_identity()
        if vin != VIN_READ_FAILED:
            self._cached_vin = vin

        if self._api is not None:
            self._session_id = await self._api.create_session(
                self._settings.resolved_client_id,
                source.adapter_type,
                source.protocol_name,
                vin=self._cached_vin,
            )

        logger.info(
            "vehicle_link_connected",
            mode=source.mode.value,
            adapter=source.adapter_type,
            protocol=source.protocol_name,
            session_id=self._session_id,
        )

    async def _close_locked(self) -> None:
        source, self._source = self._source, None
        if source is not None:
            try:
                await source.close()
            except Exception:
                logger.exception("vehicle_source_close_failed")

        session_id, self._session_id = self._session_id, None
        if session_id is not None and self._api is not None:
            await self._api.end_session(session_id)

        self._cached_vin = None
        self._latest = None
        self._state = VehicleLinkState.DISCONNECTED

    async def _drop_if_failing(self, source: VehicleSource) -> bool:
        """Close the session once the error threshold is reached."""
        threshold = self._settings.obd_error_threshold
        if source.error_count < threshold:
            return False
        logger.warning(
            "vehicle_link_lost",
            errors=source.error_count,
            threshold=threshold,
            hint="session closed; reconnecting on next tick",
        )
        await self._close_locked()
        self._link_lost = True
        return True

    async def _select_source(self) -> VehicleSource:
        if not self._settings.is_simulation:
            discovery = self._discovery or create_discovery(self._settings)
            session = await asyncio.to_thread(discovery.discover)
            if session is not None:
                return HardwareSource(
                    session, error_limit=self._settings.obd_error_threshold
                )
            logger.warning(
                "no_adapter_found",
                hint="falling back to simulation for this session",
            )

        return SimulatedSource(voltage_step=self._settings.sim_voltage_step)
