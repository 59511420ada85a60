"""Agent wiring: tunnel supervisor, vehicle link, emitter and signals."""

from __future__ import annotations

import asyncio
import signal
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional

import structlog

from autoconnect_agent.api_client import TelemetryAPIClient
from autoconnect_agent.config import AgentSettings
from autoconnect_agent.emitter import TelemetryEmitter
from autoconnect_agent.schemas import TunnelStatus, VehicleSample
from autoconnect_agent.timers import interruptible_sleep
from autoconnect_agent.tunnel.supervisor import TunnelSupervisor
from autoconnect_agent.vehicle_link import VehicleLinkEngine

logger = structlog.get_logger(__name__)


@dataclass
class AgentComponents:
    api: TelemetryAPIClient
    engine: VehicleLinkEngine
    emitter: TelemetryEmitter
    tunnel: Optional[TunnelSupervisor]


def create_components(settings: AgentSettings) -> AgentComponents:
    """Factory: build the engines for the current config."""
    api = TelemetryAPIClient(settings)
    engine = VehicleLinkEngine(settings, api=api)
    emitter = TelemetryEmitter(settings, engine, api)
    tunnel = TunnelSupervisor(settings) if settings.tunnel_enabled else None
    return AgentComponents(api=api, engine=engine, emitter=emitter, tunnel=tunnel)


def _log_sample(sample: VehicleSample) -> None:
    logger.info(
        "vehicle_sample",
        mode=sample.mode.value,
        vin=sample.vin,
        voltage=sample.battery_voltage,
        ignition=sample.ignition_on,
        rpm=sample.engine_speed,
    )


def _log_tunnel_status(status: TunnelStatus) -> None:
    logger.info(
        "tunnel_status",
        state=status.state.value,
        connected=status.connected,
        address=status.local_address,
        interface=status.interface_name,
        latency_ms=status.latency_ms,
        simulated=status.simulated,
        error=status.error,
    )


async def run_agent(
    settings: AgentSettings,
    *,
    once: bool = False,
    components: Optional[AgentComponents] = None,
) -> None:
    """Run the agent until a shutdown signal arrives.

    Parameters
    ----------
    settings:
        Fully-resolved agent configuration.
    once:
        If ``True``, connect, take one sample, emit it, then shut down.
    components:
        Pre-built engines; built from *settings* when omitted.
    """
    shutdown_event = asyncio.Event()

    # --- signal handling ---------------------------------------------------
    def _request_shutdown() -> None:
        logger.info("shutdown_requested")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_shutdown)
    # On Windows, SIGINT is handled by the default KeyboardInterrupt.

    parts = components or create_components(settings)
    unsubscribers: List[Callable[[], None]] = [
        parts.engine.samples.subscribe(_log_sample)
    ]
    if parts.tunnel is not None:
        unsubscribers.append(parts.tunnel.status_events.subscribe(_log_tunnel_status))

    await parts.api.start()
    try:
        if parts.tunnel is not None:
            await parts.tunnel.connect(start_monitoring=not once)
        if not await _connect_vehicle(parts.engine, settings, shutdown_event, once=once):
            return

        if once:
            await parts.engine.poll()
            await parts.emitter.emit()
            return

        parts.emitter.start()
        await shutdown_event.wait()
    finally:
        await parts.emitter.stop()
        await parts.engine.disconnect()
        if parts.tunnel is not None:
            await parts.tunnel.disconnect()
        await parts.api.close()
        for unsubscribe in unsubscribers:
            unsubscribe()
        logger.info("agent_stopped")


async def _connect_vehicle(
    engine: VehicleLinkEngine,
    settings: AgentSettings,
    shutdown_event: asyncio.Event,
    *,
    once: bool,
) -> bool:
    """Open the vehicle link, retrying until it succeeds or shutdown."""
    while not shutdown_event.is_set():
        try:
            await engine.connect(start_polling=not once)
            return True
        except Exception:
            logger.exception("vehicle_link_connect_failed")
            if once:
                return False
            await interruptible_sleep(settings.poll_interval_seconds, shutdown_event)
    return False
