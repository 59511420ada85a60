"""Tunnel process supervisor.

Launches the external tunnel client (or adopts a tunnel that is already
up), waits for its virtual interface, then watches the link on a
heartbeat timer.  When the link drops it runs a bounded reconnect policy
-- one attempt per heartbeat, each preceded by a fixed delay -- and gives
up into the ``failed`` state after the configured number of failures.
Only an explicit ``connect()`` leaves ``failed``.

When no usable client or configuration exists the supervisor can fall
back to a simulated link with a synthetic private address.
"""

from __future__ import annotations

import asyncio
import random
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import structlog

from autoconnect_agent.config import AgentSettings
from autoconnect_agent.errors import TunnelConfigError, TunnelProcessError
from autoconnect_agent.events import EventChannel
from autoconnect_agent.schemas import TunnelConnectionState, TunnelStatus
from autoconnect_agent.timers import PeriodicTimer, interruptible_sleep
from autoconnect_agent.tunnel.config_file import (
    validate_tunnel_config,
    write_config_template,
)
from autoconnect_agent.tunnel.interfaces import TunnelInterface, detect_tunnel_interface
from autoconnect_agent.tunnel.latency import measure_latency

logger = structlog.get_logger(__name__)

SIMULATED_INTERFACE = "sim-tun0"
_SIMULATED_NETWORK_PREFIX = "10.26.241."

_PROCESS_CHECK_INTERVAL = 0.5
_TERMINATE_TIMEOUT = 5.0
_HEARTBEAT_FIRST_DELAY = 1.0

_CONNECTED_STATES = (TunnelConnectionState.CONNECTED, TunnelConnectionState.DEGRADED)

InterfaceDetector = Callable[[], Optional[TunnelInterface]]
ProcessLauncher = Callable[[List[str], Optional[str]], Awaitable[asyncio.subprocess.Process]]
LatencyProbe = Callable[[], Awaitable[int]]


@dataclass
class ReconnectCounter:
    """Failed reconnect attempts since the link was last up."""

    max_attempts: int = 3
    delay: float = 5.0
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def record_failure(self) -> None:
        self.attempts += 1
        self.last_attempt_at = datetime.now(timezone.utc)

    def reset(self) -> None:
        self.attempts = 0
        self.last_attempt_at = None


async def launch_tunnel_client(
    argv: List[str], cwd: Optional[str] = None
) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )


def build_client_args(binary: str, config_path: Path, settings: AgentSettings) -> List[str]:
    return [
        binary,
        "--config", str(config_path),
        "--data-ciphers", settings.tunnel_data_ciphers,
        "--verb", str(settings.tunnel_verbosity),
        "--management", "127.0.0.1", str(settings.tunnel_management_port),
        "--log-append", str(config_path.with_name("tunnel.log")),
    ]


class TunnelSupervisor:
    """Owns the tunnel client process and publishes ``TunnelStatus`` events."""

    def __init__(
        self,
        settings: AgentSettings,
        *,
        detector: InterfaceDetector = detect_tunnel_interface,
        launcher: ProcessLauncher = launch_tunnel_client,
        latency_probe: Optional[LatencyProbe] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._settings = settings
        self._detector = detector
        self._launcher = launcher
        self._latency_probe = latency_probe
        self._which = which
        self._rng = rng or random.Random()

        self._lock = asyncio.Lock()
        self._stop_requested = asyncio.Event()
        self._state = TunnelConnectionState.IDLE
        self._process: Optional[asyncio.subprocess.Process] = None
        self._interface: Optional[TunnelInterface] = None
        self._simulated = False
        self._status = TunnelStatus(state=TunnelConnectionState.IDLE)
        self.reconnect = ReconnectCounter(
            max_attempts=settings.reconnect_max_attempts,
            delay=settings.reconnect_delay_seconds,
        )
        self._heartbeat = PeriodicTimer(
            "tunnel_heartbeat",
            settings.heartbeat_interval_seconds,
            self.check_status,
            initial_delay=_HEARTBEAT_FIRST_DELAY,
        )
        self.status_events: EventChannel[TunnelStatus] = EventChannel("tunnel_status")

    # -- properties ---------------------------------------------------------

    @property
    def state(self) -> TunnelConnectionState:
        return self._state

    @property
    def status(self) -> TunnelStatus:
        """Most recently published status."""
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._state in _CONNECTED_STATES

    @property
    def is_simulated(self) -> bool:
        return self._simulated

    @property
    def local_address(self) -> Optional[str]:
        return self._interface.address if self._interface else None

    @property
    def interface_name(self) -> Optional[str]:
        return self._interface.name if self._interface else None

    @property
    def process(self) -> Optional[asyncio.subprocess.Process]:
        return self._process

    @property
    def monitoring(self) -> bool:
        """``True`` while the heartbeat timer is running."""
        return self._heartbeat.running

    # -- public operations --------------------------------------------------

    async def connect(self, *, start_monitoring: bool = True) -> bool:
        """Bring the tunnel up.  Also clears a terminal reconnect failure."""
        self._stop_requested.clear()
        async with self._lock:
            if self._state is TunnelConnectionState.FAILED:
                logger.info("tunnel_terminal_failure_cleared")
            self.reconnect.reset()
            connected = await self._connect_locked()
            # A disconnect queued behind us has already stopped the heartbeat.
            if connected and start_monitoring and not self._stop_requested.is_set():
                self._heartbeat.start()
            return connected

    async def check_status(self) -> Optional[TunnelStatus]:
        """Heartbeat: refresh the link status and drive reconnection.

        Returns the published status, or ``None`` when the check was
        skipped because another operation holds the supervisor.
        """
        if self._lock.locked() or self._stop_requested.is_set():
            logger.debug("tunnel_check_skipped", state=self._state.value)
            return None

        async with self._lock:
            if self._state is TunnelConnectionState.RECONNECTING:
                await self._attempt_reconnect()
                return self._status
            if self._state not in _CONNECTED_STATES:
                return self._status

            interface = await self._probe_link()
            if interface is None:
                logger.warning("tunnel_link_lost", interface=self.interface_name)
                self._interface = None
                self._state = TunnelConnectionState.DEGRADED
                self._publish(error="Tunnel connection lost")
                await self._attempt_reconnect()
                return self._status

            self._interface = interface
            latency = await self.measure_latency()
            self._state = (
                TunnelConnectionState.CONNECTED
                if latency >= 0
                else TunnelConnectionState.DEGRADED
            )
            return self._publish(latency_ms=latency)

    async def measure_latency(self) -> int:
        """Average probe round-trip in ms; ``-1`` when nothing answered."""
        if self._simulated:
            return self._rng.randint(10, 25)
        if self._latency_probe is not None:
            return await self._latency_probe()
        return await measure_latency(
            self._settings.latency_endpoints,
            self._settings.latency_probe_timeout_seconds,
        )

    async def disconnect(self) -> None:
        """Stop the client and clear all link state.  Idempotent."""
        self._stop_requested.set()
        await self._heartbeat.stop()
        async with self._lock:
            await self._stop_process()
            self._interface = None
            self._simulated = False
            self.reconnect.reset()
            previous = self._state
            self._state = TunnelConnectionState.DISCONNECTED
            self._publish()
            if previous is not TunnelConnectionState.DISCONNECTED:
                logger.info("tunnel_disconnected", previous=previous.value)

    # -- connection sequence ------------------------------------------------

    async def _connect_locked(self) -> bool:
        self._state = TunnelConnectionState.CONNECTING
        logger.info("tunnel_connecting")

        existing = await self._detect()
        if existing is not None:
            logger.info("tunnel_already_up", interface=existing.name)
            return await self._mark_connected(existing)

        try:
            launchable = self._prepare_config()
        except TunnelConfigError as exc:
            logger.error("tunnel_config_invalid", path=exc.path, errors=exc.errors)
            return await self._fail(str(exc))

        binary = self._which(self._settings.tunnel_client_binary) if launchable else None
        if binary is None:
            if not self._settings.tunnel_simulation_fallback:
                return await self._fail("No usable tunnel client or configuration")
            return await self._simulate()

        try:
            interface = await self._launch_and_wait(binary)
        except TunnelProcessError as exc:
            logger.error("tunnel_client_failed", error=str(exc))
            return await self._fail(str(exc))
        return await self._mark_connected(interface)

    def _prepare_config(self) -> bool:
        """Returns ``True`` when the config can be handed to the client."""
        path = Path(self._settings.tunnel_config_path)
        if not path.exists():
            logger.warning("tunnel_config_missing", path=str(path))
            try:
                write_config_template(path)
            except OSError as exc:
                logger.warning("tunnel_config_template_failed", error=str(exc))
            return False

        validation = validate_tunnel_config(path)
        for warning in validation.warnings:
            logger.warning("tunnel_config_warning", path=str(path), warning=warning)
        if not validation.is_valid:
            raise TunnelConfigError(str(path), validation.errors)
        if validation.is_template:
            logger.warning("tunnel_config_unconfigured", path=str(path))
            return False
        return True

    async def _launch_and_wait(self, binary: str) -> TunnelInterface:
        config_path = Path(self._settings.tunnel_config_path).resolve()
        argv = build_client_args(binary, config_path, self._settings)
        logger.info("tunnel_client_starting", binary=binary, config=str(config_path))
        try:
            self._process = await self._launcher(argv, str(config_path.parent))
        except OSError as exc:
            raise TunnelProcessError(f"Failed to start tunnel client: {exc}") from exc

        process = self._process
        loop = asyncio.get_running_loop()
        timeout = self._settings.tunnel_connect_timeout_seconds
        deadline = loop.time() + timeout
        while True:
            if self._stop_requested.is_set():
                raise TunnelProcessError("Connect cancelled")
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TunnelProcessError(f"No tunnel interface after {timeout:g}s")
            try:
                await asyncio.wait_for(
                    process.wait(), timeout=min(_PROCESS_CHECK_INTERVAL, remaining)
                )
            except asyncio.TimeoutError:
                pass
            else:
                raise TunnelProcessError(
                    f"Tunnel client exited with code {process.returncode}"
                )
            interface = await self._detect()
            if interface is not None:
                return interface

    async def _simulate(self) -> bool:
        logger.warning("tunnel_simulated", hint="no usable tunnel client")
        delay = self._settings.tunnel_sim_connect_delay_seconds
        if await interruptible_sleep(delay, self._stop_requested):
            return await self._fail("Connect cancelled")
        self._simulated = True
        address = f"{_SIMULATED_NETWORK_PREFIX}{self._rng.randint(2, 253)}"
        return await self._mark_connected(TunnelInterface(SIMULATED_INTERFACE, address))

    async def _mark_connected(self, interface: TunnelInterface) -> bool:
        self._interface = interface
        self._state = TunnelConnectionState.CONNECTED
        self.reconnect.reset()
        latency = await self.measure_latency()
        self._publish(latency_ms=latency)
        logger.info(
            "tunnel_connected",
            interface=interface.name,
            address=interface.address,
            latency_ms=latency,
            simulated=self._simulated,
        )
        return True

    async def _fail(self, error: str) -> bool:
        await self._stop_process()
        self._interface = None
        self._simulated = False
        self._state = TunnelConnectionState.DISCONNECTED
        self._publish(error=error)
        return False

    # -- reconnect policy ---------------------------------------------------

    async def _attempt_reconnect(self) -> None:
        if self.reconnect.exhausted:
            self._enter_failed()
            return

        self._state = TunnelConnectionState.RECONNECTING
        logger.info(
            "tunnel_reconnect_scheduled",
            attempt=self.reconnect.attempts + 1,
            max_attempts=self.reconnect.max_attempts,
            delay=self.reconnect.delay,
        )
        if await interruptible_sleep(self.reconnect.delay, self._stop_requested):
            return

        await self._stop_process()
        self._simulated = False
        if await self._connect_locked():
            logger.info("tunnel_reconnected")
            return

        self.reconnect.record_failure()
        if self.reconnect.exhausted:
            self._enter_failed()
        else:
            self._state = TunnelConnectionState.RECONNECTING

    def _enter_failed(self) -> None:
        self._state = TunnelConnectionState.FAILED
        logger.error(
            "tunnel_reconnect_exhausted",
            attempts=self.reconnect.attempts,
            hint="explicit connect() required",
        )
        self._publish(error="Reconnect attempts exhausted")

    # -- internal -----------------------------------------------------------

    async def _detect(self) -> Optional[TunnelInterface]:
        return await asyncio.to_thread(self._detector)

    async def _probe_link(self) -> Optional[TunnelInterface]:
        if self._simulated:
            return self._interface
        if self._process is not None and self._process.returncode is not None:
            logger.warning("tunnel_process_exited", code=self._process.returncode)
            return None
        return await self._detect()

    async def _stop_process(self) -> None:
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=_TERMINATE_TIMEOUT)
            logger.info("tunnel_process_terminated", pid=process.pid)
        except asyncio.TimeoutError:
            logger.warning("tunnel_process_kill", pid=process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                return
            try:
                await asyncio.wait_for(process.wait(), timeout=_TERMINATE_TIMEOUT)
            except asyncio.TimeoutError:
                logger.error("tunnel_process_unkillable", pid=process.pid)

    def _publish(self, *, latency_ms: int = -1, error: Optional[str] = None) -> TunnelStatus:
        connected = self._state in _CONNECTED_STATES and self._interface is not None
        status = TunnelStatus(
            state=self._state,
            connected=connected,
            local_address=self.local_address if connected else None,
            interface_name=self.interface_name if connected else None,
            latency_ms=latency_ms if connected else -1,
            error=error,
            simulated=self._simulated,
        )
        self._status = status
        self.status_events.publish(status)
        return status
