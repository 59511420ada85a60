"""HardwareSource -- ELM327 commands over an open ``AdapterSession``.

All blocking channel I/O is offloaded to a thread via
``asyncio.to_thread``.  Every read falls back to an alternate command
before giving up, and adapter errors never escape a read.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from autoconnect_agent.elm.channel import Response
from autoconnect_agent.elm.decode import (
    decode_adapter_voltage,
    decode_module_voltage,
    decode_protocol_name,
    decode_rpm,
    decode_vin,
)
from autoconnect_agent.elm.discovery import AdapterSession
from autoconnect_agent.errors import AdapterError
from autoconnect_agent.reader.base import VehicleSource
from autoconnect_agent.schemas import VIN_READ_FAILED, SourceMode

logger = structlog.get_logger(__name__)

# Echo off, linefeeds off, spaces off, headers on.
_INIT_COMMANDS = ("ATE0", "ATL0", "ATS0", "ATH1")
_INIT_PAUSE = 0.05

_VIN_COMMANDS = ("0902", "09 02")


class HardwareSource(VehicleSource):
    """Reads vehicle state from a real adapter."""

    mode = SourceMode.HARDWARE

    def __init__(self, session: AdapterSession, *, error_limit: Optional[int] = None) -> None:
        self._session = session
        self._error_limit = error_limit
        self._engine_speed: Optional[int] = None

    # -- properties ---------------------------------------------------------

    @property
    def session(self) -> AdapterSession:
        return self._session

    @property
    def adapter_type(self) -> str:
        return self._session.adapter_type

    @property
    def protocol_name(self) -> str:
        return self._session.protocol_name or "unknown"

    @property
    def error_count(self) -> int:
        return self._session.error_count

    @property
    def last_engine_speed(self) -> Optional[int]:
        return self._engine_speed

    def reset_errors(self) -> None:
        self._session.channel.reset_errors()

    # -- lifecycle ----------------------------------------------------------

    async def initialize(self) -> None:
        logger.info("adapter_initializing", port=self._session.port)
        for command in _INIT_COMMANDS:
            await self._query(command)
            await asyncio.sleep(_INIT_PAUSE)

        supported = await self._query("0100")
        logger.debug(
            "supported_pids_probe",
            response=supported.text if supported else None,
        )

        protocol = await self._query("ATDP")
        if protocol is not None and protocol.ok:
            self._session.protocol_name = decode_protocol_name(protocol.text) or ""
        logger.info(
            "adapter_initialized",
            adapter=self.adapter_type,
            protocol=self.protocol_name,
        )

    async def close(self) -> None:
        await asyncio.to_thread(self._session.close)

    # -- reads --------------------------------------------------------------

    async def read_identity(self) -> str:
        for command in _VIN_COMMANDS:
            response = await self._query(command)
            if response is None or not response.ok:
                continue
            vin = decode_vin(response.text)
            if vin is not None:
                logger.debug("vin_read", command=command)
                return vin
            logger.debug("vin_decode_failed", command=command, response=response.text)
        logger.warning("vin_unavailable", hint="using read-failed sentinel")
        return VIN_READ_FAILED

    async def read_voltage(self) -> Optional[float]:
        response = await self._query("ATRV")
        if response is not None and response.ok:
            voltage = decode_adapter_voltage(response.text)
            if voltage is not None:
                return voltage
            logger.debug("adapter_voltage_rejected", response=response.text)

        response = await self._query("0142")
        if response is not None and response.ok:
            voltage = decode_module_voltage(response.text)
            if voltage is not None:
                return voltage
        return None

    async def is_ignition_on(self) -> bool:
        self._engine_speed = None
        response = await self._query("010C")
        if response is not None and response.ok:
            rpm = decode_rpm(response.text)
            if rpm is not None and rpm >= 0:
                self._engine_speed = rpm
                return True

        # No engine speed; the ECU answering at all still means ignition on.
        response = await self._query("0100")
        return response is not None and response.ok

    # -- internal -----------------------------------------------------------

    async def _query(self, command: str) -> Optional[Response]:
        if self._error_limit is not None and self.error_count >= self._error_limit:
            logger.debug("adapter_query_suppressed", command=command, errors=self.error_count)
            return None
        try:
            return await asyncio.to_thread(self._session.channel.send, command)
        except AdapterError as exc:
            logger.debug("adapter_query_failed", command=command, error=str(exc))
            return None
