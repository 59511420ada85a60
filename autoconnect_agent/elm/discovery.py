"""Serial port / bit-rate scan for an ELM327-compatible adapter.

Every (port, baudrate) candidate is opened with 8N1 framing and DTR/RTS
asserted, given a short settle delay, then sent ``ATZ``.  The first
candidate whose reply looks like an adapter banner wins; everything else
is closed again.  Blocking -- callers run ``discover`` in a thread.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import serial
import structlog
from serial.tools import list_ports

from autoconnect_agent.elm.channel import (
    ProtocolChannel,
    Response,
    ResponseKind,
    SerialTransport,
)
from autoconnect_agent.elm.decode import decode_adapter_type
from autoconnect_agent.errors import AdapterError

logger = structlog.get_logger(__name__)

RESET_COMMAND = "ATZ"
DEFAULT_BAUDRATES = (38400, 9600, 115200, 57600)

_VENDOR_MARKERS = ("ELM",)
_READ_TIMEOUT = 2.0
_WRITE_TIMEOUT = 2.0


@dataclass(frozen=True)
class TransportCandidate:
    port: str
    baudrate: int


@dataclass
class AdapterSession:
    """An open, identified adapter link.

    The transport handle lives inside ``channel``; nothing else holds it.
    """

    port: str
    baudrate: int
    channel: ProtocolChannel
    banner: str = ""
    adapter_type: str = "ELM327"
    protocol_name: str = field(default="")

    @property
    def is_open(self) -> bool:
        return self.channel.is_open

    @property
    def error_count(self) -> int:
        return self.channel.consecutive_errors

    def close(self) -> None:
        self.channel.close()


TransportFactory = Callable[[TransportCandidate], SerialTransport]


def list_serial_ports() -> List[str]:
    """Device names of all serial ports visible to the OS."""
    return [info.device for info in list_ports.comports()]


def open_serial_transport(candidate: TransportCandidate) -> SerialTransport:
    """Open *candidate* with fixed 8N1 framing and flow-control lines up."""
    ser = serial.Serial()
    ser.port = candidate.port
    ser.baudrate = candidate.baudrate
    ser.bytesize = serial.EIGHTBITS
    ser.parity = serial.PARITY_NONE
    ser.stopbits = serial.STOPBITS_ONE
    ser.timeout = _READ_TIMEOUT
    ser.write_timeout = _WRITE_TIMEOUT
    # pyserial applies these on open()
    ser.dtr = True
    ser.rts = True
    ser.open()
    return ser


def is_adapter_signature(response: Response, command: str = RESET_COMMAND) -> bool:
    """Does a reset reply identify an ELM327-compatible adapter?"""
    if response.kind in (ResponseKind.NO_DATA, ResponseKind.ERROR):
        return False
    text = response.text.upper()
    if any(marker in text for marker in _VENDOR_MARKERS):
        return True
    return "OK" in text or ">" in text or command.upper() in text


class AdapterDiscovery:
    """Deterministic scan over ports x bit-rates."""

    def __init__(
        self,
        *,
        ports: Optional[Sequence[str]] = None,
        baudrates: Sequence[int] = DEFAULT_BAUDRATES,
        port_lister: Callable[[], List[str]] = list_serial_ports,
        transport_factory: TransportFactory = open_serial_transport,
        settle_delay: float = 0.1,
        poll_interval: float = 0.1,
        max_polls: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._ports = list(ports) if ports is not None else None
        self._baudrates = list(baudrates)
        self._port_lister = port_lister
        self._transport_factory = transport_factory
        self._settle_delay = settle_delay
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._sleep = sleep

    def candidates(self) -> List[TransportCandidate]:
        """Ordered candidates: every bit-rate for the first port, then the next."""
        ports = self._ports if self._ports is not None else self._port_lister()
        return [
            TransportCandidate(port=port, baudrate=baud)
            for port in ports
            for baud in self._baudrates
        ]

    def discover(self) -> Optional[AdapterSession]:
        """Return an open session on the first responsive candidate, or ``None``."""
        candidates = self.candidates()
        if not candidates:
            logger.info("adapter_discovery_no_ports")
            return None

        logger.info(
            "adapter_discovery_started",
            ports=sorted({c.port for c in candidates}),
            baudrates=self._baudrates,
        )
        for candidate in candidates:
            session = self._probe(candidate)
            if session is not None:
                logger.info(
                    "adapter_found",
                    port=candidate.port,
                    baudrate=candidate.baudrate,
                    adapter=session.adapter_type,
                )
                return session

        logger.info("adapter_not_found", candidates=len(candidates))
        return None

    def _probe(self, candidate: TransportCandidate) -> Optional[AdapterSession]:
        log = logger.bind(port=candidate.port, baudrate=candidate.baudrate)
        try:
            transport = self._transport_factory(candidate)
        except (serial.SerialException, OSError, ValueError) as exc:
            log.debug("adapter_probe_open_failed", error=str(exc))
            return None

        channel = ProtocolChannel(
            transport,
            poll_interval=self._poll_interval,
            max_polls=self._max_polls,
            sleep=self._sleep,
        )
        try:
            self._sleep(self._settle_delay)
            response = channel.send(RESET_COMMAND)
        except AdapterError as exc:
            log.debug("adapter_probe_failed", error=str(exc))
            channel.close()
            return None

        if not is_adapter_signature(response):
            log.debug("adapter_probe_rejected", response=response.text)
            channel.close()
            return None

        return AdapterSession(
            port=candidate.port,
            baudrate=candidate.baudrate,
            channel=channel,
            banner=response.text,
            adapter_type=decode_adapter_type(response.text),
        )
