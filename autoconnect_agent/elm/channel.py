"""Line-oriented command/response channel over an ELM327 serial link.

One command is in flight at a time.  Replies are accumulated until the
buffer classifies as complete (see ``classify_response``) or the polling
window runs out.  The channel keeps the consecutive-error counter the
vehicle link uses to decide when to stop polling.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

import serial
import structlog

from autoconnect_agent.errors import AdapterTransportError, ChannelTimeout

logger = structlog.get_logger(__name__)

PROMPT = ">"

# Markers checked in order; the first hit decides the reply kind.
_NO_DATA_MARKERS = ("NO DATA",)
_ERROR_MARKERS = ("UNABLE TO CONNECT", "ERROR", "STOPPED")
_SUCCESS_MARKERS = (PROMPT, "OK")


class ResponseKind(str, Enum):
    SUCCESS = "success"
    NO_DATA = "no_data"
    ERROR = "error"


@dataclass(frozen=True)
class Response:
    """A complete adapter reply."""

    kind: ResponseKind
    text: str

    @property
    def ok(self) -> bool:
        return self.kind is ResponseKind.SUCCESS


class SerialTransport(Protocol):
    """The subset of ``serial.Serial`` the channel relies on."""

    is_open: bool

    @property
    def in_waiting(self) -> int: ...

    def reset_input_buffer(self) -> None: ...

    def write(self, data: bytes) -> Optional[int]: ...

    def read(self, size: int = 1) -> bytes: ...

    def close(self) -> None: ...


def classify_response(text: str) -> Optional[ResponseKind]:
    """Classify an accumulated reply buffer.

    Returns ``None`` while no terminator or marker has arrived yet.
    """
    upper = text.upper()
    if any(marker in upper for marker in _NO_DATA_MARKERS):
        return ResponseKind.NO_DATA
    if any(marker in upper for marker in _ERROR_MARKERS):
        return ResponseKind.ERROR
    body = upper.replace(PROMPT, "").strip()
    if body == "?":
        return ResponseKind.ERROR
    if any(marker in upper for marker in _SUCCESS_MARKERS):
        return ResponseKind.SUCCESS
    return None


class ProtocolChannel:
    """Serialised request/response exchanges on one owned transport."""

    def __init__(
        self,
        transport: SerialTransport,
        *,
        poll_interval: float = 0.1,
        max_polls: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._transport = transport
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._sleep = sleep
        self._lock = threading.Lock()
        self.consecutive_errors = 0

    # -- lifecycle ----------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return bool(getattr(self._transport, "is_open", False))

    def close(self) -> None:
        with self._lock:
            if self.is_open:
                try:
                    self._transport.close()
                except (serial.SerialException, OSError) as exc:
                    logger.warning("transport_close_failed", error=str(exc))

    def reset_errors(self) -> None:
        self.consecutive_errors = 0

    # -- exchange -----------------------------------------------------------

    def send(self, command: str) -> Response:
        """Send *command* and wait for a complete reply.

        Raises ``ChannelTimeout`` when nothing recognisable arrives in
        time and ``AdapterTransportError`` on I/O failure.
        """
        with self._lock:
            try:
                response = self._exchange(command)
            except ChannelTimeout:
                self.consecutive_errors += 1
                logger.debug(
                    "adapter_command_timeout",
                    command=command,
                    consecutive_errors=self.consecutive_errors,
                )
                raise
            except (serial.SerialException, OSError) as exc:
                self.consecutive_errors += 1
                logger.warning(
                    "adapter_transport_error",
                    command=command,
                    error=str(exc),
                    consecutive_errors=self.consecutive_errors,
                )
                raise AdapterTransportError(str(exc)) from exc
            self.consecutive_errors = 0
            return response

    def _exchange(self, command: str) -> Response:
        transport = self._transport
        transport.reset_input_buffer()
        transport.write(f"{command}\r".encode("ascii"))

        buffer = ""
        for _ in range(self._max_polls):
            self._sleep(self._poll_interval)
            waiting = transport.in_waiting
            if waiting:
                buffer += transport.read(waiting).decode("ascii", errors="replace")
            kind = classify_response(buffer)
            if kind is not None:
                text = buffer.strip()
                logger.debug(
                    "adapter_response",
                    command=command,
                    kind=kind.value,
                    response=text,
                )
                return Response(kind=kind, text=text)
        raise ChannelTimeout(command, partial=buffer.strip())
