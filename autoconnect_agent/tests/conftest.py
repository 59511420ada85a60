"""Shared pytest fixtures for AutoConnect agent tests."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest

from autoconnect_agent.config import AgentSettings
from autoconnect_agent.elm.channel import ProtocolChannel

TEST_CLIENT_ID = "3f2b8c1e-5d4a-4e6b-9c7d-1a2b3c4d5e6f"

Reply = Union[str, List[str], Exception]


class FakeSerial:
    """Scripted in-memory stand-in for ``serial.Serial``.

    ``replies`` maps a command (without the trailing CR) to the text the
    adapter answers with.  A list is consumed one entry per call, the
    last entry repeating; an exception instance is raised from ``write``.
    Setting ``failure`` makes every write raise it (an unplugged adapter);
    ``delay`` blocks each write for that many seconds (a slow adapter).
    """

    def __init__(
        self,
        replies: Optional[Dict[str, Reply]] = None,
        default: str = "",
        *,
        delay: float = 0.0,
    ) -> None:
        self.replies: Dict[str, Reply] = dict(replies or {})
        self.default = default
        self.written: List[str] = []
        self.is_open = True
        self.failure: Optional[Exception] = None
        self.delay = delay
        self._buffer = b""

    @property
    def in_waiting(self) -> int:
        return len(self._buffer)

    @property
    def commands(self) -> List[str]:
        return [w.rstrip("\r") for w in self.written]

    def reset_input_buffer(self) -> None:
        self._buffer = b""

    def write(self, data: bytes) -> int:
        text = data.decode("ascii")
        self.written.append(text)
        if self.delay:
            time.sleep(self.delay)
        if self.failure is not None:
            raise self.failure
        reply = self.replies.get(text.rstrip("\r"), self.default)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, list):
            reply = reply.pop(0) if len(reply) > 1 else reply[0]
        self._buffer += reply.encode("ascii")
        return len(data)

    def read(self, size: int = 1) -> bytes:
        chunk, self._buffer = self._buffer[:size], self._buffer[size:]
        return chunk

    def close(self) -> None:
        self.is_open = False


def no_sleep(_seconds: float) -> None:
    return None


def make_channel(transport: FakeSerial, max_polls: int = 3) -> ProtocolChannel:
    return ProtocolChannel(transport, poll_interval=0.0, max_polls=max_polls, sleep=no_sleep)


@pytest.fixture()
def make_settings(tmp_path: Path) -> Callable[..., AgentSettings]:
    """Settings factory: simulation, dry run and no delays unless overridden."""

    def _factory(**overrides: object) -> AgentSettings:
        defaults: Dict[str, object] = dict(
            obd_port="sim",
            client_id=TEST_CLIENT_ID,
            api_base_url="http://test-api:5000",
            max_retry_attempts=2,
            dry_run=True,
            poll_interval_seconds=0.05,
            telemetry_interval_seconds=0.05,
            tunnel_config_path=str(tmp_path / "vpn" / "client.ovpn"),
            tunnel_connect_timeout_seconds=2.0,
            tunnel_sim_connect_delay_seconds=0.0,
            heartbeat_interval_seconds=0.05,
            reconnect_delay_seconds=0.0,
            latency_endpoints=[],
        )
        defaults.update(overrides)
        return AgentSettings(**defaults)

    return _factory
