"""Exception hierarchy for the agent.

Only ``connect``/``disconnect`` paths let these escape; per-read operations
catch them and return absent values.
"""

from __future__ import annotations

from typing import List


class AgentError(Exception):
    """Base class for all agent errors."""


class AdapterError(AgentError):
    """Diagnostic adapter could not complete an exchange."""


class AdapterTransportError(AdapterError):
    """Open/read/write failure on the serial transport."""


class ChannelTimeout(AdapterError):
    """No recognised terminator arrived within the polling window."""

    def __init__(self, command: str, partial: str = "") -> None:
        super().__init__(f"Timed out waiting for response to {command!r}")
        self.command = command
        self.partial = partial


class TunnelError(AgentError):
    """Tunnel connection attempt failed."""


class TunnelConfigError(TunnelError):
    """Tunnel configuration file is missing, unreadable or invalid."""

    def __init__(self, path: str, errors: List[str]) -> None:
        super().__init__(f"Invalid tunnel config {path}: {'; '.join(errors)}")
        self.path = path
        self.errors = errors


class TunnelProcessError(TunnelError):
    """External tunnel client failed to start or exited early."""
