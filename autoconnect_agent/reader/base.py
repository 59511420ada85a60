"""Abstract base class for vehicle data sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from autoconnect_agent.schemas import SourceMode


class VehicleSource(ABC):
    """Capability interface shared by hardware and simulated sources.

    Read operations fail soft: they return ``None`` (or the VIN sentinel)
    instead of raising.
    """

    mode: SourceMode

    @property
    @abstractmethod
    def adapter_type(self) -> str:
        """Adapter identification reported to the API."""

    @property
    @abstractmethod
    def protocol_name(self) -> str:
        """Vehicle bus protocol reported to the API."""

    @property
    def error_count(self) -> int:
        """Consecutive communication errors on the underlying link."""
        return 0

    @property
    def last_engine_speed(self) -> Optional[int]:
        """RPM decoded by the most recent ``is_ignition_on`` call."""
        return None

    async def initialize(self) -> None:
        """Prepare the source after connect (adapter setup commands)."""

    async def close(self) -> None:
        """Release the underlying link."""

    def reset_errors(self) -> None:
        """Clear the consecutive-error counter."""

    @abstractmethod
    async def read_identity(self) -> str:
        """Return the VIN, or ``VIN_READ_FAILED``."""

    @abstractmethod
    async def read_voltage(self) -> Optional[float]:
        """Return the battery voltage (one decimal) or ``None``."""

    @abstractmethod
    async def is_ignition_on(self) -> bool:
        """Return ``True`` if the ignition appears to be on."""
