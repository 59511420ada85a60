"""Vehicle data sources.

Provides the ``VehicleSource`` ABC with two concrete implementations,
chosen once per session by the vehicle link:

* ``SimulatedSource`` -- bounded random data, no hardware required.
* ``HardwareSource``  -- ELM327 commands over an ``AdapterSession``.
"""

from autoconnect_agent.reader.base import VehicleSource

__all__ = ["VehicleSource"]
