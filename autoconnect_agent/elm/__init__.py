"""ELM327 adapter protocol layer.

* ``channel``   -- serialised command/response exchanges with timeout.
* ``discovery`` -- port/bit-rate scan identifying the adapter.
* ``decode``    -- reply decoders (VIN, voltage, RPM, protocol).
"""

from autoconnect_agent.elm.channel import ProtocolChannel, Response, ResponseKind
from autoconnect_agent.elm.discovery import AdapterDiscovery, AdapterSession

__all__ = [
    "AdapterDiscovery",
    "AdapterSession",
    "ProtocolChannel",
    "Response",
    "ResponseKind",
]
