"""AutoConnect Agent -- field telemetry bridge.

Connects to an ELM327 diagnostic adapter (or a simulated vehicle when no
hardware answers), keeps a private-network tunnel up through an external
client process, and POSTs throttled vehicle samples to the AutoConnect API.
"""

__version__ = "0.1.0"
