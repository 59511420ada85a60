"""Agent configuration via environment variables.

Uses pydantic-settings so every field can be overridden with an
env var.  Adapter discovery is the default; ``OBD_PORT=sim`` skips the
serial scan entirely.

Note: ``env_prefix`` is empty, so field names map directly to env vars
(e.g. ``POLL_INTERVAL_SECONDS``, ``TUNNEL_CONFIG_PATH``).  List fields
take JSON, e.g. ``OBD_BAUDRATES='[38400, 9600]'``.
"""

from __future__ import annotations

import uuid
from functools import cached_property
from typing import List, Optional

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)


class AgentSettings(BaseSettings):
    """AutoConnect agent runtime settings."""

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    # -- adapter / vehicle --------------------------------------------------
    obd_port: str = Field(
        default="auto",
        description="'auto' to scan serial ports, 'sim' to force simulation, "
        "or a device path to probe only that port",
    )
    obd_baudrates: List[int] = Field(
        default_factory=lambda: [38400, 9600, 115200, 57600],
        description="Bit-rates tried per port, in order",
    )
    obd_settle_delay_seconds: float = Field(
        default=0.1, description="Pause after opening a port before ATZ"
    )
    obd_poll_granularity_seconds: float = Field(
        default=0.1, description="Read polling interval while awaiting a reply"
    )
    obd_max_polls: int = Field(
        default=30, description="Polling iterations before a command times out"
    )
    obd_error_threshold: int = Field(
        default=5,
        description="Consecutive communication errors before the adapter session is closed",
    )
    sim_voltage_step: float = Field(
        default=0.1, description="Max change per simulated voltage reading (V)"
    )
    client_id: Optional[str] = Field(
        default=None, description="Client UUID registered with the API"
    )
    poll_interval_seconds: float = Field(
        default=2.0, description="Seconds between vehicle polls"
    )

    # -- API ----------------------------------------------------------------
    api_base_url: str = Field(
        default="http://127.0.0.1:5000",
        description="Base URL of the AutoConnect API",
    )
    api_timeout_seconds: float = Field(default=30.0, description="HTTP timeout")
    max_retry_attempts: int = Field(
        default=3,
        description="Max HTTP attempts for session calls",
    )
    telemetry_interval_seconds: float = Field(
        default=1.0, description="Seconds between emitter ticks"
    )
    telemetry_min_interval_seconds: float = Field(
        default=2.0, description="Minimum seconds between sample uploads"
    )

    # -- tunnel -------------------------------------------------------------
    tunnel_enabled: bool = Field(default=True, description="Run the tunnel supervisor")
    tunnel_config_path: str = Field(
        default="vpn-configs/client.ovpn",
        description="Tunnel client configuration file",
    )
    tunnel_client_binary: str = Field(
        default="openvpn", description="Tunnel client executable (name or path)"
    )
    tunnel_data_ciphers: str = Field(
        default="AES-256-GCM:AES-128-GCM:CHACHA20-POLY1305",
        description="Cipher suite passed to the tunnel client",
    )
    tunnel_verbosity: int = Field(default=3, description="Tunnel client --verb level")
    tunnel_management_port: int = Field(
        default=7505, description="Tunnel client management port on 127.0.0.1"
    )
    tunnel_connect_timeout_seconds: float = Field(
        default=20.0, description="Max wait for the tunnel interface to appear"
    )
    tunnel_simulation_fallback: bool = Field(
        default=True,
        description="Simulate a tunnel when no configured client is available",
    )
    tunnel_sim_connect_delay_seconds: float = Field(
        default=2.0, description="Synthetic connect time in simulation"
    )
    heartbeat_interval_seconds: float = Field(
        default=5.0, description="Seconds between tunnel status checks"
    )
    reconnect_max_attempts: int = Field(
        default=3, description="Reconnect attempts before terminal failure"
    )
    reconnect_delay_seconds: float = Field(
        default=5.0, description="Delay before each reconnect attempt"
    )
    latency_endpoints: List[str] = Field(
        default_factory=lambda: ["8.8.8.8:53", "1.1.1.1:53", "208.67.222.222:53"],
        description="host:port targets for link-quality probes",
    )
    latency_probe_timeout_seconds: float = Field(
        default=3.0, description="Per-probe timeout"
    )

    # -- behaviour ----------------------------------------------------------
    dry_run: bool = Field(
        default=False,
        description="Log API payloads locally; never send them",
    )
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="console",
        description="Log output format: 'console' or 'json'",
    )

    # -- derived ------------------------------------------------------------
    @property
    def is_simulation(self) -> bool:
        """Return ``True`` when the vehicle side is forced into simulation."""
        return self.obd_port.strip().lower() == "sim"

    @property
    def scan_all_ports(self) -> bool:
        return self.obd_port.strip().lower() == "auto"

    @cached_property
    def resolved_client_id(self) -> str:
        """Configured client UUID, or a freshly generated one."""
        if self.client_id:
            try:
                return str(uuid.UUID(self.client_id))
            except ValueError:
                pass
        generated = str(uuid.uuid4())
        logger.warning(
            "client_id_generated",
            configured=self.client_id,
            client_id=generated,
        )
        return generated
