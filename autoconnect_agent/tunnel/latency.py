"""Link-quality probing: TCP connect round-trips to public resolvers."""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional, Sequence, Tuple

import structlog

logger = structlog.get_logger(__name__)

LATENCY_UNAVAILABLE = -1


def parse_endpoint(value: str, default_port: int = 53) -> Tuple[str, int]:
    host, sep, port = value.rpartition(":")
    if not sep:
        return value, default_port
    return host, int(port)


async def probe_endpoint(host: str, port: int, timeout: float) -> Optional[float]:
    """Milliseconds to complete a TCP handshake, or ``None`` on failure."""
    started = time.perf_counter()
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError) as exc:
        logger.debug("latency_probe_failed", host=host, port=port, error=str(exc))
        return None
    elapsed = (time.perf_counter() - started) * 1000.0
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return elapsed


async def measure_latency(endpoints: Sequence[str], timeout: float = 3.0) -> int:
    """Average round-trip over the reachable *endpoints*, or ``-1``."""
    targets = [parse_endpoint(ep) for ep in endpoints]
    results = await asyncio.gather(
        *(probe_endpoint(host, port, timeout) for host, port in targets)
    )
    latencies: List[float] = [r for r in results if r is not None]
    if not latencies:
        logger.debug("latency_unavailable", endpoints=list(endpoints))
        return LATENCY_UNAVAILABLE
    return int(sum(latencies) / len(latencies))
