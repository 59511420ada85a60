"""Detection of the tunnel client's virtual network interface."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from typing import Optional

import psutil
import structlog

logger = structlog.get_logger(__name__)

_NAME_KEYWORDS = ("tap", "tun", "wireguard", "openvpn", "vpn", "ppp", "wintun")
_NAME_PREFIXES = ("wg", "tun", "tap", "ppp", "utun")

_TUNNEL_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
    ipaddress.IPv4Network("100.64.0.0/10"),
)


@dataclass(frozen=True)
class TunnelInterface:
    name: str
    address: str


def is_tunnel_interface_name(name: str) -> bool:
    lowered = name.lower()
    if any(keyword in lowered for keyword in _NAME_KEYWORDS):
        return True
    return lowered.startswith(_NAME_PREFIXES)


def is_tunnel_address(address: str) -> bool:
    try:
        ip = ipaddress.IPv4Address(address)
    except ValueError:
        return False
    if ip.is_loopback:
        return False
    return any(ip in network for network in _TUNNEL_NETWORKS)


def detect_tunnel_interface() -> Optional[TunnelInterface]:
    """First up interface that looks like a tunnel and has a tunnel IPv4."""
    try:
        stats = psutil.net_if_stats()
        addrs = psutil.net_if_addrs()
    except OSError as exc:
        logger.warning("interface_enumeration_failed", error=str(exc))
        return None

    for name, nic_addrs in addrs.items():
        nic_stats = stats.get(name)
        if nic_stats is None or not nic_stats.isup:
            continue
        if not is_tunnel_interface_name(name):
            continue
        for addr in nic_addrs:
            if addr.family == socket.AF_INET and is_tunnel_address(addr.address):
                logger.debug("tunnel_interface_detected", name=name, address=addr.address)
                return TunnelInterface(name=name, address=addr.address)
    return None
