"""Tests for autoconnect_agent.tunnel.interfaces and latency probing."""

from __future__ import annotations

import socket
from collections import namedtuple

import pytest

from autoconnect_agent.tunnel import interfaces, latency
from autoconnect_agent.tunnel.interfaces import (
    TunnelInterface,
    detect_tunnel_interface,
    is_tunnel_address,
    is_tunnel_interface_name,
)

_Addr = namedtuple("_Addr", "family address")
_Stats = namedtuple("_Stats", "isup")


def _patch_nics(monkeypatch, addrs, stats) -> None:
    monkeypatch.setattr(interfaces.psutil, "net_if_addrs", lambda: addrs)
    monkeypatch.setattr(interfaces.psutil, "net_if_stats", lambda: stats)


@pytest.mark.parametrize("name", ["tun0", "tap1", "utun3", "wg0", "ppp0", "OpenVPN TAP-Windows6"])
def test_tunnel_names(name: str) -> None:
    assert is_tunnel_interface_name(name)


@pytest.mark.parametrize("name", ["eth0", "wlan0", "lo", "en0"])
def test_non_tunnel_names(name: str) -> None:
    assert not is_tunnel_interface_name(name)


def test_tunnel_addresses() -> None:
    assert is_tunnel_address("10.8.0.6")
    assert is_tunnel_address("172.20.1.2")
    assert is_tunnel_address("100.64.3.4")
    assert not is_tunnel_address("127.0.0.1")
    assert not is_tunnel_address("8.8.8.8")
    assert not is_tunnel_address("fe80::1")


def test_detects_up_tunnel_with_private_ipv4(monkeypatch) -> None:
    _patch_nics(
        monkeypatch,
        {
            "eth0": [_Addr(socket.AF_INET, "192.168.1.10")],
            "tun0": [_Addr(socket.AF_INET6, "fe80::1"), _Addr(socket.AF_INET, "10.8.0.6")],
        },
        {"eth0": _Stats(True), "tun0": _Stats(True)},
    )
    assert detect_tunnel_interface() == TunnelInterface("tun0", "10.8.0.6")


def test_ignores_down_interfaces(monkeypatch) -> None:
    _patch_nics(
        monkeypatch,
        {"tun0": [_Addr(socket.AF_INET, "10.8.0.6")]},
        {"tun0": _Stats(False)},
    )
    assert detect_tunnel_interface() is None


def test_enumeration_failure_is_not_raised(monkeypatch) -> None:
    def _boom():
        raise OSError("permission denied")

    monkeypatch.setattr(interfaces.psutil, "net_if_stats", _boom)
    assert detect_tunnel_interface() is None


# ---------------------------------------------------------------------------
# Latency
# ---------------------------------------------------------------------------

def test_parse_endpoint() -> None:
    assert latency.parse_endpoint("8.8.8.8:53") == ("8.8.8.8", 53)
    assert latency.parse_endpoint("dns.example") == ("dns.example", 53)


@pytest.mark.asyncio
async def test_measure_latency_averages_reachable_probes(monkeypatch) -> None:
    results = {"a": 10.0, "b": None, "c": 30.0}

    async def _probe(host, port, timeout):
        return results[host]

    monkeypatch.setattr(latency, "probe_endpoint", _probe)
    assert await latency.measure_latency(["a:1", "b:1", "c:1"]) == 20


@pytest.mark.asyncio
async def test_measure_latency_unavailable(monkeypatch) -> None:
    async def _probe(host, port, timeout):
        return None

    monkeypatch.setattr(latency, "probe_endpoint", _probe)
    assert await latency.measure_latency(["a:1"]) == latency.LATENCY_UNAVAILABLE
    assert await latency.measure_latency([]) == latency.LATENCY_UNAVAILABLE
