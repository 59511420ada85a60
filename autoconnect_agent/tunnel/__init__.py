"""Tunnel side of the agent: external client supervision and link checks."""

from autoconnect_agent.tunnel.supervisor import ReconnectCounter, TunnelSupervisor

__all__ = ["ReconnectCounter", "TunnelSupervisor"]
