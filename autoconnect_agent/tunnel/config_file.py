"""Tunnel client configuration file: validation and template creation.

Validation checks the directives an OpenVPN-style client configuration
needs to connect and flags those that clash with how the agent runs the
client.  An unreadable file is reported as an error, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import structlog

logger = structlog.get_logger(__name__)

TEMPLATE_REMOTE_HOST = "your-vpn-server.example.com"

CONFIG_TEMPLATE = f"""\
# AutoConnect tunnel client configuration (template)
# Replace the remote host and credentials with your server's details.
# Required alongside this file:
#   ca.crt      - certificate authority certificate
#   client.crt  - client certificate
#   client.key  - client private key

client
dev tun
proto udp
remote {TEMPLATE_REMOTE_HOST} 1194
resolv-retry infinite
nobind
persist-key
persist-tun
ca ca.crt
cert client.crt
key client.key
remote-cert-tls server
keepalive 10 60
verb 3
auth-nocache
"""

_DEPRECATED_DIRECTIVES = ("tls-remote", "ns-cert-type")


@dataclass
class ConfigValidation:
    """Outcome of ``validate_tunnel_config``."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    info: List[str] = field(default_factory=list)
    is_template: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _directive_lines(content: str) -> List[str]:
    lines = []
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", ";")):
            continue
        lines.append(line)
    return lines


def _has_directive(lines: List[str], directive: str) -> bool:
    return any(ln == directive or ln.startswith(directive + " ") for ln in lines)


def _directive_values(lines: List[str], directive: str) -> List[str]:
    prefix = directive + " "
    return [ln[len(prefix):].strip() for ln in lines if ln.startswith(prefix)]


def is_valid_remote(value: str) -> bool:
    """``host [port [udp|tcp]]`` with port in 1..65535."""
    parts = value.split()
    if not 1 <= len(parts) <= 3:
        return False
    if len(parts) >= 2:
        if not parts[1].isdigit() or not 1 <= int(parts[1]) <= 65535:
            return False
    if len(parts) == 3 and parts[2].lower() not in ("udp", "tcp"):
        return False
    return True


def validate_tunnel_config(path: Path) -> ConfigValidation:
    result = ConfigValidation()
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        result.errors.append(f"Configuration file not found: {path}")
        return result
    except (OSError, UnicodeDecodeError) as exc:
        result.errors.append(f"Error reading configuration file: {exc}")
        return result

    lines = _directive_lines(content)

    if not _has_directive(lines, "client"):
        result.errors.append("Missing 'client' directive")
    remotes = _directive_values(lines, "remote")
    if not remotes:
        result.errors.append("Missing 'remote' directive - no server specified")

    inline_certs = "<ca>" in content and ("<cert>" in content or "<key>" in content)
    cert_files = _has_directive(lines, "ca") and (
        _has_directive(lines, "cert") or _has_directive(lines, "key")
    )
    user_pass = _has_directive(lines, "auth-user-pass")
    if not (inline_certs or cert_files or user_pass):
        result.errors.append(
            "Missing authentication method - no certificates or auth-user-pass"
        )

    if not _has_directive(lines, "dev"):
        result.warnings.append("Missing 'dev' directive - defaulting to 'tun'")
    if not _has_directive(lines, "proto"):
        result.warnings.append("Missing 'proto' directive - defaulting to 'udp'")
    for remote in remotes:
        if not is_valid_remote(remote):
            result.warnings.append(f"Remote server format may be incorrect: {remote}")
        if remote.split()[0] == TEMPLATE_REMOTE_HOST:
            result.is_template = True
    for directive in _DEPRECATED_DIRECTIVES:
        if _has_directive(lines, directive):
            result.warnings.append(f"Deprecated directive found: {directive}")
    if _has_directive(lines, "management"):
        result.warnings.append(
            "Config contains a 'management' directive - it may conflict "
            "with the agent's management port"
        )
    if not _has_directive(lines, "pull"):
        result.info.append("Consider adding 'pull' to receive server configuration")

    logger.info(
        "tunnel_config_validated",
        path=str(path),
        errors=len(result.errors),
        warnings=len(result.warnings),
    )
    return result


def write_config_template(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CONFIG_TEMPLATE, encoding="utf-8")
    logger.info("tunnel_config_template_created", path=str(path))
