"""Decoders for the handful of ELM327 replies the agent understands.

All decoders take the raw reply text (as returned by
``ProtocolChannel.send``) and return ``None`` when the reply does not
carry the expected payload.
"""

from __future__ import annotations

import re
from typing import List, Optional

from autoconnect_agent.schemas import is_valid_vin

VOLTAGE_MIN = 8.0
VOLTAGE_MAX = 16.0

# ATRV reply, e.g. "12.6V" or "12.6"
_VOLTAGE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*V?", re.IGNORECASE)

# Mode 09 PID 02 reply: "49 02" [+ message count "01"] + 17 ASCII bytes,
# possibly followed by ISO-TP fill bytes.
_VIN_RE = re.compile(r"4902(?:01)?((?:[0-9A-F]{2}){17,})")
# Pre-CAN protocols answer one "49 02 NN" line per 4 data bytes, the first
# line NUL-padded ahead of the VIN.  With headers on each line also carries
# a 3-byte header and a trailing checksum.
_LEGACY_VIN_LINE_RE = re.compile(
    r"^(?:[0-9A-F]{6})?4902([0-9A-F]{2})([0-9A-F]{8})(?:[0-9A-F]{2})?$"
)
_VIN_LENGTH = 17
_PID_0142_RE = re.compile(r"4142([0-9A-F]{2})([0-9A-F]{2})")
_PID_010C_RE = re.compile(r"410C([0-9A-F]{2})([0-9A-F]{2})")

# 11-bit ("7E8") or 29-bit ("18DAF110") CAN header (headers on) + ISO-TP PCI:
# first frame "1Lll", consecutive frame "2N", single frame "0L".
_CAN_FRAME_RE = re.compile(
    r"^(?:7E[8-F]|18DAF1[0-9A-F]{2})(1[0-9A-F]{3}|2[0-9A-F]|0[0-9A-F])(.*)$"
)
# Multi-line replies without headers: "0:", "1:" ... prefixes.
_FRAME_INDEX_RE = re.compile(r"^[0-9A-F]:")
# Standalone byte-count line preceding multi-line replies, e.g. "014".
_BYTE_COUNT_RE = re.compile(r"^[0-9A-F]{3}$")

_ELM_VERSION_RE = re.compile(r"(ELM\d+\s*v?[\d.]*)", re.IGNORECASE)
_ELM_NOISE = ("SEARCHING...", "BUS INIT...", "BUS INIT: ...")


def _lines(text: str) -> List[str]:
    cleaned = text.replace(">", "")
    for noise in _ELM_NOISE:
        cleaned = cleaned.replace(noise, "")
    return [ln for ln in re.split(r"[\r\n]+", cleaned) if ln.strip()]


def payload_hex(text: str) -> str:
    """Concatenate the data bytes of a reply as upper-case hex.

    Strips spaces, prompts, CAN headers with their frame control byte(s),
    frame-index prefixes and byte-count lines.
    """
    parts: List[str] = []
    for line in _lines(text):
        compact = re.sub(r"\s+", "", line).upper()
        if _BYTE_COUNT_RE.match(compact):
            continue
        frame = _CAN_FRAME_RE.match(compact)
        if frame:
            compact = frame.group(2)
        elif _FRAME_INDEX_RE.match(compact):
            compact = compact[2:]
        parts.append(compact)
    return "".join(parts)


def decode_vin(text: str) -> Optional[str]:
    """Extract and validate the VIN from a ``0902`` reply."""
    data_hex = _legacy_vin_hex(text)
    if data_hex is None:
        match = _VIN_RE.search(payload_hex(text))
        if match is None:
            return None
        data_hex = match.group(1)
    # NUL padding leads the VIN; fill bytes trail it.
    data = bytes.fromhex(data_hex).lstrip(b"\x00")[:_VIN_LENGTH]
    try:
        vin = data.decode("ascii")
    except UnicodeDecodeError:
        return None
    return vin if is_valid_vin(vin) else None


def _legacy_vin_hex(text: str) -> Optional[str]:
    frames = {}
    for line in _lines(text):
        match = _LEGACY_VIN_LINE_RE.match(re.sub(r"\s+", "", line).upper())
        if match:
            frames[int(match.group(1), 16)] = match.group(2)
    if len(frames) < 2:
        return None
    return "".join(frames[index] for index in sorted(frames))


def within_voltage_bounds(value: float) -> bool:
    return VOLTAGE_MIN <= value <= VOLTAGE_MAX


def decode_adapter_voltage(text: str) -> Optional[float]:
    """Parse an ``ATRV`` reply; out-of-range values count as unparsed."""
    match = _VOLTAGE_RE.search(text)
    if match is None:
        return None
    value = float(match.group(1))
    if not within_voltage_bounds(value):
        return None
    return round(value, 1)


def decode_module_voltage(text: str) -> Optional[float]:
    """Parse a ``0142`` (control module voltage) reply: (A*256+B)/1000."""
    match = _PID_0142_RE.search(payload_hex(text))
    if match is None:
        return None
    a, b = int(match.group(1), 16), int(match.group(2), 16)
    value = (a * 256 + b) / 1000.0
    if not within_voltage_bounds(value):
        return None
    return round(value, 1)


def decode_rpm(text: str) -> Optional[int]:
    """Parse a ``010C`` (engine speed) reply: (A*256+B)/4."""
    match = _PID_010C_RE.search(payload_hex(text))
    if match is None:
        return None
    a, b = int(match.group(1), 16), int(match.group(2), 16)
    return (a * 256 + b) // 4


def decode_protocol_name(text: str) -> Optional[str]:
    """Parse an ``ATDP`` reply, e.g. ``AUTO, ISO 15765-4 (CAN 11/500)``."""
    lines = _lines(text)
    if not lines:
        return None
    name = lines[-1].strip()
    if name.upper().startswith("AUTO,"):
        name = name[5:].strip()
    return name or None


def decode_adapter_type(text: str) -> str:
    """Adapter identification from the ``ATZ`` banner, e.g. ``ELM327 v1.5``."""
    match = _ELM_VERSION_RE.search(text)
    if match is None:
        return "ELM327"
    return match.group(1).strip()
