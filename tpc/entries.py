# tpc/entries.py

"""
Policy entries accepted by the engine, and the decoded packet-in event.

Entries are immutable. Constraint checks live in the rule builder, which is
the only consumer; decoding helpers used by the REST adapter raise
MalformedEntry on values they cannot parse.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass

from tpc.errors import MalformedEntry


@dataclass(frozen=True)
class AttackEntry:
    device_id: str
    src_address: ipaddress.IPv4Address
    dst_address: ipaddress.IPv4Address
    src_address_rewritten: ipaddress.IPv4Address
    dst_address_rewritten: ipaddress.IPv4Address

    def __str__(self):
        return (
            f"AttackEntry: deviceId={self.device_id}, srcAddress={self.src_address}, "
            f"dstAddress={self.dst_address}, srcAddressRewritten={self.src_address_rewritten}, "
            f"dstAddressRewritten={self.dst_address_rewritten}"
        )


@dataclass(frozen=True)
class SliceIdEntry:
    device_id: str
    port_number: int
    slice_id: int

    def __str__(self):
        return f"SliceIdEntry: deviceId={self.device_id}, portNumber={self.port_number}, sliceId={self.slice_id}"


@dataclass(frozen=True)
class SliceQoSEntry:
    slice_id: int
    pir: int  # bits per second

    def __str__(self):
        return f"SliceQoSEntry: sliceId={self.slice_id}, pir={self.pir}"


@dataclass(frozen=True)
class PacketInEvent:
    device_id: str
    port: int
    eth_type: int
    data: bytes = b""


# -------------------------------------------------------------------
# Value decoders
# -------------------------------------------------------------------
# Reserved logical port numbers (32-bit, OpenFlow-style).
LOGICAL_PORTS = {
    "IN_PORT": 0xFFFFFFF8,
    "TABLE": 0xFFFFFFF9,
    "NORMAL": 0xFFFFFFFA,
    "FLOOD": 0xFFFFFFFB,
    "ALL": 0xFFFFFFFC,
    "CONTROLLER": 0xFFFFFFFD,
    "LOCAL": 0xFFFFFFFE,
    "ANY": 0xFFFFFFFF,
}


def port_number_from_string(s: str) -> int:
    """
    Decode a port number.

    Accepted forms:
      - decimal ("42")
      - logical port name ("CONTROLLER", "LOCAL", ...)
      - "[name](number)", where number wins
    """
    text = str(s).strip()
    if text.startswith("[") and text.endswith(")") and "](" in text:
        text = text[text.index("](") + 2:-1]

    upper = text.upper()
    if upper in LOGICAL_PORTS:
        return LOGICAL_PORTS[upper]

    try:
        port = int(text, 10)
    except ValueError:
        raise MalformedEntry(f"invalid port number: {s!r}") from None
    if port < 0 or port > 0xFFFFFFFF:
        raise MalformedEntry(f"port number out of range: {s!r}")
    return port


def ipv4_from_string(s: str) -> ipaddress.IPv4Address:
    try:
        return ipaddress.IPv4Address(str(s).strip())
    except ValueError:
        raise MalformedEntry(f"invalid IPv4 address: {s!r}") from None


def slice_id_from_string(s: str) -> int:
    try:
        value = int(str(s).strip(), 10)
    except ValueError:
        raise MalformedEntry(f"invalid slice id: {s!r}") from None
    if not 0 <= value <= 0xFF:
        raise MalformedEntry(f"slice id out of range (0-255): {s!r}")
    return value


def pir_from_string(s: str) -> int:
    try:
        value = int(str(s).strip(), 10)
    except ValueError:
        raise MalformedEntry(f"invalid pir: {s!r}") from None
    if not 0 <= value < 2 ** 64:
        raise MalformedEntry(f"pir out of range: {s!r}")
    return value
