"""Framing of relayed datagrams.

Each frame on the TCP side looks like::

    | 0x17 | 0x03 | 0x03 | length (2) | 0x04 | dest IP (4) | dest port (2) | data |

``length`` counts the version byte, address and port (7 bytes) plus the data.
"""

import ipaddress
import struct
from typing import NamedTuple

HEADER_SIZE = 12
_ADDRESS_OVERHEAD = 7
_HEADER = struct.Struct(">BBBHB4sH")


class PacketInfo(NamedTuple):
    """Destination of a framed packet and the length of its payload."""

    dest_addr: tuple
    payload_length: int


def packet_info(data):
    """Parse a frame header and return its destination and payload length."""
    if len(data) < HEADER_SIZE:
        raise ValueError(f"Packet too short: {len(data)} bytes")
    total_length = (data[3] << 8) | data[4]
    if total_length < _ADDRESS_OVERHEAD:
        raise ValueError(f"Invalid packet length: {total_length}")
    dest_ip = ".".join(str(octet) for octet in data[6:10])
    dest_port = (data[10] << 8) | data[11]
    return PacketInfo((dest_ip, dest_port), total_length - _ADDRESS_OVERHEAD)


def packet_header(dest_addr, payload_length):
    """Build the 12-byte frame header for a payload coming from ``dest_addr``."""
    host, port = dest_addr[0], dest_addr[1]
    ip = ipaddress.ip_address(host)
    if ip.version != 4:
        raise ValueError("IPv6 is not supported")
    total_length = payload_length + _ADDRESS_OVERHEAD
    if not 0 <= payload_length or total_length > 0xFFFF:
        raise ValueError(f"Invalid payload length: {payload_length}")
    return _HEADER.pack(0x17, 0x03, 0x03, total_length, 4, ip.packed, port)