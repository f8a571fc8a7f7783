"""
Ethernet / IPv4 / UDP framing for RTP packets.

Pure assembly: no sockets, no timing.

Lengths (IPv4 total length, UDP length) and checksums (IPv4 header, UDP)
are left unset on the scapy layers, so they are computed when the packet
is built, after the RTP bytes are final.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Tuple

from scapy.layers.inet import IP, UDP
from scapy.layers.l2 import Ether
from scapy.packet import Raw

from constants import (
    ETH_DST_MAC,
    ETH_HEADER_BYTES,
    ETH_SRC_MAC,
    ETH_TYPE_IPV4,
    IPV4_ID,
    IPV4_TTL,
    PORT_MAX,
    UDP_HEADER_BYTES,
)
from protocol.errors import MediaError
from protocol.rtp_header import RtpHeader, split_rtp_packet


class InvalidAddress(MediaError, ValueError):
    """Raised when an endpoint is not an IPv4 address and a valid port."""


class MalformedFrame(MediaError):
    """Raised when captured bytes are not an Ethernet/IPv4/UDP frame."""


@dataclass(frozen=True)
class Endpoint:
    """Validated IPv4 address + UDP port."""
    address: str
    port: int

    @classmethod
    def parse(cls, address: str, port: int | str) -> Endpoint:
        try:
            parsed = ipaddress.IPv4Address(str(address).strip())
        except ipaddress.AddressValueError as exc:
            raise InvalidAddress(f"Invalid IPv4 address {address!r}: {exc}") from None

        try:
            port_num = int(port)
        except (TypeError, ValueError):
            raise InvalidAddress(f"Invalid port {port!r}") from None
        if not 0 <= port_num <= PORT_MAX:
            raise InvalidAddress(f"Port {port_num} outside 0..{PORT_MAX}")

        return cls(address=str(parsed), port=port_num)

    @classmethod
    def from_string(cls, value: str) -> Endpoint:
        """Parse "a.b.c.d:port"."""
        address, sep, port = str(value).rpartition(":")
        if not sep:
            raise InvalidAddress(f"Expected address:port, got {value!r}")
        return cls.parse(address, port)

    def __str__(self) -> str:
        return f"{self.address}:{self.port}"


class FrameAssembler:
    """
    Wraps RTP bytes for a fixed source/destination pair.

    One assembler per compiled stream.
    """

    def __init__(
        self,
        source: Endpoint,
        destination: Endpoint,
        *,
        src_mac: str = ETH_SRC_MAC,
        dst_mac: str = ETH_DST_MAC,
    ) -> None:
        self.source = source
        self.destination = destination
        self._src_mac = src_mac
        self._dst_mac = dst_mac

    def assemble(self, rtp_packet: bytes) -> bytes:
        frame = (
            Ether(src=self._src_mac, dst=self._dst_mac, type=ETH_TYPE_IPV4)
            / IP(
                src=self.source.address,
                dst=self.destination.address,
                id=IPV4_ID,
                ttl=IPV4_TTL,
            )
            / UDP(sport=self.source.port, dport=self.destination.port)
            / Raw(load=rtp_packet)
        )
        return bytes(frame)


def parse_frame(data: bytes) -> Tuple[RtpHeader, bytes]:
    """
    Recover (RTP header, RTP payload) from an assembled frame.
    """
    frame = Ether(data)
    if IP not in frame or UDP not in frame:
        raise MalformedFrame("Frame carries no IPv4/UDP datagram")

    # RTP bytes are sliced from the raw frame, not from scapy's UDP payload
    start = ETH_HEADER_BYTES + frame[IP].ihl * 4 + UDP_HEADER_BYTES
    end = start + frame[UDP].len - UDP_HEADER_BYTES
    if end > len(data):
        raise MalformedFrame(f"UDP length {frame[UDP].len} exceeds captured bytes")

    return split_rtp_packet(data[start:end])
