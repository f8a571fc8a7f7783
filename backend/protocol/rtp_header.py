# backend/protocol/rtp_header.py
"""
RTP fixed-header codec.

RFC 3550 §5.1, network byte order:

    byte 0      V(2) | P(1) | X(1) | CC(4)
    byte 1      M(1) | PT(7)
    bytes 2-3   sequence number (u16)
    bytes 4-7   timestamp       (u32)
    bytes 8-11  SSRC            (u32)
    bytes 12..  CC x CSRC       (u32 each)

Only the X flag is carried; extension header bodies are not supported.

Usage example:

    header = RtpHeader(payload_type=0, sequence_number=1, timestamp=160, ssrc=ssrc)
    packet = encode_rtp_header(header) + media

    decoded, payload = split_rtp_packet(packet)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Tuple

from constants import (
    RTP_CSRC_BYTES,
    RTP_HEADER_BYTES,
    RTP_MAX_CSRC_COUNT,
    RTP_PAYLOAD_TYPE_MAX,
    RTP_SEQ_MAX,
    RTP_U32_MAX,
    RTP_VERSION,
)
from protocol.errors import MediaError

_FIXED = struct.Struct("!BBHII")
_CSRC = struct.Struct("!I")


# -------------------------
# Exceptions
# -------------------------

class TruncatedHeader(MediaError):
    """
    Raised when a buffer is shorter than the RTP header it announces.

    The fixed part needs 12 bytes, plus 4 bytes per CSRC declared in the
    CC field of byte 0.
    """


class InvalidHeaderField(MediaError, ValueError):
    """
    Raised when a header field does not fit its bit width.

    The compiler masks every value it produces, so seeing this means a
    bookkeeping invariant was broken upstream.
    """


# -------------------------
# Header value
# -------------------------

def _check_range(name: str, value: int, upper: int) -> None:
    if value < 0 or value > upper:
        raise InvalidHeaderField(f"{name}={value} outside 0..{upper}")


@dataclass(frozen=True)
class RtpHeader:
    """
    Decoded RTP fixed header.

    Flags are stored as bools; numeric fields must already be in range.
    """
    payload_type: int = 0
    sequence_number: int = 0
    timestamp: int = 0
    ssrc: int = 0
    marker: bool = False
    padding: bool = False
    extension: bool = False
    csrcs: Tuple[int, ...] = field(default_factory=tuple)
    version: int = RTP_VERSION

    def __post_init__(self) -> None:
        _check_range("version", self.version, 3)
        _check_range("payload_type", self.payload_type, RTP_PAYLOAD_TYPE_MAX)
        _check_range("sequence_number", self.sequence_number, RTP_SEQ_MAX)
        _check_range("timestamp", self.timestamp, RTP_U32_MAX)
        _check_range("ssrc", self.ssrc, RTP_U32_MAX)
        if len(self.csrcs) > RTP_MAX_CSRC_COUNT:
            raise InvalidHeaderField(
                f"csrc count {len(self.csrcs)} > {RTP_MAX_CSRC_COUNT}"
            )
        for csrc in self.csrcs:
            _check_range("csrc", csrc, RTP_U32_MAX)

    @property
    def csrc_count(self) -> int:
        return len(self.csrcs)

    @property
    def size(self) -> int:
        """Encoded length in bytes."""
        return RTP_HEADER_BYTES + RTP_CSRC_BYTES * self.csrc_count


# -------------------------
# Encode / decode
# -------------------------

def encode_rtp_header(header: RtpHeader) -> bytes:
    """
    Serialize an RtpHeader to its 12 + 4n byte wire form.
    """
    byte0 = (
        (header.version << 6)
        | (int(header.padding) << 5)
        | (int(header.extension) << 4)
        | header.csrc_count
    )
    byte1 = (int(header.marker) << 7) | header.payload_type

    out = bytearray(
        _FIXED.pack(
            byte0,
            byte1,
            header.sequence_number,
            header.timestamp,
            header.ssrc,
        )
    )
    for csrc in header.csrcs:
        out += _CSRC.pack(csrc)

    return bytes(out)


def decode_rtp_header(buf: bytes) -> RtpHeader:
    """
    Parse the RTP header at the start of `buf`.

    Trailing bytes (the payload) are ignored; see split_rtp_packet().
    """
    if len(buf) < RTP_HEADER_BYTES:
        raise TruncatedHeader(
            f"RTP header needs {RTP_HEADER_BYTES} bytes, got {len(buf)}"
        )

    byte0, byte1, seq, ts, ssrc = _FIXED.unpack_from(buf, 0)
    csrc_count = byte0 & 0x0F

    needed = RTP_HEADER_BYTES + RTP_CSRC_BYTES * csrc_count
    if len(buf) < needed:
        raise TruncatedHeader(
            f"RTP header with {csrc_count} CSRCs needs {needed} bytes, got {len(buf)}"
        )

    csrcs = tuple(
        _CSRC.unpack_from(buf, RTP_HEADER_BYTES + RTP_CSRC_BYTES * i)[0]
        for i in range(csrc_count)
    )

    return RtpHeader(
        version=byte0 >> 6,
        padding=bool((byte0 >> 5) & 1),
        extension=bool((byte0 >> 4) & 1),
        marker=bool(byte1 >> 7),
        payload_type=byte1 & RTP_PAYLOAD_TYPE_MAX,
        sequence_number=seq,
        timestamp=ts,
        ssrc=ssrc,
        csrcs=csrcs,
    )


def split_rtp_packet(packet: bytes) -> Tuple[RtpHeader, bytes]:
    """
    Split a full RTP packet into (header, payload).
    """
    header = decode_rtp_header(packet)
    return header, packet[header.size:]
