# backend/protocol/dtmf.py
"""
RFC 2833 telephone-event payload codec.

Layout (4 bytes, network byte order):

    byte 0      event code (0-15 for DTMF)
    byte 1      E(1) | R(1) | volume(6)
    bytes 2-3   duration (u16, RTP clock ticks)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from constants import (
    DTMF_DIGITS,
    DTMF_END_OF_EVENT_FLAG,
    DTMF_PAYLOAD_BYTES,
    DTMF_VOLUME_MAX,
)
from protocol.errors import MediaError

_EVENT = struct.Struct("!BBH")


class MalformedPayload(MediaError):
    """Raised when a telephone-event payload cannot be decoded."""


def clamp_volume(volume: int) -> int:
    """Cap volume to the 6-bit field; negative values become 0."""
    return max(0, min(volume, DTMF_VOLUME_MAX))


@dataclass(frozen=True)
class DtmfEventPayload:
    """Decoded telephone-event payload."""
    event: int
    end_of_event: bool
    volume: int
    duration: int

    @property
    def digit(self) -> str:
        return DTMF_DIGITS[self.event]


def encode_dtmf_payload(
    *,
    event: int,
    end_of_event: bool,
    volume: int,
    duration: int,
) -> bytes:
    """
    Encode one telephone-event payload.

    Volume is clamped to 6 bits; duration is truncated to 16 bits.
    """
    flags = (DTMF_END_OF_EVENT_FLAG if end_of_event else 0) | clamp_volume(volume)
    return _EVENT.pack(event & 0xFF, flags, duration & 0xFFFF)


def decode_dtmf_payload(payload: bytes) -> DtmfEventPayload:
    """
    Decode a telephone-event payload.

    Only DTMF events (codes 0-15) are accepted.
    """
    if len(payload) != DTMF_PAYLOAD_BYTES:
        raise MalformedPayload(
            f"telephone-event payload length {len(payload)} != {DTMF_PAYLOAD_BYTES}"
        )

    event, flags, duration = _EVENT.unpack(payload)

    if event >= len(DTMF_DIGITS):
        raise MalformedPayload(f"Unsupported telephone-event code: {event}")

    return DtmfEventPayload(
        event=event,
        end_of_event=bool(flags & DTMF_END_OF_EVENT_FLAG),
        volume=flags & DTMF_VOLUME_MAX,
        duration=duration,
    )
