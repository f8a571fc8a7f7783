"""
RTP payload generators.

Contract:
- produce(state) returns exactly one packet's worth of media as a
  PayloadChunk: media bytes, RTP clock advance, marker bit, payload type
  and the wire ptime the packet occupies.
- Generators own no sequencing state. Sequence numbers, RTP timestamps
  and capture times belong to the compiler.

Variants:
- PcmuSilence   G.711 mu-law silence (0xFF), the default "silence" source
- PcmuTone      G.711 mu-law sine tone, an alternate "silence" source
- DtmfEvent     RFC 2833 telephone-event for one digit
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import numpy as np

from constants import (
    DTMF_DEFAULT_VOLUME,
    DTMF_PAYLOAD_TYPE,
    DTMF_PTIME_MS,
    DTMF_TIMESTAMP_INTERVAL,
    PCMU_PAYLOAD_TYPE,
    PCMU_SILENT_BYTE,
    PCMU_TIMING,
    ULAW_BIAS,
    ULAW_CLIP,
    CodecTiming,
    dtmf_event_code,
)
from protocol.dtmf import clamp_volume, encode_dtmf_payload


class PayloadKind(str, Enum):
    """Closed set of payload variants the compiler knows how to sequence."""
    PCMU = "pcmu"
    DTMF = "dtmf"


class DtmfDurationMode(str, Enum):
    """
    How the 16-bit duration field evolves across one DTMF event.

    CUMULATIVE: 160, 320, ... (time since event start, end packets repeat
                the final value)
    CONSTANT:   160 on every packet
    """
    CUMULATIVE = "cumulative"
    CONSTANT = "constant"


@dataclass(frozen=True)
class EmitState:
    """
    Per-packet inputs a generator may look at.

    first_audio:
        True only for the first audio packet of the whole stream.
    packet_index:
        Index of this packet within the current action.
    end_of_event:
        True for the closing packet(s) of a DTMF event.
    """
    first_audio: bool = False
    packet_index: int = 0
    end_of_event: bool = False


@dataclass(frozen=True)
class PayloadChunk:
    """One packet of media, ready to sit behind an RTP header."""
    media: bytes
    timestamp_advance: int
    marker: bool
    payload_type: int
    ptime_ms: int


class PayloadGenerator(ABC):
    """
    Abstract payload source.

    Implementations are responsible for:
    - Producing the media bytes of one packet per call
    - Reporting how far that packet advances the RTP clock
    - Deciding the marker bit from EmitState

    Non-responsibilities:
    - No sequence numbers, SSRC or RTP timestamps
    - No framing and no capture timing
    """

    kind: PayloadKind
    payload_type: int
    ptime_ms: int

    @abstractmethod
    def produce(self, state: EmitState) -> PayloadChunk:
        raise NotImplementedError


# -------------------------
# PCMU
# -------------------------

class PcmuSilence(PayloadGenerator):
    """G.711 mu-law digital silence: every sample byte is 0xFF."""

    kind = PayloadKind.PCMU
    payload_type = PCMU_PAYLOAD_TYPE

    def __init__(self, timing: CodecTiming = PCMU_TIMING) -> None:
        self._timing = timing
        self.ptime_ms = timing.ptime_ms
        self._media = bytes([PCMU_SILENT_BYTE]) * timing.samples_per_packet

    @property
    def timestamp_interval(self) -> int:
        return self._timing.samples_per_packet

    def produce(self, state: EmitState) -> PayloadChunk:
        return PayloadChunk(
            media=self._media,
            timestamp_advance=self.timestamp_interval,
            marker=state.first_audio,
            payload_type=self.payload_type,
            ptime_ms=self.ptime_ms,
        )


def linear_to_ulaw(samples: np.ndarray) -> np.ndarray:
    """
    Encode signed 16-bit PCM samples to G.711 mu-law bytes.

    Vectorized form of the ITU-T G.711 segment encoder.
    """
    pcm = np.clip(np.asarray(samples, dtype=np.int32), -ULAW_CLIP, ULAW_CLIP)
    sign = np.where(pcm < 0, 0x80, 0x00)
    magnitude = np.abs(pcm) + ULAW_BIAS

    # Segment number = position of the highest set bit above bit 7
    exponent = np.floor(np.log2(magnitude)).astype(np.int32) - 7
    exponent = np.clip(exponent, 0, 7)
    mantissa = (magnitude >> (exponent + 3)) & 0x0F

    return (~(sign | (exponent << 4) | mantissa) & 0xFF).astype(np.uint8)


class PcmuTone(PayloadGenerator):
    """
    G.711 mu-law sine tone.

    Phase carries over between packets, so consecutive packets join
    without discontinuity. Stateful: use one instance per compile.
    """

    kind = PayloadKind.PCMU
    payload_type = PCMU_PAYLOAD_TYPE

    def __init__(
        self,
        *,
        frequency_hz: float = 440.0,
        amplitude: int = 8000,
        timing: CodecTiming = PCMU_TIMING,
    ) -> None:
        if frequency_hz <= 0:
            raise ValueError("frequency_hz must be > 0")
        if not 0 <= amplitude <= ULAW_CLIP:
            raise ValueError(f"amplitude must be within 0..{ULAW_CLIP}")
        self._frequency_hz = frequency_hz
        self._amplitude = amplitude
        self._timing = timing
        self.ptime_ms = timing.ptime_ms
        self._sample_offset = 0

    def reset(self) -> None:
        self._sample_offset = 0

    def produce(self, state: EmitState) -> PayloadChunk:
        count = self._timing.samples_per_packet
        t = (self._sample_offset + np.arange(count)) / self._timing.sample_rate_hz
        pcm = np.round(self._amplitude * np.sin(2 * np.pi * self._frequency_hz * t))
        self._sample_offset += count

        return PayloadChunk(
            media=linear_to_ulaw(pcm).tobytes(),
            timestamp_advance=count,
            marker=state.first_audio,
            payload_type=self.payload_type,
            ptime_ms=self.ptime_ms,
        )


# -------------------------
# DTMF
# -------------------------

class DtmfEvent(PayloadGenerator):
    """
    RFC 2833 telephone-event payloads for a single digit.

    The marker bit is set on packet 0 of the event only; the stream-wide
    first_audio gate does not apply.
    """

    kind = PayloadKind.DTMF
    payload_type = DTMF_PAYLOAD_TYPE
    ptime_ms = DTMF_PTIME_MS

    def __init__(
        self,
        digit: str,
        *,
        volume: int = DTMF_DEFAULT_VOLUME,
        duration_mode: DtmfDurationMode = DtmfDurationMode.CUMULATIVE,
    ) -> None:
        self.digit = digit
        self.event = dtmf_event_code(digit)
        self.volume = clamp_volume(volume)
        self.duration_mode = DtmfDurationMode(duration_mode)

    def duration_for(self, packet_index: int) -> int:
        if self.duration_mode is DtmfDurationMode.CONSTANT:
            return DTMF_TIMESTAMP_INTERVAL
        return DTMF_TIMESTAMP_INTERVAL * (packet_index + 1)

    def produce(self, state: EmitState) -> PayloadChunk:
        media = encode_dtmf_payload(
            event=self.event,
            end_of_event=state.end_of_event,
            volume=self.volume,
            duration=self.duration_for(state.packet_index),
        )
        # RTP timestamp is pinned to event start; the compiler ignores
        # the advance until the event is over.
        return PayloadChunk(
            media=media,
            timestamp_advance=DTMF_TIMESTAMP_INTERVAL,
            marker=state.packet_index == 0,
            payload_type=self.payload_type,
            ptime_ms=self.ptime_ms,
        )
