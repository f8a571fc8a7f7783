"""
WIRE-FORMAT CONSTANTS
---------------------
Single source of truth for all wire and timing invariants of generated media.

Rules:
- If changing a value changes the bytes we emit, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Tuple

# =============================================================================
# RTP Fixed Header  [RFC 3550 §5.1]
# =============================================================================

RTP_VERSION: Final[int] = 2
RTP_HEADER_BYTES: Final[int] = 12
RTP_CSRC_BYTES: Final[int] = 4
RTP_MAX_CSRC_COUNT: Final[int] = 15  # 4-bit CC field

RTP_PAYLOAD_TYPE_MAX: Final[int] = 0x7F
RTP_SEQ_MODULUS: Final[int] = 2**16
RTP_TIMESTAMP_MODULUS: Final[int] = 2**32
RTP_SEQ_MAX: Final[int] = RTP_SEQ_MODULUS - 1
RTP_U32_MAX: Final[int] = RTP_TIMESTAMP_MODULUS - 1

# SSRC is drawn from [0, 2**31)
SSRC_DRAW_LIMIT: Final[int] = 2**31

# =============================================================================
# PCMU (G.711 mu-law, 8 kHz, 20 ms)
# =============================================================================

PCMU_PAYLOAD_TYPE: Final[int] = 0
PCMU_RATE_KHZ: Final[int] = 8
PCMU_PTIME_MS: Final[int] = 20
PCMU_SILENT_BYTE: Final[int] = 0xFF

# mu-law encoder parameters (ITU-T G.711)
ULAW_BIAS: Final[int] = 0x84
ULAW_CLIP: Final[int] = 32635

# =============================================================================
# DTMF telephone-event  [RFC 2833 §3.5]
# =============================================================================

DTMF_PAYLOAD_TYPE: Final[int] = 101
DTMF_PTIME_MS: Final[int] = 20
DTMF_TIMESTAMP_INTERVAL: Final[int] = 160
DTMF_EVENT_MS: Final[int] = 250
DTMF_PAYLOAD_BYTES: Final[int] = 4

# Base run: 250 // 20 + 1 = 13 packets, the last one carrying end-of-event
DTMF_BASE_PACKETS: Final[int] = DTMF_EVENT_MS // DTMF_PTIME_MS + 1
DTMF_REDUNDANT_END_PACKETS: Final[int] = 2

DTMF_END_OF_EVENT_FLAG: Final[int] = 1 << 7
DTMF_VOLUME_MAX: Final[int] = 0x3F
DTMF_DEFAULT_VOLUME: Final[int] = 10

# Event code == index into this table
DTMF_DIGITS: Final[Tuple[str, ...]] = (
    "0", "1", "2", "3", "4", "5", "6", "7", "8", "9",
    "*", "#", "A", "B", "C", "D",
)

# =============================================================================
# Framing (Ethernet II / IPv4 / UDP)
# =============================================================================

# SIPp rewrites addresses on replay; MACs are placeholders.
ETH_SRC_MAC: Final[str] = "00:00:00:00:00:01"
ETH_DST_MAC: Final[str] = "00:00:00:00:00:02"
ETH_TYPE_IPV4: Final[int] = 0x0800
ETH_HEADER_BYTES: Final[int] = 14
UDP_HEADER_BYTES: Final[int] = 8

IPV4_TTL: Final[int] = 64
IPV4_ID: Final[int] = 0

PORT_MAX: Final[int] = 65_535

# =============================================================================
# PCAP  [libpcap file format]
# =============================================================================

PCAP_MAGIC: Final[int] = 0xA1B2C3D4
PCAP_VERSION_MAJOR: Final[int] = 2
PCAP_VERSION_MINOR: Final[int] = 4
PCAP_THISZONE: Final[int] = 0
PCAP_SIGFIGS: Final[int] = 0
PCAP_SNAPLEN: Final[int] = 65_535
PCAP_LINKTYPE_ETHERNET: Final[int] = 1

PCAP_GLOBAL_HEADER_FORMAT: Final[str] = "<IHHiIII"
PCAP_RECORD_HEADER_FORMAT: Final[str] = "<IIII"
PCAP_GLOBAL_HEADER_BYTES: Final[int] = 24
PCAP_RECORD_HEADER_BYTES: Final[int] = 16

USEC_PER_SEC: Final[int] = 1_000_000
USEC_PER_MSEC: Final[int] = 1_000

# =============================================================================
# Helper Functions
# =============================================================================

def packets_for_duration(duration_ms: int, ptime_ms: int = PCMU_PTIME_MS) -> int:
    """
    Number of whole packets covering `duration_ms`.

    Any remainder shorter than one ptime is dropped.
    """
    if duration_ms <= 0:
        return 0
    return duration_ms // ptime_ms


def dtmf_event_code(digit: str) -> int:
    """
    Map a DTMF digit to its telephone-event code.

    Raises:
        ValueError if the digit is not one of 0-9, *, #, A-D.
    """
    try:
        return DTMF_DIGITS.index(digit)
    except ValueError:
        raise ValueError(f"Invalid DTMF digit: {digit!r}") from None


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class CodecTiming:
    """
    Immutable bundle describing packetization of a sampled codec.

    Convenience wrapper only; it is NOT a second source of truth.
    """
    rate_khz: int = PCMU_RATE_KHZ
    ptime_ms: int = PCMU_PTIME_MS

    def __post_init__(self) -> None:
        if self.rate_khz <= 0:
            raise ValueError(f"rate_khz must be > 0, got {self.rate_khz}")
        if self.ptime_ms <= 0:
            raise ValueError(f"ptime_ms must be > 0, got {self.ptime_ms}")

    @property
    def samples_per_packet(self) -> int:
        """Return number of samples (== RTP clock ticks) per packet."""
        return self.rate_khz * self.ptime_ms

    @property
    def sample_rate_hz(self) -> int:
        """Return sample rate in Hz."""
        return self.rate_khz * 1000


PCMU_TIMING: Final[CodecTiming] = CodecTiming()
