# backend/protocol/pcap.py
"""
libpcap capture file serializer.

Global header (24 bytes, little-endian):
    magic u32 | major u16 | minor u16 | thiszone i32 | sigfigs u32
    | snaplen u32 | network u32

Per record (16 bytes, little-endian) followed by incl_len frame bytes:
    ts_sec u32 | ts_usec u32 | incl_len u32 | orig_len u32

Records are appended in emission order and never mutated afterwards.
to_bytes() and write() produce identical bytes.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Tuple, Union

from constants import (
    PCAP_GLOBAL_HEADER_BYTES,
    PCAP_GLOBAL_HEADER_FORMAT,
    PCAP_LINKTYPE_ETHERNET,
    PCAP_MAGIC,
    PCAP_RECORD_HEADER_BYTES,
    PCAP_RECORD_HEADER_FORMAT,
    PCAP_SIGFIGS,
    PCAP_SNAPLEN,
    PCAP_THISZONE,
    PCAP_VERSION_MAJOR,
    PCAP_VERSION_MINOR,
    USEC_PER_MSEC,
    USEC_PER_SEC,
)
from observability.logger import log_event, now_ms
from protocol.errors import MediaError, MediaIOError


class MalformedCapture(MediaError):
    """Raised when a byte buffer is not a readable classic pcap capture."""


# -------------------------
# Timestamps
# -------------------------

def capture_timestamp(start_sec: int, elapsed_ms: int) -> Tuple[int, int]:
    """
    Convert a millisecond offset from `start_sec` into (sec, usec).
    """
    distance_us = elapsed_ms * USEC_PER_MSEC
    return start_sec + distance_us // USEC_PER_SEC, distance_us % USEC_PER_SEC


# -------------------------
# Records
# -------------------------

@dataclass(frozen=True)
class PcapRecord:
    """One captured frame. incl_len == orig_len (no truncation)."""
    ts_sec: int
    ts_usec: int
    data: bytes

    @property
    def incl_len(self) -> int:
        return len(self.data)

    @property
    def orig_len(self) -> int:
        return len(self.data)

    @property
    def timestamp_us(self) -> int:
        return self.ts_sec * USEC_PER_SEC + self.ts_usec

    def to_bytes(self) -> bytes:
        return (
            struct.pack(
                PCAP_RECORD_HEADER_FORMAT,
                self.ts_sec,
                self.ts_usec,
                self.incl_len,
                self.orig_len,
            )
            + self.data
        )


def encode_global_header(
    *,
    snaplen: int = PCAP_SNAPLEN,
    linktype: int = PCAP_LINKTYPE_ETHERNET,
) -> bytes:
    return struct.pack(
        PCAP_GLOBAL_HEADER_FORMAT,
        PCAP_MAGIC,
        PCAP_VERSION_MAJOR,
        PCAP_VERSION_MINOR,
        PCAP_THISZONE,
        PCAP_SIGFIGS,
        snaplen,
        linktype,
    )


@dataclass
class PcapFile:
    """
    In-memory capture: fixed global header plus ordered records.
    """
    records: List[PcapRecord] = field(default_factory=list)
    snaplen: int = PCAP_SNAPLEN
    linktype: int = PCAP_LINKTYPE_ETHERNET

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[PcapRecord]:
        return iter(self.records)

    def append(self, data: bytes, *, ts_sec: int, ts_usec: int) -> PcapRecord:
        record = PcapRecord(ts_sec=ts_sec, ts_usec=ts_usec, data=bytes(data))
        self.records.append(record)
        return record

    def to_bytes(self) -> bytes:
        out = bytearray(encode_global_header(snaplen=self.snaplen, linktype=self.linktype))
        for record in self.records:
            out += record.to_bytes()
        return bytes(out)

    def write(self, path: Union[str, Path]) -> Path:
        """
        Write the capture to `path` and return it.

        Raises:
            MediaIOError wrapping the OSError on failure.
        """
        target = Path(path)
        payload = self.to_bytes()
        try:
            with open(target, "wb") as fh:
                fh.write(payload)
        except OSError as exc:
            raise MediaIOError("write_pcap", target, str(exc)) from exc

        log_event({
            "event_type": "PCAP_WRITTEN",
            "ts_ms": now_ms(),
            "path": str(target),
            "records": len(self.records),
            "bytes": len(payload),
        })
        return target


# -------------------------
# Reader
# -------------------------

def read_pcap(buf: bytes) -> PcapFile:
    """
    Parse a little-endian, microsecond-resolution pcap capture.
    """
    if len(buf) < PCAP_GLOBAL_HEADER_BYTES:
        raise MalformedCapture(
            f"pcap global header needs {PCAP_GLOBAL_HEADER_BYTES} bytes, got {len(buf)}"
        )

    magic, major, minor, _zone, _sigfigs, snaplen, linktype = struct.unpack_from(
        PCAP_GLOBAL_HEADER_FORMAT, buf, 0
    )
    if magic != PCAP_MAGIC:
        raise MalformedCapture(f"Unsupported pcap magic: {magic:#010x}")
    if (major, minor) != (PCAP_VERSION_MAJOR, PCAP_VERSION_MINOR):
        raise MalformedCapture(f"Unsupported pcap version: {major}.{minor}")

    capture = PcapFile(snaplen=snaplen, linktype=linktype)
    offset = PCAP_GLOBAL_HEADER_BYTES

    while offset < len(buf):
        if len(buf) - offset < PCAP_RECORD_HEADER_BYTES:
            raise MalformedCapture(f"Truncated record header at offset {offset}")

        ts_sec, ts_usec, incl_len, orig_len = struct.unpack_from(
            PCAP_RECORD_HEADER_FORMAT, buf, offset
        )
        offset += PCAP_RECORD_HEADER_BYTES

        if incl_len != orig_len:
            raise MalformedCapture(
                f"Truncated capture at offset {offset}: incl_len {incl_len} != orig_len {orig_len}"
            )
        if len(buf) - offset < incl_len:
            raise MalformedCapture(f"Truncated record body at offset {offset}")

        capture.append(buf[offset:offset + incl_len], ts_sec=ts_sec, ts_usec=ts_usec)
        offset += incl_len

    return capture
