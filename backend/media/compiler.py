"""
Media timeline compiler.

Walks an ordered list of actions and emits a PCAP capture of RTP packets.

Rules:
- Sequence numbers start at 1 and increase by exactly 1 per packet,
  whatever the action kind (mod 2**16).
- The RTP timestamp advances per PCMU packet; it is pinned to the event
  start for every packet of a DTMF event, then catches up by the event's
  sample count once the event is over.
- Capture time (elapsed_ms) advances by each packet's ptime and is used
  only for pcap record timestamps, never for the RTP timestamp field.
- The SSRC is fixed for the whole stream.

Each compile() is an independent pass: no state survives between calls.
Given the same actions, SSRC and start time the output is byte-identical.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from constants import (
    DTMF_BASE_PACKETS,
    DTMF_DEFAULT_VOLUME,
    DTMF_REDUNDANT_END_PACKETS,
    DTMF_TIMESTAMP_INTERVAL,
    RTP_SEQ_MODULUS,
    RTP_TIMESTAMP_MODULUS,
    RTP_U32_MAX,
    SSRC_DRAW_LIMIT,
    packets_for_duration,
)
from media.actions import Action, ActionValidationError, Dtmf, InvalidAction, Silence
from media.frames import Endpoint, FrameAssembler
from media.payloads import (
    DtmfDurationMode,
    DtmfEvent,
    EmitState,
    PayloadChunk,
    PayloadGenerator,
    PcmuSilence,
)
from observability.logger import log_event, now_ms
from protocol.pcap import PcapFile, capture_timestamp
from protocol.rtp_header import InvalidHeaderField, RtpHeader, encode_rtp_header

# Thread-safe: SystemRandom keeps no Python-level state
_SSRC_SOURCE = random.SystemRandom()


def draw_ssrc(rng: Optional[random.Random] = None) -> int:
    """Draw a stream SSRC uniformly from [0, 2**31)."""
    return (rng or _SSRC_SOURCE).randrange(SSRC_DRAW_LIMIT)


@dataclass(frozen=True)
class CompilerOptions:
    """
    Tunables that change emitted bytes but not the sequencing rules.
    """
    dtmf_volume: int = DTMF_DEFAULT_VOLUME
    dtmf_duration_mode: DtmfDurationMode = DtmfDurationMode.CUMULATIVE


@dataclass
class CompilerState:
    """
    Mutable bookkeeping for one compile pass.

    Owned by the compile loop; never shared between passes.
    """
    ssrc: int
    start_sec: int
    sequence_number: int = 0
    rtp_timestamp: int = 0
    elapsed_ms: int = 0
    first_audio: bool = True
    packets_emitted: int = 0

    def next_sequence(self) -> int:
        self.sequence_number = (self.sequence_number + 1) % RTP_SEQ_MODULUS
        self.packets_emitted += 1
        return self.sequence_number

    def advance_timestamp(self, ticks: int) -> int:
        self.rtp_timestamp = (self.rtp_timestamp + ticks) % RTP_TIMESTAMP_MODULUS
        return self.rtp_timestamp


@dataclass
class CompileResult:
    """Finished capture plus the stream identity used to build it."""
    capture: PcapFile
    ssrc: int
    start_sec: int
    packet_count: int
    elapsed_ms: int
    sequence_numbers: List[int] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        return self.capture.to_bytes()


SilenceFactory = Callable[[], PayloadGenerator]


class MediaTimelineCompiler:
    """
    Compiles actions into a PCAP capture for one source/destination pair.

    silence_generator:
        Factory returning the payload source used for Silence actions.
        Defaults to PCMU digital silence. A factory (not an instance) is
        taken so stateful generators start fresh on every compile.
    """

    def __init__(
        self,
        assembler: FrameAssembler,
        *,
        silence_generator: SilenceFactory = PcmuSilence,
        options: CompilerOptions = CompilerOptions(),
    ) -> None:
        self._assembler = assembler
        self._silence_factory = silence_generator
        self._options = options

    @property
    def options(self) -> CompilerOptions:
        return self._options

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compile(
        self,
        actions: Iterable[Action],
        *,
        ssrc: Optional[int] = None,
        start_time: Optional[float] = None,
    ) -> CompileResult:
        """
        Compile `actions` into a capture.

        Args:
            actions:
                Typed actions, in playback order. Empty is valid.
            ssrc:
                Stream SSRC. Drawn at random when omitted.
            start_time:
                Wall-clock epoch seconds of the first capture record's
                reference point. Defaults to now; fractions are dropped.

        Raises:
            ActionValidationError if any element is not a Silence or Dtmf.
            Nothing is emitted in that case.
        """
        actions = list(actions)
        self._validate(actions)

        if ssrc is not None and not 0 <= ssrc <= RTP_U32_MAX:
            raise InvalidHeaderField(f"ssrc={ssrc} outside 0..{RTP_U32_MAX}")

        state = CompilerState(
            ssrc=draw_ssrc() if ssrc is None else ssrc,
            start_sec=int(time.time() if start_time is None else start_time),
        )
        capture = PcapFile()
        sequence_numbers: List[int] = []
        silence = self._silence_factory()

        log_event({
            "event_type": "MEDIA_COMPILE_START",
            "ts_ms": now_ms(),
            "actions": len(actions),
            "steps": [action.to_step() for action in actions],
            "silence_payload": silence.kind.value,
            "ssrc": state.ssrc,
            "source": str(self._assembler.source),
            "destination": str(self._assembler.destination),
        })

        def emit(chunk: PayloadChunk, *, marker: bool, timestamp: int) -> None:
            header = RtpHeader(
                payload_type=chunk.payload_type,
                sequence_number=state.next_sequence(),
                timestamp=timestamp,
                ssrc=state.ssrc,
                marker=marker,
            )
            sequence_numbers.append(header.sequence_number)
            frame = self._assembler.assemble(encode_rtp_header(header) + chunk.media)
            ts_sec, ts_usec = capture_timestamp(state.start_sec, state.elapsed_ms)
            capture.append(frame, ts_sec=ts_sec, ts_usec=ts_usec)

        for action in actions:
            if isinstance(action, Silence):
                self._emit_silence(action, silence, state, emit)
            else:
                self._emit_dtmf(action, state, emit)

        log_event({
            "event_type": "MEDIA_COMPILE_COMPLETE",
            "ts_ms": now_ms(),
            "actions": len(actions),
            "packets": state.packets_emitted,
            "ssrc": state.ssrc,
            "elapsed_ms": state.elapsed_ms,
        })

        return CompileResult(
            capture=capture,
            ssrc=state.ssrc,
            start_sec=state.start_sec,
            packet_count=state.packets_emitted,
            elapsed_ms=state.elapsed_ms,
            sequence_numbers=sequence_numbers,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _validate(self, actions: Iterable[object]) -> None:
        errors = [
            InvalidAction(f"unsupported action type {type(action).__name__}", index)
            for index, action in enumerate(actions)
            if not isinstance(action, (Silence, Dtmf))
        ]
        if errors:
            log_event({
                "event_type": "MEDIA_COMPILE_REJECTED",
                "ts_ms": now_ms(),
                "errors": [e.as_dict() for e in errors],
            })
            raise ActionValidationError(errors)

    @staticmethod
    def _emit_silence(
        action: Silence,
        generator: PayloadGenerator,
        state: CompilerState,
        emit: Callable[..., None],
    ) -> None:
        count = packets_for_duration(action.duration_ms, generator.ptime_ms)

        for index in range(count):
            chunk = generator.produce(
                EmitState(first_audio=state.first_audio, packet_index=index)
            )
            state.first_audio = False
            timestamp = state.advance_timestamp(chunk.timestamp_advance)
            state.elapsed_ms += chunk.ptime_ms
            emit(chunk, marker=chunk.marker, timestamp=timestamp)

    def _emit_dtmf(
        self,
        action: Dtmf,
        state: CompilerState,
        emit: Callable[..., None],
    ) -> None:
        event = DtmfEvent(
            action.digit,
            volume=self._options.dtmf_volume,
            duration_mode=self._options.dtmf_duration_mode,
        )
        event_timestamp = state.rtp_timestamp
        last_index = DTMF_BASE_PACKETS - 1

        for index in range(DTMF_BASE_PACKETS):
            end_of_event = index == last_index
            chunk = event.produce(
                EmitState(packet_index=index, end_of_event=end_of_event)
            )
            state.elapsed_ms += chunk.ptime_ms
            emit(chunk, marker=chunk.marker, timestamp=event_timestamp)

        # Redundant end-of-event copies share the final packet's capture time
        for _ in range(DTMF_REDUNDANT_END_PACKETS):
            emit(chunk, marker=False, timestamp=event_timestamp)

        state.advance_timestamp(DTMF_BASE_PACKETS * DTMF_TIMESTAMP_INTERVAL)


def build_compiler(
    source: str,
    destination: str,
    *,
    silence_generator: SilenceFactory = PcmuSilence,
    options: Optional[CompilerOptions] = None,
) -> MediaTimelineCompiler:
    """
    Convenience constructor from "address:port" strings.
    """
    assembler = FrameAssembler(Endpoint.from_string(source), Endpoint.from_string(destination))
    return MediaTimelineCompiler(
        assembler,
        silence_generator=silence_generator,
        options=options or CompilerOptions(),
    )
