# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from functools import partial
from pathlib import Path
from typing import Any

import pytest
from scapy.layers.rtp import RTP
from scapy.utils import rdpcap

from media.actions import ActionValidationError, Dtmf, Silence, parse_steps
from media.compiler import (
    CompilerOptions,
    CompilerState,
    MediaTimelineCompiler,
    build_compiler,
    draw_ssrc,
)
from media.frames import parse_frame
from media.payloads import DtmfDurationMode, PcmuTone
from observability import logger
from protocol.dtmf import decode_dtmf_payload
from protocol.pcap import PcapFile, encode_global_header
from protocol.rtp_header import InvalidHeaderField

START = 1_700_000_000
SSRC = 0x1234ABCD


@pytest.fixture(autouse=True)
def quiet_logger(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    return lines


def make_compiler(**kwargs) -> MediaTimelineCompiler:
    return build_compiler("192.168.5.1:13579", "192.168.10.2:24680", **kwargs)


def compile_steps(*steps: str, compiler: MediaTimelineCompiler = None) -> PcapFile:
    compiler = compiler or make_compiler()
    return compiler.compile(parse_steps(steps), ssrc=SSRC, start_time=START).capture


def rtp_of(capture: PcapFile) -> list[tuple[Any, bytes]]:
    return [parse_frame(record.data) for record in capture]


def span_us(capture: PcapFile) -> int:
    first, last = capture.records[0], capture.records[-1]
    return last.timestamp_us - first.timestamp_us


# ---------------------------------------------------------------------
# Silence
# ---------------------------------------------------------------------

@pytest.mark.parametrize("duration_ms", [20, 40, 200, 1000])
def test_silence_packet_count_and_payload(duration_ms):
    capture = compile_steps(f"silence:{duration_ms}")

    assert len(capture) == duration_ms // 20
    for header, payload in rtp_of(capture):
        assert header.payload_type == 0
        assert payload == b"\xff" * 160


def test_silence_200ms_is_ten_packets():
    assert len(compile_steps("silence:200")) == 10


def test_silence_20ms_ends_with_silent_payload():
    capture = compile_steps("silence:20")

    assert len(capture) == 1
    assert capture.records[0].data[-160:] == b"\xff" * 160


def test_silence_remainder_is_dropped():
    assert len(compile_steps("silence:59")) == 2


def test_silence_timestamps_and_marker():
    packets = rtp_of(compile_steps("silence:60"))

    assert [h.timestamp for h, _ in packets] == [160, 320, 480]
    assert [h.marker for h, _ in packets] == [True, False, False]


def test_silence_capture_times_advance_by_ptime():
    capture = compile_steps("silence:60")

    assert [(r.ts_sec, r.ts_usec) for r in capture] == [
        (START, 20_000),
        (START, 40_000),
        (START, 60_000),
    ]


# ---------------------------------------------------------------------
# DTMF
# ---------------------------------------------------------------------

def test_dtmf_3_first_packet_tail():
    capture = compile_steps("dtmf:3")

    assert capture.records[0].data[-4:] == bytes.fromhex("030a00a0")


def test_dtmf_hash_first_packet_tail():
    capture = compile_steps("dtmf:#")

    assert capture.records[0].data[-4:] == bytes.fromhex("0b0a00a0")


def test_dtmf_digit_is_fifteen_packets():
    assert len(compile_steps("dtmf:1")) == 15


def test_dtmf_end_of_event_flags():
    capture = compile_steps("dtmf:1")
    flags = [record.data[-3] for record in capture]

    assert flags[:12] == [0x0A] * 12
    assert flags[12:] == [0x8A] * 3


def test_dtmf_event_spans_250ms():
    span = span_us(compile_steps("dtmf:1"))

    assert abs(span - 250_000) <= 10_000
    # 12 ptimes between the 13 base packets; the redundant end packets add none
    assert span == 240_000


def test_dtmf_cumulative_durations():
    capture = compile_steps("dtmf:1")
    durations = [int.from_bytes(record.data[-2:], "big") for record in capture]

    assert durations == [160 * (i + 1) for i in range(12)] + [160 * 13] * 3


def test_dtmf_constant_durations():
    compiler = make_compiler(options=CompilerOptions(dtmf_duration_mode=DtmfDurationMode.CONSTANT))
    capture = compile_steps("dtmf:1", compiler=compiler)

    assert [int.from_bytes(r.data[-2:], "big") for r in capture] == [160] * 15
    assert capture.records[0].data[-4:] == bytes.fromhex("010a00a0")


def test_dtmf_volume_option():
    compiler = make_compiler(options=CompilerOptions(dtmf_volume=99))
    capture = compile_steps("dtmf:1", compiler=compiler)

    assert capture.records[0].data[-3] == 0x3F


def test_dtmf_header_fields():
    packets = rtp_of(compile_steps("dtmf:9"))

    assert all(h.payload_type == 101 for h, _ in packets)
    assert [h.marker for h, _ in packets] == [True] + [False] * 14
    assert {h.timestamp for h, _ in packets} == {0}
    assert all(decode_dtmf_payload(p).digit == "9" for _, p in packets)


def test_redundant_end_packets_share_capture_time():
    capture = compile_steps("dtmf:1")

    assert len({r.timestamp_us for r in capture.records[12:]}) == 1


# ---------------------------------------------------------------------
# Mixed timelines
# ---------------------------------------------------------------------

def test_sequence_numbers_contiguous_across_actions():
    result = make_compiler().compile(
        parse_steps(["silence:100", "dtmf:1", "dtmf:2", "silence:40", "dtmf:#"]),
        ssrc=SSRC,
        start_time=START,
    )
    packets = rtp_of(result.capture)

    expected = list(range(1, 5 + 15 + 15 + 2 + 15 + 1))
    assert [h.sequence_number for h, _ in packets] == expected
    assert result.sequence_numbers == expected
    assert result.packet_count == len(expected)


def test_capture_timestamps_non_decreasing():
    capture = compile_steps("silence:100", "dtmf:5", "silence:100", "dtmf:0")
    stamps = [r.timestamp_us for r in capture]

    assert stamps == sorted(stamps)


def test_rtp_clock_catches_up_after_dtmf():
    packets = rtp_of(compile_steps("silence:40", "dtmf:1", "silence:20"))

    assert [h.timestamp for h, _ in packets[:2]] == [160, 320]
    assert {h.timestamp for h, _ in packets[2:17]} == {320}
    assert packets[17][0].timestamp == 320 + 13 * 160 + 160


def test_marker_only_on_first_audio_and_event_start():
    packets = rtp_of(compile_steps("silence:40", "dtmf:1", "silence:40"))

    markers = [i for i, (h, _) in enumerate(packets) if h.marker]
    assert markers == [0, 2]


def test_first_audio_marker_after_leading_dtmf():
    packets = rtp_of(compile_steps("dtmf:1", "silence:40"))

    assert packets[15][0].marker is True
    assert packets[16][0].marker is False


def test_ssrc_constant_across_stream():
    packets = rtp_of(compile_steps("silence:40", "dtmf:1"))

    assert {h.ssrc for h, _ in packets} == {SSRC}


def test_rtp_packet_size():
    for header, payload in rtp_of(compile_steps("silence:20", "dtmf:1")):
        assert header.size + len(payload) == 12 + (160 if header.payload_type == 0 else 4)


# ---------------------------------------------------------------------
# Determinism and lifecycle
# ---------------------------------------------------------------------

def test_compile_is_deterministic():
    compiler = make_compiler()
    actions = parse_steps(["silence:100", "dtmf:7", "silence:40"])

    first = compiler.compile(actions, ssrc=SSRC, start_time=START).to_bytes()
    second = compiler.compile(actions, ssrc=SSRC, start_time=START).to_bytes()

    assert first == second


def test_stateful_silence_generator_restarts_per_compile():
    compiler = make_compiler(silence_generator=partial(PcmuTone, frequency_hz=1000.0))
    actions = [Silence(100)]

    first = compiler.compile(actions, ssrc=SSRC, start_time=START).to_bytes()
    second = compiler.compile(actions, ssrc=SSRC, start_time=START).to_bytes()

    assert first == second
    assert b"\xff" * 160 not in first


def test_random_ssrc_is_drawn_below_2_31():
    result = make_compiler().compile([Silence(20)], start_time=START)

    assert 0 <= result.ssrc < 2**31
    assert parse_frame(result.capture.records[0].data)[0].ssrc == result.ssrc


def test_draw_ssrc_uses_injected_rng():
    class FixedRng:
        def randrange(self, upper: int) -> int:
            return upper - 1

    assert draw_ssrc(FixedRng()) == 2**31 - 1


def test_start_time_fraction_is_dropped():
    result = make_compiler().compile([Silence(20)], ssrc=SSRC, start_time=START + 0.75)

    assert result.capture.records[0].ts_sec == START
    assert result.capture.records[0].ts_usec == 20_000


def test_empty_timeline_is_header_only():
    result = make_compiler().compile([], ssrc=SSRC, start_time=START)

    assert len(result.capture) == 0
    assert result.to_bytes() == encode_global_header()


def test_sequence_wraps_at_16_bits():
    state = CompilerState(ssrc=SSRC, start_sec=START, sequence_number=65535)

    assert state.next_sequence() == 0
    assert state.next_sequence() == 1


def test_rtp_timestamp_wraps_at_32_bits():
    state = CompilerState(ssrc=SSRC, start_sec=START, rtp_timestamp=2**32 - 100)

    assert state.advance_timestamp(160) == 60
    assert state.rtp_timestamp == 60


def test_dtmf_event_across_timestamp_wrap():
    state = CompilerState(ssrc=SSRC, start_sec=START, rtp_timestamp=2**32 - 1000)
    stamps: list[int] = []

    def record(chunk, *, marker, timestamp):
        stamps.append(timestamp)

    make_compiler()._emit_dtmf(Dtmf("1"), state, record)  # pylint: disable=protected-access

    assert stamps == [2**32 - 1000] * 15
    assert state.rtp_timestamp == 1080  # (2**32 - 1000 + 13 * 160) mod 2**32

# ---------------------------------------------------------------------
# Errors and logging
# ---------------------------------------------------------------------

def test_unknown_action_rejected_before_output(quiet_logger: list[str]):
    with pytest.raises(ActionValidationError) as info:
        make_compiler().compile([Silence(20), "silence:20", Dtmf("1"), object()])

    assert [e["action_index"] for e in info.value.as_dicts()] == [1, 3]
    events = [json.loads(line)["event_type"] for line in quiet_logger]
    assert events == ["MEDIA_COMPILE_REJECTED"]


def test_out_of_range_ssrc_rejected():
    with pytest.raises(InvalidHeaderField):
        make_compiler().compile([Silence(20)], ssrc=2**32)


def test_compile_logs_start_and_complete(quiet_logger: list[str]):
    compile_steps("silence:40", "dtmf:1")

    events = [json.loads(line) for line in quiet_logger]
    assert [e["event_type"] for e in events] == ["MEDIA_COMPILE_START", "MEDIA_COMPILE_COMPLETE"]
    assert events[1]["packets"] == 17
    assert events[1]["ssrc"] == SSRC
    assert events[0]["destination"] == "192.168.10.2:24680"
    assert events[0]["steps"] == ["silence:40", "dtmf:1"]
    assert events[0]["silence_payload"] == "pcmu"


# ---------------------------------------------------------------------
# Third-party tooling
# ---------------------------------------------------------------------

def test_capture_readable_by_scapy(tmp_path: Path):
    capture = compile_steps("silence:40", "dtmf:4")
    path = capture.write(tmp_path / "media.pcap")

    packets = rdpcap(str(path))

    assert len(packets) == 17
    first = RTP(bytes(packets[0]["UDP"].payload))
    assert first.sequence == 1
    assert first.marker == 1
    assert first.sourcesync == SSRC
    last = RTP(bytes(packets[-1]["UDP"].payload))
    assert last.payload_type == 101
    assert last.sequence == 17
    assert float(packets[1].time - packets[0].time) == pytest.approx(0.020)
