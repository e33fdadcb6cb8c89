import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sentinel.physical_values import HUMIDITY_IDENTIFIER
from sentinel.results import CanonicalRecord, IssueKind
from sentinel.segmentation import (
    SEGMENT_HEADER,
    InMemoryContextStore,
    SegmentReassembler,
    crc16_ccitt,
    is_segment,
)
from sentinel.simulation.frame_encode import build_frame, encode_scalar, signature_vector, split_into_segments

DEVICE = "70b3d5c1a0000002"
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _frame():
    return build_frame([encode_scalar(HUMIDITY_IDENTIFIER, 40.0)], signature_vector(range(49)))


def _record(port, chunk, seconds=0.0, device_id=DEVICE):
    return CanonicalRecord(device_id, chunk, port, T0 + timedelta(seconds=seconds))


def test_crc16_ccitt_false_check_value():
    assert crc16_ccitt(b"123456789") == 0x29B1
    assert crc16_ccitt(b"") == 0xFFFF


def test_segment_ports():
    assert is_segment(100) and is_segment(104)
    assert not is_segment(99) and not is_segment(105)


def test_split_into_segments_header():
    payload, count = _frame()
    segments = split_into_segments(payload, count, chunk_size=40)

    assert [port for port, _ in segments] == [100, 101, 102]
    assert SEGMENT_HEADER.unpack_from(segments[0][1]) == (count, len(payload), crc16_ccitt(payload))


def test_reassembles_complete_frame():
    payload, count = _frame()
    reassembler = SegmentReassembler()
    segments = split_into_segments(payload, count, chunk_size=40)

    first = reassembler.accept(_record(*segments[0]))
    assert first.record is None
    assert first.result.warnings == ["First frame of a segmented data frame; additional data frames are needed"]

    middle = reassembler.accept(_record(*segments[1], seconds=5))
    assert middle.record is None
    assert middle.result.has(IssueKind.SEGMENT_PENDING)

    last = reassembler.accept(_record(*segments[2], seconds=10))
    assert last.result.errors == [] and last.result.warnings == []
    assert last.record.payload == payload
    assert last.record.element_count == count
    assert last.record.received_at == T0 + timedelta(seconds=10)
    assert len(reassembler.contexts) == 0


def test_duplicate_segment_within_window_is_ignored():
    payload, count = _frame()
    reassembler = SegmentReassembler()
    segments = split_into_segments(payload, count, chunk_size=40)

    reassembler.accept(_record(*segments[0]))
    reassembler.accept(_record(*segments[1], seconds=1))
    repeat = reassembler.accept(_record(*segments[1], seconds=2.5))

    assert repeat.result.warnings == ["This is a duplicate frame segment, just ignore it"]
    assert reassembler.accept(_record(*segments[2], seconds=3)).record.payload == payload


def test_repeat_outside_window_means_segments_lost():
    payload, count = _frame()
    reassembler = SegmentReassembler(duplicate_window=timedelta(milliseconds=500))
    segments = split_into_segments(payload, count, chunk_size=40)

    reassembler.accept(_record(*segments[0]))
    reassembler.accept(_record(*segments[1], seconds=1))
    repeat = reassembler.accept(_record(*segments[1], seconds=2))

    assert repeat.result.has(IssueKind.SEGMENTS_LOST)
    assert reassembler.contexts.get(DEVICE) is None


def test_same_port_with_other_bytes_means_segments_lost():
    payload, count = _frame()
    reassembler = SegmentReassembler()
    segments = split_into_segments(payload, count, chunk_size=40)

    reassembler.accept(_record(*segments[0]))
    reassembler.accept(_record(*segments[1]))
    outcome = reassembler.accept(_record(101, b"\x01\x02\x03"))

    assert outcome.result.warnings == ["This is not a duplicate frame segment, frame segments have been lost"]
    assert reassembler.contexts.get(DEVICE) is None


def test_skipped_segment_breaks_continuity():
    payload, count = _frame()
    reassembler = SegmentReassembler()
    segments = split_into_segments(payload, count, chunk_size=40)

    reassembler.accept(_record(*segments[0]))
    outcome = reassembler.accept(_record(*segments[2]))

    assert outcome.result.has(IssueKind.SEGMENT_CONTINUITY_LOST)
    assert "expected 101, got 102" in outcome.result.warnings[0]
    assert outcome.record is None
    assert reassembler.contexts.get(DEVICE) is None


def test_continuation_without_first_segment():
    outcome = SegmentReassembler().accept(_record(101, b"\x00" * 10))

    assert outcome.result.warnings == [
        "This is a following chunk of a segmented frame, but the first one has been lost"
    ]
    assert outcome.result.errors == []


def test_crc_mismatch_drops_frame():
    payload, count = _frame()
    reassembler = SegmentReassembler()
    segments = split_into_segments(payload, count, chunk_size=40)
    port, chunk = segments[1]
    corrupted = bytes([chunk[0] ^ 0xFF]) + chunk[1:]

    reassembler.accept(_record(*segments[0]))
    reassembler.accept(_record(port, corrupted))
    outcome = reassembler.accept(_record(*segments[2]))

    assert outcome.record is None
    assert outcome.result.errors == ["Frame segmentation problem (CRC check failed)"]
    assert reassembler.contexts.get(DEVICE) is None


def test_reconstruction_longer_than_announced():
    body = bytes(range(14))
    header = SEGMENT_HEADER.pack(1, 10, crc16_ccitt(body[:10]))
    reassembler = SegmentReassembler()

    reassembler.accept(_record(100, header + body[:6]))
    outcome = reassembler.accept(_record(101, body[6:]))

    assert outcome.result.has(IssueKind.SEGMENT_TOO_LARGE)
    assert outcome.record is None
    assert reassembler.contexts.get(DEVICE) is None


def test_first_segment_shorter_than_header():
    reassembler = SegmentReassembler()
    outcome = reassembler.accept(_record(100, b"\x01\x02"))

    assert outcome.result.has(IssueKind.MALFORMED_SEGMENT)
    assert reassembler.contexts.get(DEVICE) is None


def test_new_first_segment_restarts_reconstruction():
    payload, count = _frame()
    reassembler = SegmentReassembler()
    segments = split_into_segments(payload, count, chunk_size=40)

    reassembler.accept(_record(*segments[0]))
    reassembler.accept(_record(*segments[1]))
    for port, chunk in segments:
        outcome = reassembler.accept(_record(port, chunk, seconds=30))

    assert outcome.record.payload == payload


def test_devices_are_reassembled_independently():
    payload, count = _frame()
    reassembler = SegmentReassembler()
    segments = split_into_segments(payload, count, chunk_size=40)

    reassembler.accept(_record(*segments[0], device_id="a"))
    reassembler.accept(_record(*segments[0], device_id="b"))
    reassembler.accept(_record(*segments[1], device_id="a"))
    reassembler.accept(_record(*segments[1], device_id="b"))

    assert reassembler.accept(_record(*segments[2], device_id="b")).record.device_id == "b"
    assert reassembler.accept(_record(*segments[2], device_id="a")).record.device_id == "a"


def test_idle_context_expires():
    now = [1000.0]
    contexts = InMemoryContextStore(ttl_seconds=60, clock=lambda: now[0])
    reassembler = SegmentReassembler(contexts)
    payload, count = _frame()
    segments = split_into_segments(payload, count, chunk_size=40)

    reassembler.accept(_record(*segments[0]))
    now[0] += 61
    outcome = reassembler.accept(_record(*segments[1]))

    assert outcome.result.has(IssueKind.FIRST_SEGMENT_LOST)
    assert len(contexts) == 0
