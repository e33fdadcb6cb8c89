"""Reassembly of payloads split across several uplinks.

A beacon splits a payload that does not fit in one uplink into a first
segment (element count 100) followed by continuation segments (101..104).
The first segment opens with a header::

    [element count of the whole frame: u8][payload length: u16 LE][CRC-16: u16 LE]

and every byte after the header, in this segment and the following ones,
belongs to the reconstructed payload. Network servers may deliver the same
segment twice (several gateways), so a byte-identical repeat received within
the duplicate window is ignored; any other irregularity drops the frame
under reconstruction.
"""

from __future__ import annotations

import binascii
import logging
import struct
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from .results import CanonicalRecord, DecodeResult, IssueKind

logger = logging.getLogger(__name__)

FIRST_SEGMENT_PORT = 100
LAST_SEGMENT_PORT = 104
SEGMENT_HEADER = struct.Struct("<BHH")
DUPLICATE_WINDOW = timedelta(milliseconds=2000)


def crc16_ccitt(data: bytes) -> int:
    """CRC-16/CCITT-FALSE (poly 0x1021, init 0xFFFF)."""
    return binascii.crc_hqx(data, 0xFFFF)


def is_segment(element_count: int) -> bool:
    return FIRST_SEGMENT_PORT <= element_count <= LAST_SEGMENT_PORT


@dataclass
class SegmentationContext:
    element_count: int
    expected_length: int
    crc: int
    accumulated: bytearray
    last_port: int
    last_chunk: bytes
    last_received_at: datetime


class ContextStore(Protocol):
    def get(self, device_id: str) -> Optional[SegmentationContext]: ...

    def set(self, device_id: str, context: SegmentationContext) -> None: ...

    def remove(self, device_id: str) -> None: ...


class InMemoryContextStore:
    """Contexts keyed by device, optionally forgotten after ``ttl_seconds`` idle."""

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, SegmentationContext]] = {}

    def get(self, device_id: str) -> Optional[SegmentationContext]:
        entry = self._entries.get(device_id)
        if entry is None:
            return None
        stored_at, context = entry
        if self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds:
            logger.info("Dropping idle segmentation context for %s", device_id)
            del self._entries[device_id]
            return None
        return context

    def set(self, device_id: str, context: SegmentationContext) -> None:
        self._entries[device_id] = (self._clock(), context)

    def remove(self, device_id: str) -> None:
        self._entries.pop(device_id, None)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class ReassemblyOutcome:
    """Messages produced by one segment, plus the rebuilt record once complete."""

    result: DecodeResult = field(default_factory=DecodeResult)
    record: Optional[CanonicalRecord] = None


class SegmentReassembler:
    def __init__(self, contexts: ContextStore | None = None, duplicate_window: timedelta = DUPLICATE_WINDOW) -> None:
        self.contexts = contexts if contexts is not None else InMemoryContextStore()
        self.duplicate_window = duplicate_window

    def accept(self, record: CanonicalRecord) -> ReassemblyOutcome:
        if record.element_count == FIRST_SEGMENT_PORT:
            return self._start(record)
        return self._continue(record)

    def _start(self, record: CanonicalRecord) -> ReassemblyOutcome:
        outcome = ReassemblyOutcome()
        device_id = record.device_id

        if len(record.payload) < SEGMENT_HEADER.size:
            self.contexts.remove(device_id)
            outcome.result.warn(
                IssueKind.MALFORMED_SEGMENT,
                f"First segment too short to hold the segmentation header ({len(record.payload)} bytes)",
            )
            return outcome

        element_count, expected_length, crc = SEGMENT_HEADER.unpack_from(record.payload)
        if self.contexts.get(device_id) is not None:
            logger.debug("New first segment from %s replaces the frame under reconstruction", device_id)
        self.contexts.set(
            device_id,
            SegmentationContext(
                element_count=element_count,
                expected_length=expected_length,
                crc=crc,
                accumulated=bytearray(record.payload[SEGMENT_HEADER.size:]),
                last_port=record.element_count,
                last_chunk=bytes(record.payload),
                last_received_at=record.received_at,
            ),
        )
        outcome.result.warn(
            IssueKind.SEGMENT_PENDING,
            "First frame of a segmented data frame; additional data frames are needed",
        )
        return outcome

    def _continue(self, record: CanonicalRecord) -> ReassemblyOutcome:
        outcome = ReassemblyOutcome()
        device_id = record.device_id
        context = self.contexts.get(device_id)

        if context is None:
            outcome.result.warn(
                IssueKind.FIRST_SEGMENT_LOST,
                "This is a following chunk of a segmented frame, but the first one has been lost",
            )
            return outcome

        if record.element_count == context.last_port + 1:
            return self._append(record, context, outcome)

        if record.element_count == context.last_port:
            logger.debug(
                "Segment %d repeated by %s: previous %s at %s, current %s at %s",
                record.element_count,
                device_id,
                context.last_chunk.hex(),
                context.last_received_at.isoformat(),
                record.payload.hex(),
                record.received_at.isoformat(),
            )
            elapsed = abs(record.received_at - context.last_received_at)
            if record.payload == context.last_chunk and elapsed < self.duplicate_window:
                outcome.result.warn(IssueKind.SEGMENT_DUPLICATE, "This is a duplicate frame segment, just ignore it")
                return outcome

            self.contexts.remove(device_id)
            outcome.result.warn(
                IssueKind.SEGMENTS_LOST,
                "This is not a duplicate frame segment, frame segments have been lost",
            )
            return outcome

        self.contexts.remove(device_id)
        outcome.result.warn(
            IssueKind.SEGMENT_CONTINUITY_LOST,
            f"Continuity lost in frame segment sequence (expected {context.last_port + 1}, got {record.element_count})",
        )
        return outcome

    def _append(self, record: CanonicalRecord, context: SegmentationContext, outcome: ReassemblyOutcome) -> ReassemblyOutcome:
        device_id = record.device_id
        context.accumulated.extend(record.payload)
        length = len(context.accumulated)

        if length < context.expected_length:
            context.last_port = record.element_count
            context.last_chunk = bytes(record.payload)
            context.last_received_at = record.received_at
            self.contexts.set(device_id, context)
            outcome.result.warn(
                IssueKind.SEGMENT_PENDING,
                "Complementary frame of a segmented data frame; additional data frames are needed",
            )
            return outcome

        self.contexts.remove(device_id)

        if length > context.expected_length:
            outcome.result.error(
                IssueKind.SEGMENT_TOO_LARGE,
                f"The reconstructed frame is too large ({length} bytes, {context.expected_length} expected), resetting the context",
            )
            return outcome

        payload = bytes(context.accumulated)
        if crc16_ccitt(payload) != context.crc:
            logger.warning("Segmented frame from %s failed its CRC check", device_id)
            outcome.result.error(IssueKind.SEGMENT_CRC_FAILED, "Frame segmentation problem (CRC check failed)")
            return outcome

        outcome.record = CanonicalRecord(
            device_id=device_id,
            payload=payload,
            element_count=context.element_count,
            received_at=record.received_at,
        )
        return outcome
