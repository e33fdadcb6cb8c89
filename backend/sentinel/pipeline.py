"""Uplink decoding pipeline: segment reassembly, frame decoding, settings persistence."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from datetime import timedelta

from .extension_settings import ExtensionSettings, ExtensionSettingsStore, InMemorySettingsStore, SettingsNotFound
from .frame_decoder import decode_frame
from .results import CanonicalRecord, DecodeResult, IssueKind
from .segmentation import DUPLICATE_WINDOW, ContextStore, SegmentReassembler, is_segment

logger = logging.getLogger(__name__)


class UplinkDecoder:
    """Decode canonical uplinks, one device at a time.

    Uplinks from the same device are serialized because reassembly and the
    extension settings exchange depend on arrival order; uplinks from
    different devices never wait on each other.
    """

    def __init__(
        self,
        settings_store: ExtensionSettingsStore | None = None,
        contexts: ContextStore | None = None,
        duplicate_window: timedelta = DUPLICATE_WINDOW,
    ) -> None:
        self.settings_store = settings_store if settings_store is not None else InMemorySettingsStore()
        self.reassembler = SegmentReassembler(contexts, duplicate_window=duplicate_window)
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: Counter[str] = Counter()

    def lock_for(self, device_id: str) -> asyncio.Lock:
        return self._locks.setdefault(device_id, asyncio.Lock())

    @asynccontextmanager
    async def _device_turn(self, device_id: str):
        """Hold the device lock; forget it once no uplink holds or awaits it."""
        lock = self.lock_for(device_id)
        self._users[device_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[device_id] -= 1
            if self._users[device_id] <= 0:
                del self._users[device_id]
                if not lock.locked():
                    self._locks.pop(device_id, None)

    @property
    def tracked_devices(self) -> int:
        return len(self._locks)

    async def decode(self, record: CanonicalRecord) -> DecodeResult:
        async with self._device_turn(record.device_id):
            try:
                return await self._decode(record)
            except Exception as exc:
                logger.exception("Unexpected failure while decoding uplink from %s", record.device_id)
                result = DecodeResult()
                result.error(IssueKind.INTERNAL_FAULT, f"Internal decoder fault ({type(exc).__name__}: {exc})")
                return result

    async def _decode(self, record: CanonicalRecord) -> DecodeResult:
        segment_result = None
        if is_segment(record.element_count):
            outcome = self.reassembler.accept(record)
            if outcome.record is None:
                return outcome.result
            segment_result = outcome.result
            record = outcome.record
            logger.info(
                "Reassembled %d-byte frame from %s (%d elements)",
                len(record.payload), record.device_id, record.element_count,
            )

        stored = await self._load_settings(record.device_id)
        result = decode_frame(record, stored)

        if result.extension_settings is not None:
            await self.settings_store.save(record.device_id, result.extension_settings)

        if segment_result is not None:
            result.merge_issues(segment_result)
        if result.failed:
            logger.warning("Uplink from %s failed to decode: %s", record.device_id, "; ".join(result.errors))
        return result

    async def _load_settings(self, device_id: str) -> ExtensionSettings | None:
        try:
            return await self.settings_store.load(device_id)
        except SettingsNotFound:
            return None
        except ValueError:
            logger.exception("Stored extension settings for %s are unreadable", device_id)
            return None
