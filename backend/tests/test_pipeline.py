import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sentinel import pipeline
from sentinel.extension_settings import InMemorySettingsStore, SettingsNotFound
from sentinel.pipeline import UplinkDecoder
from sentinel.results import CanonicalRecord, IssueKind
from sentinel.simulation.frame_encode import (
    FftZoomSpec,
    build_frame,
    extension_block,
    fft_zoom_vector,
    split_into_segments,
    system_status_vector,
)

DEVICE = "70b3d5c1a0000003"
FFT = FftZoomSpec(upper_frequency=2000, lower_frequency=100, compression_type=0, spectrum_type=1, cut_off_frequency=5000)


def _status_record(handle=7, device_id=DEVICE):
    payload, count = build_frame([], system_status_vector(extension=extension_block(handle, fft=FFT)))
    return CanonicalRecord(device_id, payload, count)


def _fft_record(handle=7, device_id=DEVICE):
    payload, count = build_frame([], fft_zoom_vector([0, 255], handle))
    return CanonicalRecord(device_id, payload, count)


class DummyStore:
    """Settings store that counts calls and can be told to fail on load."""

    def __init__(self, load_error=None):
        self.load_error = load_error
        self.saved = []
        self.loads = 0

    async def load(self, device_id):
        self.loads += 1
        if self.load_error is not None:
            raise self.load_error
        raise SettingsNotFound(device_id)

    async def save(self, device_id, settings):
        self.saved.append((device_id, settings))


def test_fft_zoom_decoded_with_settings_from_earlier_status_frame():
    async def run():
        decoder = UplinkDecoder()
        status = await decoder.decode(_status_record())
        zoom = await decoder.decode(_fft_record())
        return decoder, status, zoom

    decoder, status, zoom = asyncio.run(run())

    assert status.errors == []
    assert zoom.errors == []
    assert [v.value for v in zoom.data["fftZoomValues"]] == [-150.0, 0.0]
    stored = asyncio.run(decoder.settings_store.load(DEVICE))
    assert stored.handle == 7


def test_fft_zoom_before_any_status_frame():
    result = asyncio.run(UplinkDecoder().decode(_fft_record()))

    assert result.errors == ["No extension settings known for this device, cannot proceed."]


def test_fft_zoom_with_outdated_handle():
    async def run():
        decoder = UplinkDecoder()
        await decoder.decode(_status_record(handle=3))
        return await decoder.decode(_fft_record(handle=7))

    result = asyncio.run(run())

    assert result.has(IssueKind.UNKNOWN_EXTENSION_HANDLE)


def test_settings_are_kept_per_device():
    async def run():
        decoder = UplinkDecoder()
        await decoder.decode(_status_record(device_id="a"))
        return await decoder.decode(_fft_record(device_id="b"))

    assert asyncio.run(run()).has(IssueKind.SETTINGS_NOT_FOUND)


def test_status_frame_settings_are_saved():
    store = DummyStore()
    result = asyncio.run(UplinkDecoder(settings_store=store).decode(_status_record()))

    assert result.errors == []
    assert [device for device, _ in store.saved] == [DEVICE]
    assert store.saved[0][1].cut_off_frequency == 5000


def test_unreadable_stored_settings_count_as_missing():
    store = DummyStore(load_error=ValueError("corrupt"))
    result = asyncio.run(UplinkDecoder(settings_store=store).decode(_fft_record()))

    assert result.has(IssueKind.SETTINGS_NOT_FOUND)


def test_segmented_status_frame_then_zoom():
    payload, count = build_frame([], system_status_vector(extension=extension_block(7, fft=FFT)))
    segments = split_into_segments(payload, count, chunk_size=30)

    async def run():
        decoder = UplinkDecoder(settings_store=InMemorySettingsStore())
        results = [await decoder.decode(CanonicalRecord(DEVICE, chunk, port)) for port, chunk in segments]
        results.append(await decoder.decode(_fft_record()))
        return results

    results = asyncio.run(run())

    for pending in results[:-2]:
        assert pending.data == {}
        assert pending.has(IssueKind.SEGMENT_PENDING)
    assert results[-2].errors == []
    assert results[-2].data["firmwareVersion"] == "3.1.0"
    assert results[-1].errors == []


def test_pending_segment_is_not_decoded(monkeypatch):
    monkeypatch.setattr(pipeline, "decode_frame", pytest.fail)
    payload, count = build_frame([], system_status_vector())
    port, chunk = split_into_segments(payload, count)[0]

    result = asyncio.run(UplinkDecoder().decode(CanonicalRecord(DEVICE, chunk, port)))

    assert result.has(IssueKind.SEGMENT_PENDING)


def test_unexpected_failure_becomes_internal_fault(monkeypatch):
    def broken(record, settings):
        raise RuntimeError("boom")

    monkeypatch.setattr(pipeline, "decode_frame", broken)
    result = asyncio.run(UplinkDecoder().decode(_status_record()))

    assert result.has(IssueKind.INTERNAL_FAULT)
    assert result.errors == ["Internal decoder fault (RuntimeError: boom)"]


def test_devices_do_not_wait_on_each_other():
    async def run():
        decoder = UplinkDecoder()
        async with decoder.lock_for("busy-device"):
            return await asyncio.wait_for(decoder.decode(_status_record(device_id="idle-device")), timeout=5)

    assert asyncio.run(run()).errors == []


def test_same_device_uplinks_are_serialized():
    async def run():
        decoder = UplinkDecoder()
        lock = decoder.lock_for(DEVICE)
        assert lock is decoder.lock_for(DEVICE)
        await lock.acquire()
        task = asyncio.create_task(decoder.decode(_status_record()))
        await asyncio.sleep(0.05)
        blocked = not task.done()
        lock.release()
        await task
        return blocked

    assert asyncio.run(run()) is True


def test_device_locks_are_released_after_decoding():
    async def run():
        decoder = UplinkDecoder()
        await asyncio.gather(*(decoder.decode(_status_record(device_id=f"dev-{i}")) for i in range(20)))
        await asyncio.gather(*(decoder.decode(_status_record()) for _ in range(3)))
        return decoder

    assert asyncio.run(run()).tracked_devices == 0
