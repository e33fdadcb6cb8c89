# frame_encode.py
# Beacon-side packing of Sentinel uplink frames (little-endian, as sent over LoRaWAN).

from __future__ import annotations
import struct
from dataclasses import dataclass
from typing import Iterable, Optional

from ..physical_values import SCALAR_VALUES, VectorType
from ..segmentation import FIRST_SEGMENT_PORT, LAST_SEGMENT_PORT, SEGMENT_HEADER, crc16_ccitt

@dataclass(frozen=True)
class FftZoomSpec:
    upper_frequency: int; lower_frequency: int; compression_type: int; spectrum_type: int; cut_off_frequency: int

def scalar_entry(identifier: int, raw: int) -> bytes:
    return struct.pack("<Bh", identifier, raw)

def encode_scalar(identifier: int, value: float) -> bytes:
    """Inverse of the decoder scaling; the raw value saturates at the int16 range."""
    spec = SCALAR_VALUES[identifier]
    raw = round((value - spec.min) * 65535 / (spec.max - spec.min))
    return scalar_entry(identifier, max(-32768, min(32767, raw)))

def signature_vector(raws: Iterable[int]) -> bytes:
    raws = list(raws)
    return bytes([VectorType.SIGNATURE]) + struct.pack(f"<{len(raws)}H", *raws)

def fft_zoom_vector(raws: Iterable[int], handle: int, element_size: int = 1) -> bytes:
    raws = list(raws)
    fmt = f"{len(raws)}B" if element_size == 1 else f"<{len(raws)}H"
    return bytes([VectorType.SIGNATURE_EXTENSION]) + struct.pack(fmt, *raws) + bytes([handle])

def extension_block(
    handle: int,
    activation: int = 1,
    steps: int = 1,
    algorithm: int = 0,
    sensor_type: int = 0x3,
    orientation: int = 0,
    fft: Optional[FftZoomSpec] = None,
) -> bytes:
    block = bytes([handle, activation, steps, algorithm, sensor_type, orientation])
    if fft is not None:
        block += struct.pack(
            "<5I",
            fft.upper_frequency, fft.lower_frequency, fft.compression_type,
            fft.spectrum_type, fft.cut_off_frequency,
        )
    return block

def system_status_body(
    software_code: int = 0,
    hw_byte1: int = 0,
    hw_byte2: int = 0,
    version: bytes = b"3.1.0",
    activation_bitmask: int = 0,
    periods: tuple[int, int, int] = (60, 360, 1440),
    sensor_enumeration: int = 0x3,
    orientation: int = 0,
    woe_mode_word: int = 0,
    lorawan_flags: int = 0,
    extension: bytes = b"",
) -> bytes:
    """
    Body layout (57 bytes before the extension block):
      [software i16 BE][hw byte 1][hw byte 2][version 5s]
      [activation u32][ambient u16][prediction u16][introspection u16]
      [sensor info 4s][10 x u16][woe 4 x u16][lorawan flags u8][pad][2 x u16]
    Periods are in units of 10 (the decoder multiplies them back).
    """
    status = struct.pack(">hBB", software_code, hw_byte1, hw_byte2) + version[:5].ljust(5, b"\x00")
    scheduling = struct.pack("<I3H", activation_bitmask, *periods)
    advanced = (
        bytes([sensor_enumeration, 0, orientation, 0])
        + struct.pack("<10H", 800, 20, 1000, 10, 50, 5, 100, 0, 0, 0)
        + struct.pack("<4H", woe_mode_word, 0, 0, 0)
        + bytes([lorawan_flags, 0])
        + struct.pack("<2H", 0, 0)
    )
    return status + scheduling + advanced + extension

def system_status_vector(**kwargs) -> bytes:
    return bytes([VectorType.SYSTEM_STATUS_REPORT]) + system_status_body(**kwargs)

def build_frame(scalars: Iterable[bytes], vector: Optional[bytes] = None) -> tuple[bytes, int]:
    """Return (payload, element_count) for the given scalar entries and optional vector."""
    scalars = list(scalars)
    payload = b"".join(scalars)
    if vector is None:
        return payload, len(scalars)
    return payload + vector, len(scalars) + 1

def split_into_segments(payload: bytes, element_count: int, chunk_size: int = 40) -> list[tuple[int, bytes]]:
    """Split a payload into (element_count, chunk) uplinks numbered 100..104."""
    header = SEGMENT_HEADER.pack(element_count, len(payload), crc16_ccitt(payload))
    chunks = [payload[i:i + chunk_size] for i in range(0, len(payload), chunk_size)] or [b""]
    if len(chunks) < 2:
        chunks.append(b"")
    if len(chunks) > LAST_SEGMENT_PORT - FIRST_SEGMENT_PORT + 1:
        raise ValueError(f"payload of {len(payload)} bytes needs more than 5 segments of {chunk_size} bytes")
    chunks[0] = header + chunks[0]
    return [(FIRST_SEGMENT_PORT + i, chunk) for i, chunk in enumerate(chunks)]

def to_hex(payload: bytes) -> str:
    return payload.hex().upper()
