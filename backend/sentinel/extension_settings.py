"""Extension (FFT zoom) settings negotiated between a beacon and the decoder.

A beacon announces its extension settings inside a system status report.
FFT zoom vectors sent later, on other uplinks, can only be interpreted with
those settings, so they are persisted per device and read back from the
store rather than from the frame being decoded.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import struct
import tempfile
from contextlib import suppress
from pathlib import Path
from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .physical_values import (
    AccelerometerOrientation,
    CompressionType,
    ExtensionActivation,
    ExtensionAlgorithm,
    SensorType,
    SpectrumType,
    is_member,
)
from .results import DecodeResult, IssueKind

logger = logging.getLogger(__name__)

EXTENSION_HEADER_SIZE = 6
FFT_ZOOM_SETTINGS_SIZE = 26
SETTINGS_FILE_PREFIX = ".extensionSettings"


class ExtensionSettings(BaseModel):
    # Enumerated fields keep the raw value so that unknown codes survive a round trip.
    handle: int
    activation: int
    steps: int
    algorithm: int
    sensor_type: int
    accelerometer_orientation: int
    upper_frequency: Optional[int] = None
    lower_frequency: Optional[int] = None
    compression_type: Optional[int] = None
    spectrum_type: Optional[int] = None
    cut_off_frequency: Optional[int] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class SettingsNotFound(LookupError):
    """Raised when no extension settings were ever recorded for a device."""


class ExtensionSettingsStore(Protocol):
    async def load(self, device_id: str) -> ExtensionSettings: ...

    async def save(self, device_id: str, settings: ExtensionSettings) -> None: ...


def _check_enum(result: DecodeResult, label: str, enum_cls, value: int) -> None:
    if not is_member(enum_cls, value):
        result.warn(IssueKind.UNKNOWN_ENUMERATION, f"Unknown {label} ({value})")


def parse_extension_settings(block: bytes, result: DecodeResult) -> ExtensionSettings | None:
    """Parse the extension block at the tail of a system status vector."""

    if len(block) < EXTENSION_HEADER_SIZE:
        result.warn(IssueKind.NO_EXTENSION_SETTINGS, "No extension settings in system status report")
        return None

    handle, activation, steps, algorithm, sensor_type, orientation = block[:EXTENSION_HEADER_SIZE]
    _check_enum(result, "extension activation state", ExtensionActivation, activation)
    _check_enum(result, "extension algorithm type", ExtensionAlgorithm, algorithm)
    _check_enum(result, "sensor type", SensorType, sensor_type)
    _check_enum(result, "accelerometer orientation", AccelerometerOrientation, orientation)

    fields = dict(
        handle=handle,
        activation=activation,
        steps=steps,
        algorithm=algorithm,
        sensor_type=sensor_type,
        accelerometer_orientation=orientation,
    )

    if algorithm == ExtensionAlgorithm.FFT_ZOOM:
        if len(block) < FFT_ZOOM_SETTINGS_SIZE:
            result.warn(
                IssueKind.NO_EXTENSION_SETTINGS,
                f"FFT zoom settings truncated ({len(block)} bytes, {FFT_ZOOM_SETTINGS_SIZE} expected)",
            )
        else:
            upper, lower, compression, spectrum, cut_off = struct.unpack_from("<5I", block, EXTENSION_HEADER_SIZE)
            _check_enum(result, "compression type", CompressionType, compression)
            _check_enum(result, "spectrum type", SpectrumType, spectrum)
            fields.update(
                upper_frequency=upper,
                lower_frequency=lower,
                compression_type=compression,
                spectrum_type=spectrum,
                cut_off_frequency=cut_off,
            )

    return ExtensionSettings(**fields)


class InMemorySettingsStore:
    def __init__(self) -> None:
        self._entries: dict[str, ExtensionSettings] = {}

    async def load(self, device_id: str) -> ExtensionSettings:
        try:
            return self._entries[device_id]
        except KeyError:
            raise SettingsNotFound(device_id) from None

    async def save(self, device_id: str, settings: ExtensionSettings) -> None:
        self._entries[device_id] = settings


class JsonFileSettingsStore:
    """One JSON document per device, replaced atomically on every save."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, device_id: str) -> Path:
        safe_id = re.sub(r"[^A-Za-z0-9_-]+", "_", device_id or "")
        return self.directory / f"{SETTINGS_FILE_PREFIX}.{safe_id}.json"

    def _read(self, device_id: str) -> ExtensionSettings:
        path = self.path_for(device_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise SettingsNotFound(device_id) from None
        return ExtensionSettings.model_validate(json.loads(raw))

    def _write(self, device_id: str, settings: ExtensionSettings) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(device_id)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(settings.to_dict(), fh, indent=4)
            os.replace(tmp_name, path)
        except BaseException:
            with suppress(OSError):
                os.unlink(tmp_name)
            raise
        logger.info("Extension settings for %s stored in %s", device_id, path)

    async def load(self, device_id: str) -> ExtensionSettings:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read, device_id)

    async def save(self, device_id: str, settings: ExtensionSettings) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, device_id, settings)


class SqlSettingsStore:
    """Settings rows in ``device_extension_settings``, one per device."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    async def load(self, device_id: str) -> ExtensionSettings:
        from .models import DeviceExtensionSettings

        async with self._session_factory() as session:
            row = await session.get(DeviceExtensionSettings, device_id)
        if row is None:
            raise SettingsNotFound(device_id)
        return ExtensionSettings.model_validate(row.settings)

    async def save(self, device_id: str, settings: ExtensionSettings) -> None:
        from .models import DeviceExtensionSettings

        async with self._session_factory() as session:
            await session.merge(DeviceExtensionSettings(device_id=device_id, settings=settings.to_dict()))
            await session.commit()


class CachingSettingsStore:
    """Read-through, write-through memory cache in front of another store."""

    def __init__(self, backend: ExtensionSettingsStore) -> None:
        self.backend = backend
        self._cache: dict[str, ExtensionSettings] = {}

    async def load(self, device_id: str) -> ExtensionSettings:
        cached = self._cache.get(device_id)
        if cached is not None:
            return cached
        settings = await self.backend.load(device_id)
        self._cache[device_id] = settings
        return settings

    async def save(self, device_id: str, settings: ExtensionSettings) -> None:
        await self.backend.save(device_id, settings)
        self._cache[device_id] = settings
