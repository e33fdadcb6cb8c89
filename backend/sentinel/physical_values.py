# physical_values.py
# Scaling catalog for the measurements carried by Sentinel uplink frames.

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum

# Frame geometry
SCALAR_VALUE_SIZE = 3           # 1-byte identifier + int16 LE raw value
VECTOR_ELEMENT_VALUE_SIZE = 2   # signature elements are uint16 LE
RAW_SCALE_16 = 65535.0
RAW_SCALE_8 = 255.0

DB = "dB"
MM_PER_SECOND = "mm/s"
G = "g"
RPM = "rpm"
CELSIUS = "°C"


@dataclass(frozen=True)
class PhysicalValue:
    name: str; unit: str; min: float; max: float; value: float = 0.0

    @property
    def reserved(self) -> bool:
        """Slots with an empty name keep vector alignment but are never emitted."""
        return self.name == ""

    def scaled(self, raw: int, scale: float = RAW_SCALE_16) -> "PhysicalValue":
        return replace(self, value=raw * (self.max - self.min) / scale + self.min)

    def to_dict(self) -> dict:
        return {"name": self.name, "unit": self.unit, "value": self.value, "min": self.min, "max": self.max}


# Scalar identifiers
BATTERY_LEVEL_IDENTIFIER = 0x00
CURRENT_LOOP_IDENTIFIER = 0x01
HUMIDITY_IDENTIFIER = 0x02
TEMPERATURE_IDENTIFIER = 0x0E

SCALAR_VALUES: dict[int, PhysicalValue] = {
    BATTERY_LEVEL_IDENTIFIER: PhysicalValue("Battery level", "Volt", 0.0, 100.0),
    CURRENT_LOOP_IDENTIFIER: PhysicalValue("Current loop", "", 0.0, 30.0),
    HUMIDITY_IDENTIFIER: PhysicalValue("Humidity", "% rH", 0.0, 100.0),
    TEMPERATURE_IDENTIFIER: PhysicalValue("Ambient temperature", CELSIUS, -273.15, 2000.0),
}


class VectorType(IntEnum):
    SHOCK_DETECTION = 0x0A
    SIGNATURE = 0x0B
    SIGNATURE_REFERENCE = 0x0C
    SIGNATURE_EXTENSION = 0x0D
    SYSTEM_STATUS_REPORT = 0xFF


def _band(name: str) -> PhysicalValue:
    return PhysicalValue(name, DB, -150.0, 0.0)


def _axis(axis: str) -> list[PhysicalValue]:
    return [
        PhysicalValue(f"acceleration_{axis}", G, 0.0, 16.0),
        PhysicalValue(f"velocity_{axis}", MM_PER_SECOND, 0.0, 100.0),
        PhysicalValue(f"acceleration_{axis}_peak", G, 0.0, 16.0),
        PhysicalValue(f"kurtosis_{axis}", "", 0.0, 100.0),
        PhysicalValue(f"vibration_{axis}_root", RPM, 0.0, 30000.0),
        PhysicalValue(f"velocity_{axis}_f1", MM_PER_SECOND, 0.0, 100.0),
        PhysicalValue(f"velocity_{axis}_f2", MM_PER_SECOND, 0.0, 100.0),
        PhysicalValue(f"velocity_{axis}_f3", MM_PER_SECOND, 0.0, 100.0),
    ]


# Signature slots are identified by their position in the vector.
SIGNATURE_VALUES: tuple[PhysicalValue, ...] = tuple(
    [_band(f"vibration_frequencyBandS{i}") for i in range(10)]
    + [_band(f"sound_frequencyBandS{i}") for i in range(10, 20)]
    + _axis("x") + _axis("y") + _axis("z")
    + [
        PhysicalValue("temperature_machineSurface", CELSIUS, -273.15, 2000.0),
        PhysicalValue("", "", 0.0, 100.0),
        PhysicalValue("kurtosis_ultrasound", "", 0.0, 1.0),
        _band("sound_sonicRmslog"),
        PhysicalValue("", "", 0.0, 65535.0),
    ]
)

MAX_NB_FREQUENCY_BANDS_IN_FFT_ZOOM = 200

FFT_ZOOM_VALUES: tuple[PhysicalValue, ...] = tuple(
    _band(f"frequency_zoomFftBand{i}") for i in range(MAX_NB_FREQUENCY_BANDS_IN_FFT_ZOOM)
)


# Extension settings enumerations
class ExtensionActivation(IntEnum):
    NOT_ACTIVATED = 0x0
    PERIODIC = 0x1
    BURST = 0x2


class ExtensionAlgorithm(IntEnum):
    FFT_ZOOM = 0x0


class SensorType(IntEnum):
    ACCELEROMETER = 0x3
    MICROPHONE = 0xC


class AccelerometerOrientation(IntEnum):
    AVERAGE = 0x0
    X = 0x1
    Y = 0x2
    Z = 0x4


class CompressionType(IntEnum):
    BANDS_50_8_BITS = 0x0
    BANDS_50_16_BITS = 0x1
    BANDS_100_8_BITS = 0x2
    BANDS_100_16_BITS = 0x3
    BANDS_200_8_BITS = 0x4


class SpectrumType(IntEnum):
    RMS = 0x1
    PEAK = 0x2
    VELOCITY_RMS = 0x3
    VELOCITY_PEAK = 0x4
    ENVELOPE_RMS = 0x5
    ENVELOPE_PEAK = 0x6


# compression type -> (element size in bytes, raw scale)
FFT_ZOOM_ELEMENT_LAYOUT: dict[int, tuple[int, float]] = {
    CompressionType.BANDS_50_8_BITS: (1, RAW_SCALE_8),
    CompressionType.BANDS_100_8_BITS: (1, RAW_SCALE_8),
    CompressionType.BANDS_200_8_BITS: (1, RAW_SCALE_8),
    CompressionType.BANDS_50_16_BITS: (2, RAW_SCALE_16),
    CompressionType.BANDS_100_16_BITS: (2, RAW_SCALE_16),
}


def is_member(enum_cls: type[IntEnum], value: int) -> bool:
    return value in enum_cls._value2member_map_
