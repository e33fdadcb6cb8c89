"""Decoding of complete (never split) Sentinel uplink payloads.

Frame layout: ``element_count`` 3-byte scalar entries, or ``element_count - 1``
scalar entries followed by a single type-tagged vector when the payload is
longer than ``3 * element_count``. Every problem is recorded in the returned
:class:`DecodeResult`; fatal ones stop the decoding but keep what was
already extracted.
"""

from __future__ import annotations

import logging
import struct
from typing import Optional

from .extension_settings import ExtensionSettings, parse_extension_settings
from .firmware_status import extract_firmware_status
from .physical_values import (
    FFT_ZOOM_ELEMENT_LAYOUT,
    FFT_ZOOM_VALUES,
    SCALAR_VALUE_SIZE,
    SCALAR_VALUES,
    SIGNATURE_VALUES,
    VECTOR_ELEMENT_VALUE_SIZE,
    ExtensionAlgorithm,
    PhysicalValue,
    VectorType,
    is_member,
)
from .results import CanonicalRecord, DecodeResult, IssueKind

logger = logging.getLogger(__name__)

MAX_ELEMENT_COUNT = 105
LEGACY_STATUS_ELEMENT_COUNT = 67
LEGACY_STATUS_LENGTH = 84

SCHEDULING_PERIOD_SCALE = 10
SONIC_FREQUENCY_SCALE = 10
RPM_SCALE = 60

# Offsets inside a system status vector body
FIRMWARE_VERSION_OFFSET = 4
SCHEDULING_OFFSET = 9
ADVANCED_OFFSET = 19
EXTENSION_OFFSET = 57

ACTIVATION_FEATURES: dict[int, str] = {
    0: "Battery level",
    2: "Humidity",
    4: "Mileage",
    7: "Pressure",
    8: "Wake-on event",
    9: "Machine drift",
    10: "Shock detection",
    11: "Signature",
    12: "Signature reference",
    13: "Signature extension",
    14: "Temperature",
    16: "PT100 probe",
    17: "TC probe",
    18: "Ambient aggregator",
    19: "Wave",
    20: "LoRa link",
    21: "Settings reader",
}

SENSOR_ORIENTATIONS: dict[int, str] = {
    0: "NoOrientation",
    1: "XPreferred",
    2: "YPreferred",
    4: "ZPreferred",
}

WOE_MODES: dict[int, str] = {
    0: "WoeInactive",
    1: "WoeMotionTrig",
    2: "WoeMotionTrigAuto",
    3: "WoeSchedulerTrig",
    4: "WoeAnalogTrig",
    5: "WoeContactTrig",
}

LORAWAN_FLAGS: tuple[str, ...] = (
    "adrIsEnabled",
    "transmissionIsAcked",
    "networkIsPrivate",
    "lorawanCodingRateIsBase",
    "dwellTimeIsOn",
    "retransmitAckTwice",
    "packetSplitIsEnabled",
)

NOT_IMPLEMENTED = "Not yet implemented"


def decode_frame(record: CanonicalRecord, stored_settings: Optional[ExtensionSettings] = None) -> DecodeResult:
    """Decode one complete payload.

    ``stored_settings`` are the extension settings last persisted for the
    device; they are the only ones used to read an FFT zoom vector. Settings
    announced by a system status vector in this frame are returned in
    ``result.extension_settings`` for the caller to persist.
    """

    result = DecodeResult()
    payload = record.payload
    element_count = record.element_count

    if element_count < 0 or element_count > MAX_ELEMENT_COUNT:
        result.error(IssueKind.INVALID_ELEMENT_COUNT, f"Invalid number of elements in frame ({element_count})")
        return result

    if element_count == LEGACY_STATUS_ELEMENT_COUNT:
        # Older beacons announce their system status report with 67 elements.
        if payload[:1] == b"\xff" and len(payload) == LEGACY_STATUS_LENGTH:
            element_count = 1
        else:
            result.error(
                IssueKind.INCONSISTENT_DATA,
                "Inconsistent data from frame (looks partly like a system status report)",
            )
            return result

    if len(payload) < element_count * SCALAR_VALUE_SIZE or (element_count == 0 and payload):
        result.error(
            IssueKind.INCONSISTENT_LENGTH,
            f"Inconsistent number of elements in frame ({element_count}) and frame length ({len(payload)})",
        )
        return result

    if len(payload) == element_count * SCALAR_VALUE_SIZE:
        nb_scalars, vector_in_frame = element_count, False
    else:
        nb_scalars, vector_in_frame = element_count - 1, True

    logger.debug(
        "Frame from %s: %d scalar(s), vector=%s, %d bytes",
        record.device_id, nb_scalars, vector_in_frame, len(payload),
    )

    if nb_scalars > 0:
        result.data["scalarValues"] = extract_scalar_values(payload, nb_scalars, result)

    if vector_in_frame:
        vector_start = nb_scalars * SCALAR_VALUE_SIZE
        process_vector(payload[vector_start], payload[vector_start + 1:], stored_settings, result)

    return result


def extract_scalar_values(payload: bytes, nb_scalars: int, result: DecodeResult) -> list[PhysicalValue]:
    values: list[PhysicalValue] = []
    for identifier, raw in struct.iter_unpack("<Bh", payload[: nb_scalars * SCALAR_VALUE_SIZE]):
        descriptor = SCALAR_VALUES.get(identifier)
        if descriptor is None:
            result.warn(IssueKind.UNKNOWN_SCALAR, f"Unidentified scalar value indicator ({identifier})")
            continue
        values.append(descriptor.scaled(raw))
    return values


def process_vector(
    vector_type: int,
    body: bytes,
    stored_settings: Optional[ExtensionSettings],
    result: DecodeResult,
) -> None:
    if not is_member(VectorType, vector_type):
        result.error(IssueKind.UNKNOWN_VECTOR_TYPE, f"Unknown vector type ({vector_type})")
        return

    vector_type = VectorType(vector_type)
    if vector_type is VectorType.SIGNATURE:
        result.data["signatureValues"] = extract_signature_values(body, result)
    elif vector_type is VectorType.SIGNATURE_EXTENSION:
        extract_fft_zoom_values(body, stored_settings, result)
    elif vector_type is VectorType.SYSTEM_STATUS_REPORT:
        extract_system_status(body, result)
    else:
        # shock detection and signature reference vectors carry nothing to report yet
        logger.debug("Ignoring %s vector (%d bytes)", vector_type.name, len(body))


def _catalog_values(
    raws: list[int],
    catalog: tuple[PhysicalValue, ...],
    scale: float,
    label: str,
    result: DecodeResult,
) -> list[PhysicalValue]:
    if len(raws) > len(catalog):
        result.warn(
            IssueKind.VECTOR_TOO_LONG,
            f"{label} vector holds {len(raws)} elements, only {len(catalog)} are known",
        )
    return [slot.scaled(raw, scale) for slot, raw in zip(catalog, raws) if not slot.reserved]


def extract_signature_values(body: bytes, result: DecodeResult) -> list[PhysicalValue]:
    usable = len(body) - len(body) % VECTOR_ELEMENT_VALUE_SIZE
    raws = [raw for (raw,) in struct.iter_unpack("<H", body[:usable])]
    return _catalog_values(raws, SIGNATURE_VALUES, 65535.0, "Signature", result)


def extract_fft_zoom_values(body: bytes, settings: Optional[ExtensionSettings], result: DecodeResult) -> None:
    if settings is None:
        result.error(IssueKind.SETTINGS_NOT_FOUND, "No extension settings known for this device, cannot proceed.")
        return

    if not body:
        result.error(IssueKind.TRUNCATED_VECTOR, "Extension vector without settings handle, cannot proceed.")
        return

    handle = body[-1]
    if handle != settings.handle:
        result.error(
            IssueKind.UNKNOWN_EXTENSION_HANDLE,
            f'Unknown extension settings handle "{handle}", cannot proceed.',
        )
        return

    if settings.algorithm != ExtensionAlgorithm.FFT_ZOOM:
        result.error(
            IssueKind.UNKNOWN_EXTENSION_ALGORITHM,
            f'Unknown extension algorithm "{settings.algorithm}", only FFT zoom (#0) is implemented yet. Cannot proceed.',
        )
        return

    layout = FFT_ZOOM_ELEMENT_LAYOUT.get(settings.compression_type)
    if layout is None:
        result.error(
            IssueKind.UNKNOWN_COMPRESSION_TYPE,
            f"Unknown compression type ({settings.compression_type}), cannot proceed.",
        )
        return

    element_size, scale = layout
    data = body[:-1]
    usable = len(data) - len(data) % element_size
    fmt = "B" if element_size == 1 else "<H"
    raws = [raw for (raw,) in struct.iter_unpack(fmt, data[:usable])]
    result.data["fftZoomValues"] = _catalog_values(raws, FFT_ZOOM_VALUES, scale, "FFT zoom", result)


def extract_activation_status(bitmask: bytes) -> list[str]:
    active = int.from_bytes(bitmask, "little")
    return [f"{name} scheduling is active" for bit, name in ACTIVATION_FEATURES.items() if active & (1 << bit)]


def extract_scheduling_settings(block: bytes) -> dict:
    ambient, prediction, introspection = struct.unpack_from("<3H", block, 4)
    return {
        "activationBitmask": block[:4].hex(),
        "ambientPeriodicity": ambient * SCHEDULING_PERIOD_SCALE,
        "predictionPeriodicity": prediction * SCHEDULING_PERIOD_SCALE,
        "introspectionPeriodicity": introspection * SCHEDULING_PERIOD_SCALE,
    }


def _sensor_information(block: bytes, result: DecodeResult) -> dict:
    enumeration = block[0]
    sensors = []
    if enumeration & 0x3 == 0x3:
        sensors.append("AnyAccelerometer")
    if enumeration & 0xC == 0xC:
        sensors.append("AnyMicrophone")
    if enumeration & 0xF == 0:
        sensors = ["NoSensor"]
        result.warn(IssueKind.NO_SENSOR, "No sensor information in frame, this is unexpected")

    # Orientation is read as the single byte 2 although firmware documents a
    # 3-byte field at another offset; kept until the layout is confirmed.
    orientation_code = block[2]
    orientation: object = SENSOR_ORIENTATIONS.get(orientation_code)
    if orientation is None:
        orientation = orientation_code
        result.warn(IssueKind.UNKNOWN_ENUMERATION, f"Unknown sensor orientation ({orientation_code})")

    return {"enumeration": "\n".join(sensors), "orientation": orientation}


def _wake_on_event(block: bytes, offset: int, result: DecodeResult) -> dict:
    mode_word, threshold_word, pretrig, posttrig = struct.unpack_from("<4H", block, offset)
    info = {
        "woeMode": mode_word & 0xF,
        "woeFlag": bool(mode_word & 0x10),
        "woeParam": (mode_word & 0xFFE0) >> 5,
        "woeProfile": threshold_word & 0x3,
        "woeThreshold": (threshold_word & 0xFFFC) >> 2,
        "woePretrigThreshold": pretrig,
        "woePostrigThreshold": posttrig,
    }
    mode_name = WOE_MODES.get(info["woeMode"])
    if mode_name is None:
        result.warn(IssueKind.UNKNOWN_ENUMERATION, f'Unknown Wake-On-Event mode "{info["woeMode"]}"')
    else:
        info["woeModeString"] = mode_name
    return info


def _lorawan_config(block: bytes, offset: int) -> dict:
    flags = block[offset]
    config = {name: bool(flags & (1 << bit)) for bit, name in enumerate(LORAWAN_FLAGS)}
    config["specialFrequencySettings"], config["linkCheckPeriod"] = struct.unpack_from("<2H", block, offset + 2)
    return config


def extract_advanced_settings(block: bytes, result: DecodeResult) -> dict:
    (
        sonic_high, sonic_low, vibration_high, vibration_low, rpm_high, rpm_low,
        mileage, reference_param, spectrum_type, spectrum_param,
    ) = struct.unpack_from("<10H", block, 4)

    return {
        "sensorInformationBitmask": block[:4].hex(),
        "sensorInformation": _sensor_information(block, result),
        "frequencies": {
            "sonicFrequencyHigh": sonic_high * SONIC_FREQUENCY_SCALE,
            "sonicFrequencyLow": sonic_low * SONIC_FREQUENCY_SCALE,
            "vibrationFrequencyHigh": vibration_high,
            "vibrationFrequencyLow": vibration_low,
        },
        "rotationSpeedBoundaries": {
            "rpmUpperBoundary": rpm_high * RPM_SCALE,
            "rpmLowerBoundary": rpm_low * RPM_SCALE,
        },
        "mileageThreshold": mileage,
        "referenceCustomParam": reference_param,
        "customSpectrumType": spectrum_type,
        "customSpectrumParam": spectrum_param,
        "woeBitmask": block[24:28].hex(),
        "wakeOnEventInformation": _wake_on_event(block, 24, result),
        "lorawanConfig": _lorawan_config(block, 32),
    }


def extract_system_status(body: bytes, result: DecodeResult) -> None:
    if len(body) < EXTENSION_OFFSET:
        result.error(
            IssueKind.TRUNCATED_VECTOR,
            f"System status report too short ({len(body)} bytes, at least {EXTENSION_OFFSET} expected)",
        )
        return

    software_code, hw_byte1, hw_byte2 = struct.unpack_from(">hBB", body, 0)
    version = body[FIRMWARE_VERSION_OFFSET:SCHEDULING_OFFSET]
    result.data["firmwareVersion"] = version.decode("utf-8", errors="replace")
    result.data["firmwareStatus"] = extract_firmware_status(software_code, hw_byte1, hw_byte2)

    scheduling = body[SCHEDULING_OFFSET:ADVANCED_OFFSET]
    result.data["schedulingSettings"] = extract_scheduling_settings(scheduling)
    result.data["activationStatus"] = extract_activation_status(scheduling[:4])

    result.data["advancedSettings"] = extract_advanced_settings(body[ADVANCED_OFFSET:EXTENSION_OFFSET], result)

    settings = parse_extension_settings(body[EXTENSION_OFFSET:], result)
    if settings is not None:
        result.data["extensionSettings"] = settings
        result.extension_settings = settings


def encode_downlink(data: dict) -> dict:
    """Downlink encoding is not supported by the beacons' codec."""

    return {"fPort": None, "bytes": None, "errors": [NOT_IMPLEMENTED]}


def decode_downlink(payload: bytes, f_port: int) -> dict:
    return {"data": None, "errors": [NOT_IMPLEMENTED]}
