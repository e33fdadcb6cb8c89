"""Firmware health report decoding for Sentinel system status frames."""

from __future__ import annotations

from dataclasses import dataclass, field

# Software status codes reported by the LoRaWAN stack of the beacon.
DEVICE_HEALTH: dict[int, str] = {
    0: "LoRaWAN Ok",
    1: "LoRaWAN unknown unsollicited reception",
    2: "LoRaWAN invalid double data length",
    3: "LoRaWAN unknown transmission error",
    4: "LoRaWAN pending transmission",
    5: "LoRaWAN link check failed",
    6: "LoRaWAN consecutive unsollicited message missed",
    7: "LoRaWAN invalid parameter received",
    8: "LoRaWAN modem wakeup failed",
    9: "LoRaWAN data rate too low",
}

# (bit, cause) pairs, second hardware byte first
HARDWARE_BOOT_CAUSES_BYTE2: tuple[tuple[int, str], ...] = (
    (0, "Low Leakage Wakeup"),
    (1, "Low Voltage Detect Reset"),
    (2, "Loss of Clock Reset"),
    (3, "Loss of Lock Reset"),
    (5, "Watchdog"),
    (6, "External Reset Pin"),
    (7, "Power On Reset"),
)

HARDWARE_BOOT_CAUSES_BYTE1: tuple[tuple[int, str], ...] = (
    (0, "Jtag Generated Reset"),
    (1, "Core Lockup"),
    (2, "Software - SYSRESETREQ bit"),
    (3, "MDM-AP System Reset Request"),
    (5, "Stop Mode Acknowledge Error Reset"),
)


@dataclass(frozen=True)
class FirmwareStatus:
    """Structured health report extracted from a system status vector."""

    last_boot_causes: list[str] = field(default_factory=list)
    software_status: str = ""

    def to_dict(self) -> dict:
        return {"lastBootCauses": list(self.last_boot_causes), "softwareStatus": self.software_status}


def describe_software_status(code: int) -> str:
    """Return the display text for *code*, or a diagnostic for unknown codes."""

    try:
        return DEVICE_HEALTH[code]
    except KeyError:
        return f"Invalid Sentinel device health value ({code})"


def extract_firmware_status(software_code: int, hw_byte1: int, hw_byte2: int) -> FirmwareStatus:
    causes = [name for bit, name in HARDWARE_BOOT_CAUSES_BYTE2 if hw_byte2 & (1 << bit)]
    causes += [name for bit, name in HARDWARE_BOOT_CAUSES_BYTE1 if hw_byte1 & (1 << bit)]
    return FirmwareStatus(last_boot_causes=causes, software_status=describe_software_status(software_code))
