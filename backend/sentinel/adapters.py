"""Network-server envelopes -> CanonicalRecord.

Each LoRaWAN network server wraps the beacon payload differently. Adapters
only pull out the four fields the decoder needs and never look inside the
payload, except to drop frames that carry nothing to decode.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from .results import CanonicalRecord

logger = logging.getLogger(__name__)


class AdapterError(Exception):
    """Base error for envelopes that cannot become a canonical record."""


class UselessFrame(AdapterError):
    """Raised for frames with nothing to decode (port 0, empty legacy frames, downlink echoes)."""


class MalformedFrame(AdapterError):
    """Raised when the envelope lacks a field the decoder needs."""


class UnknownNetwork(AdapterError):
    """Raised when no adapter is registered for the network name."""


def _normalize_eui(value: Any) -> str:
    return str(value).replace("-", "").strip().lower()


def _parse_time(value: Any) -> datetime:
    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)):
        # epoch milliseconds
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    normalized = str(value).strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _record(device_id: Any, payload: bytes, port: Any, received_at: Any) -> CanonicalRecord:
    port = int(port)
    if port == 0:
        raise UselessFrame("Frame on port 0 not to be processed")
    if port == 67 and payload == b"\x00":
        raise UselessFrame("Frame not to be processed")
    return CanonicalRecord(
        device_id=_normalize_eui(device_id),
        payload=payload,
        element_count=port,
        received_at=_parse_time(received_at),
    )


def from_chirpstack(message: dict) -> CanonicalRecord:
    if message.get("data") is None:
        raise MalformedFrame("Frame without a Sentinel payload")
    rx_info = message.get("rxInfo") or []
    received_at = rx_info[0].get("gwTime") if rx_info else message.get("time")
    return _record(
        message["deviceInfo"]["devEui"],
        base64.b64decode(message["data"]),
        message["fPort"],
        received_at,
    )


def from_loriot(message: dict) -> CanonicalRecord:
    cmd = message.get("cmd")
    if message.get("port") == 0 or cmd == "txd":
        raise UselessFrame("Frame not to be processed")

    if cmd == "gw":
        gateways = message.get("gws") or []
        received_at = gateways[0].get("ts") if gateways else None
    else:
        received_at = message.get("ts", message.get("tstamp"))

    return _record(message["EUI"], bytes.fromhex(message["data"]), message["port"], received_at)


def from_multitech(message: dict) -> CanonicalRecord:
    data = message["data"]
    if data.get("port") == 0 or data.get("payload") is None:
        raise UselessFrame("Frame not to be processed")
    return _record(data["deveui"], bytes.fromhex(data["payload"]), data["port"], data.get("time"))


def from_kerlinkwmc(message: dict) -> CanonicalRecord:
    if message.get("fPort") == 0 or "endDevice" not in message:
        raise UselessFrame("Frame not to be processed")
    return _record(
        message["endDevice"]["devEui"],
        bytes.fromhex(message["payload"]),
        message["fPort"],
        message.get("recvTime"),
    )


def from_nifi(message: dict) -> CanonicalRecord:
    port = message["protocol_data"]["port"]
    if port == 0:
        raise UselessFrame("Frame not to be processed")
    return _record(
        message["device_properties"]["deveui"],
        bytes.fromhex(message["payload_cleartext"]),
        port,
        message.get("Timestamp"),
    )


ADAPTERS: dict[str, Callable[[dict], CanonicalRecord]] = {
    "chirpstack": from_chirpstack,
    "loriot": from_loriot,
    "multitech": from_multitech,
    "kerlinkwmc": from_kerlinkwmc,
    "nifi": from_nifi,
}


def adapt(network: str, message: dict) -> CanonicalRecord:
    key = (network or "").strip().lower()
    if key.startswith("loriot"):
        key = "loriot"
    adapter = ADAPTERS.get(key)
    if adapter is None:
        raise UnknownNetwork(f'Unknown network id "{network}"')

    try:
        return adapter(message)
    except AdapterError:
        raise
    except (KeyError, TypeError, ValueError, IndexError, AttributeError) as exc:
        logger.warning("Malformed %s envelope: %r", key, exc)
        raise MalformedFrame(f"Malformed {key} envelope ({exc!r})") from exc
