from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class UplinkIn(BaseModel):
    """A frame already stripped of its network envelope."""

    device_id: str = Field(validation_alias=AliasChoices("deviceId", "device_id", "devEui"))
    payload_hex: str = Field(validation_alias=AliasChoices("bytes", "payload"))
    element_count: int = Field(validation_alias=AliasChoices("elementCount", "element_count", "port", "fPort"))
    received_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("receivedAt", "received_at"))

    @field_validator("payload_hex")
    @classmethod
    def _hex_payload(cls, value: str) -> str:
        value = value.strip().replace(" ", "")
        try:
            bytes.fromhex(value)
        except ValueError as exc:
            raise ValueError("bytes must be a hexadecimal string") from exc
        return value.lower()

    @field_validator("received_at")
    @classmethod
    def _aware_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        # naive timestamps are taken as UTC, like the network adapters do
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class DecodeResultOut(BaseModel):
    data: dict[str, Any]
    errors: list[str]
    warnings: list[str]


class ExtensionSettingsOut(BaseModel):
    device_id: str = Field(serialization_alias="deviceId")
    settings: dict[str, Any]
    model_config = ConfigDict(populate_by_name=True)
