"""Records flowing through the decoder and the result they produce."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class CanonicalRecord:
    """Vendor-neutral uplink: raw device payload plus its routing field."""

    device_id: str
    payload: bytes
    element_count: int
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class IssueKind(str, Enum):
    # fatal
    INVALID_ELEMENT_COUNT = "invalid_element_count"
    INCONSISTENT_DATA = "inconsistent_data"
    INCONSISTENT_LENGTH = "inconsistent_length"
    UNKNOWN_VECTOR_TYPE = "unknown_vector_type"
    TRUNCATED_VECTOR = "truncated_vector"
    SETTINGS_NOT_FOUND = "settings_not_found"
    UNKNOWN_EXTENSION_HANDLE = "unknown_extension_handle"
    UNKNOWN_EXTENSION_ALGORITHM = "unknown_extension_algorithm"
    UNKNOWN_COMPRESSION_TYPE = "unknown_compression_type"
    SEGMENT_CRC_FAILED = "segment_crc_failed"
    SEGMENT_TOO_LARGE = "segment_too_large"
    INTERNAL_FAULT = "internal_fault"
    # non-fatal
    UNKNOWN_SCALAR = "unknown_scalar"
    UNKNOWN_ENUMERATION = "unknown_enumeration"
    NO_SENSOR = "no_sensor"
    VECTOR_TOO_LONG = "vector_too_long"
    NO_EXTENSION_SETTINGS = "no_extension_settings"
    SEGMENT_PENDING = "segment_pending"
    SEGMENT_DUPLICATE = "segment_duplicate"
    SEGMENTS_LOST = "segments_lost"
    SEGMENT_CONTINUITY_LOST = "segment_continuity_lost"
    FIRST_SEGMENT_LOST = "first_segment_lost"
    MALFORMED_SEGMENT = "malformed_segment"


@dataclass(frozen=True)
class Issue:
    kind: IssueKind
    message: str


@dataclass
class DecodeResult:
    """Decoded data plus the ordered errors and warnings met on the way.

    A non-empty ``errors`` list marks the frame as unusable even when ``data``
    was partly filled before the failure.
    """

    data: dict[str, Any] = field(default_factory=dict)
    error_issues: list[Issue] = field(default_factory=list)
    warning_issues: list[Issue] = field(default_factory=list)
    # settings parsed from a system status vector, waiting to be persisted
    extension_settings: Any = None

    @property
    def errors(self) -> list[str]:
        return [issue.message for issue in self.error_issues]

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.warning_issues]

    @property
    def failed(self) -> bool:
        return bool(self.error_issues)

    def error(self, kind: IssueKind, message: str) -> None:
        self.error_issues.append(Issue(kind, message))

    def warn(self, kind: IssueKind, message: str) -> None:
        self.warning_issues.append(Issue(kind, message))

    def has(self, kind: IssueKind) -> bool:
        return any(issue.kind is kind for issue in self.error_issues + self.warning_issues)

    def merge_issues(self, other: "DecodeResult") -> None:
        """Prepend *other*'s issues, keeping them ahead of this result's own."""

        self.error_issues[:0] = other.error_issues
        self.warning_issues[:0] = other.warning_issues

    def to_dict(self) -> dict[str, Any]:
        return {"data": _jsonable(self.data), "errors": self.errors, "warnings": self.warnings}


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
