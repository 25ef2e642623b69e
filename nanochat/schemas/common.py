"""
Shared building blocks for wire DTOs: base model config, timestamp and
number field types, and list-decoding result containers.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any, Generic, List, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer, model_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

T = TypeVar("T")

# Error types carried inside pydantic ValidationErrors; the decoder maps them
# onto MalformedTimestamp / SchemaViolation.
MALFORMED_TIMESTAMP = "malformed_timestamp"
TIMESTAMP_TYPE = "timestamp_type"

_ISO_FRACTIONAL = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"\.(?P<fraction>\d+)"
    r"(?P<zone>Z|z|[+-]\d{2}:\d{2})$"
)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp with fractional seconds and zone designator.

    Raises ValueError when the string does not have that shape.
    """
    match = _ISO_FRACTIONAL.match(value.strip())
    if not match:
        raise ValueError(f"not an ISO-8601 timestamp with fractional seconds: {value!r}")
    fraction = match.group("fraction")[:6].ljust(6, "0")
    zone = match.group("zone")
    if zone in ("Z", "z"):
        zone = "+00:00"
    parsed = datetime.fromisoformat(f"{match.group('base')}.{fraction}{zone}")
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way the server sends it: UTC, fractional seconds, `Z`"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    timespec = "milliseconds" if value.microsecond % 1000 == 0 else "microseconds"
    return value.isoformat(timespec=timespec).replace("+00:00", "Z")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_timestamp(value: Any) -> Any:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise PydanticCustomError(TIMESTAMP_TYPE, "timestamp must be a string")
    try:
        return parse_timestamp(value)
    except ValueError:
        raise PydanticCustomError(
            MALFORMED_TIMESTAMP,
            "Cannot decode ISO 8601 date string: {value}",
            {"value": value},
        )


def _lenient_timestamp(value: Any) -> Any:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            return parse_timestamp(value)
        except ValueError:
            pass
    return utcnow()


def _validate_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PydanticCustomError("float_type", "Input should be a valid number")
    return float(value)


Timestamp = Annotated[
    datetime,
    BeforeValidator(_validate_timestamp),
    PlainSerializer(format_timestamp, return_type=str, when_used="json"),
]

# Audit timestamps that fall back to "now" instead of failing the decode.
LenientTimestamp = Annotated[
    datetime,
    BeforeValidator(_lenient_timestamp),
    PlainSerializer(format_timestamp, return_type=str, when_used="json"),
]

JSONNumber = Annotated[float, BeforeValidator(_validate_number)]


class WireModel(BaseModel):
    """Base for server payloads: camelCase on the wire, unknown keys ignored"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        protected_namespaces=(),
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls_for_defaults(cls, data: Any) -> Any:
        # An explicit null on a defaultable key counts as absent.
        if not isinstance(data, dict):
            return data
        dropped = []
        for name, info in cls.model_fields.items():
            key = info.alias or name
            if data.get(key, ...) is None and not info.is_required() and info.default is not None:
                dropped.append(key)
        if not dropped:
            return data
        return {k: v for k, v in data.items() if k not in dropped}

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SnakeWireModel(WireModel):
    """Payloads whose keys are already snake_case"""
    model_config = ConfigDict(alias_generator=None)


@dataclass
class DecodeFailure:
    """A single list item that failed to decode"""
    index: int
    error: Exception
    payload: Any = None

    @property
    def entity_id(self):
        if isinstance(self.payload, dict):
            value = self.payload.get("id")
            return value if isinstance(value, str) else None
        return None


@dataclass
class DecodeResult(Generic[T]):
    """Decoded list items plus per-item failures"""
    items: List[T] = field(default_factory=list)
    failures: List[DecodeFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures
