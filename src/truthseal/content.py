"""
Sealable content model and draft intake.

``SealableContent`` is the exact field set that participates in hashing:
id, ownerId, title, content, eventTimestamp and an optional location.
Adding a field here means minting a new sealing version, never a silent
change.

``parse_draft`` is the strict boundary for loose user input. It normalizes
text to NFC, bounds field sizes and pins timestamps to UTC milliseconds so
that what gets stored is exactly what gets hashed. ``SealableContent.from_dict``
is the lenient-on-size, strict-on-shape parser used when re-reading stored
records and bundles.
"""

import math
import unicodedata
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .errors import InvalidContent


REQUIRED_FIELDS = ("id", "ownerId", "title", "content", "eventTimestamp")
OPTIONAL_FIELDS = ("location",)

MAX_TITLE_LENGTH = 500
MAX_CONTENT_LENGTH = 10_000_000

# Unicode normalization form applied at intake (sealing versions v1, v2)
TEXT_NORMALIZATION = "NFC"


def format_timestamp(value: datetime) -> str:
    """
    Format a timestamp as fixed ISO-8601 with milliseconds and a literal Z.

    Args:
        value: Timezone-aware datetime

    Returns:
        String like "2024-01-15T14:30:00.000Z"

    Raises:
        InvalidContent: If the datetime is naive
    """
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidContent("Timestamp must be timezone-aware")
    utc = value.astimezone(timezone.utc)
    # strftime("%Y") does not zero-pad years below 1000 on every platform
    return (
        f"{utc.year:04d}-{utc.month:02d}-{utc.day:02d}"
        f"T{utc.hour:02d}:{utc.minute:02d}:{utc.second:02d}"
        f".{utc.microsecond // 1000:03d}Z"
    )


def parse_timestamp(value: Any, field_name: str = "eventTimestamp") -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime with ms precision.

    Accepts a trailing "Z" or an explicit UTC offset. Naive timestamps are
    rejected because their instant depends on the reader's local zone.

    Raises:
        InvalidContent: If the value is not a valid, zoned ISO-8601 string
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidContent(f"Invalid timestamp for {field_name}: {value!r}", field_name) from exc
    else:
        raise InvalidContent(f"{field_name} must be an ISO-8601 string", field_name)

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise InvalidContent(f"{field_name} must include a UTC offset or Z", field_name)

    utc = parsed.astimezone(timezone.utc)
    return utc.replace(microsecond=(utc.microsecond // 1000) * 1000)


@dataclass(frozen=True)
class GeoPoint:
    """GeoJSON point: coordinates are (longitude, latitude)."""
    longitude: float
    latitude: float

    def to_dict(self) -> dict[str, Any]:
        return {"type": "Point", "coordinates": [self.longitude, self.latitude]}

    @classmethod
    def from_dict(cls, data: Any) -> "GeoPoint":
        if not isinstance(data, Mapping):
            raise InvalidContent("location must be an object", "location")
        if set(data.keys()) != {"type", "coordinates"}:
            raise InvalidContent("location must have exactly 'type' and 'coordinates'", "location")
        if data["type"] != "Point":
            raise InvalidContent(f"Unsupported location type: {data['type']!r}", "location")

        coords = data["coordinates"]
        if not isinstance(coords, (list, tuple)) or len(coords) != 2:
            raise InvalidContent("location.coordinates must be [longitude, latitude]", "location")
        for value in coords:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidContent("location.coordinates must be numbers", "location")
            if not math.isfinite(value):
                raise InvalidContent("location.coordinates must be finite", "location")
        return cls(longitude=coords[0], latitude=coords[1])


@dataclass(frozen=True)
class SealableContent:
    """The exact field set that is canonicalized and hashed."""
    id: str
    owner_id: str
    title: str
    content: str
    event_timestamp: datetime
    location: GeoPoint | None = None

    def to_sealable_dict(self) -> dict[str, Any]:
        """Wire mapping of the sealable fields, absent optionals omitted."""
        data: dict[str, Any] = {
            "id": self.id,
            "ownerId": self.owner_id,
            "title": self.title,
            "content": self.content,
            "eventTimestamp": format_timestamp(self.event_timestamp),
        }
        if self.location is not None:
            data["location"] = self.location.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SealableContent":
        """
        Parse the sealable field set from a wire mapping.

        Unknown keys are rejected: anything that is not part of the sealable
        set must be stripped by the caller first.

        Raises:
            InvalidContent: On missing, unknown or mistyped fields
        """
        if not isinstance(data, Mapping):
            raise InvalidContent("Sealable content must be an object")

        unknown = set(data.keys()) - set(REQUIRED_FIELDS) - set(OPTIONAL_FIELDS)
        if unknown:
            raise InvalidContent(f"Unknown sealable fields: {', '.join(sorted(unknown))}")

        for name in REQUIRED_FIELDS:
            if data.get(name) is None:
                raise InvalidContent(f"Missing required field: {name}", name)
        for name in ("id", "ownerId", "title", "content"):
            if not isinstance(data[name], str):
                raise InvalidContent(f"{name} must be a string", name)

        location = data.get("location")
        return cls(
            id=data["id"],
            owner_id=data["ownerId"],
            title=data["title"],
            content=data["content"],
            event_timestamp=parse_timestamp(data["eventTimestamp"]),
            location=GeoPoint.from_dict(location) if location is not None else None,
        )


@dataclass(frozen=True)
class Draft:
    """Content awaiting its one-time sealing transition."""
    draft_id: str
    content: SealableContent


def _normalize_text(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise InvalidContent(f"{name} must be a string", name)
    text = unicodedata.normalize(TEXT_NORMALIZATION, value)
    if not text.strip():
        raise InvalidContent(f"{name} must not be empty", name)
    return text


def parse_draft(payload: Mapping[str, Any], draft_id: str | None = None) -> Draft:
    """
    Validate user-submitted content and build a draft ready for sealing.

    Args:
        payload: Mapping with id, ownerId, title, content, eventTimestamp and
            optional location. A missing id is generated.
        draft_id: Idempotency key for the sealing transition (generated if None)

    Returns:
        Draft with NFC-normalized text and a UTC millisecond event timestamp

    Raises:
        InvalidContent: If any field is missing, empty, oversized or malformed
    """
    if not isinstance(payload, Mapping):
        raise InvalidContent("Draft payload must be an object")

    unknown = set(payload.keys()) - set(REQUIRED_FIELDS) - set(OPTIONAL_FIELDS)
    if unknown:
        raise InvalidContent(f"Unknown sealable fields: {', '.join(sorted(unknown))}")

    record_id = payload.get("id") or str(uuid.uuid4())
    for name in ("ownerId", "title", "content", "eventTimestamp"):
        if payload.get(name) is None:
            raise InvalidContent(f"Missing required field: {name}", name)

    title = _normalize_text(payload["title"], "title")
    if len(title) > MAX_TITLE_LENGTH:
        raise InvalidContent(f"title exceeds {MAX_TITLE_LENGTH} characters", "title")

    body = _normalize_text(payload["content"], "content")
    if len(body) > MAX_CONTENT_LENGTH:
        raise InvalidContent(f"content exceeds {MAX_CONTENT_LENGTH} characters", "content")

    location = None
    if payload.get("location") is not None:
        location = GeoPoint.from_dict(payload["location"])
        if not -180 <= location.longitude <= 180:
            raise InvalidContent("longitude must be within [-180, 180]", "location")
        if not -90 <= location.latitude <= 90:
            raise InvalidContent("latitude must be within [-90, 90]", "location")

    content = SealableContent(
        id=_normalize_text(record_id, "id"),
        owner_id=_normalize_text(payload["ownerId"], "ownerId"),
        title=title,
        content=body,
        event_timestamp=parse_timestamp(payload["eventTimestamp"]),
        location=location,
    )
    return Draft(draft_id=draft_id or str(uuid.uuid4()), content=content)
