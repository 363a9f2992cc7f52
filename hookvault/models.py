"""Data model: webhook event records, archive records and purge cursors."""

from __future__ import annotations

import base64
import binascii
import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from hookvault.errors import CursorDecodeError, MalformedInput, UnsupportedIdentifier

# Wire format for fetch dates in listings
JS_LAYOUT = "%Y-%m-%dT%H:%M:%SZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_instant(value: datetime) -> str:
    """Format an instant as ``YYYY-MM-DDTHH:MM:SSZ`` in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(JS_LAYOUT)


def parse_instant(text: str) -> datetime:
    """Parse an ISO-8601 instant; naive values are taken as UTC.

    Raises:
        ValueError: text is not an ISO-8601 timestamp
    """
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Identifier ────────────────────────────────────────────────────────────


def coerce_identifier(value: Any) -> str:
    """Resolve a polymorphic event identifier to its URI form.

    Integers render in decimal, floats are truncated to an integer first
    (``7.0`` -> ``"7"``), strings pass through. Anything else, booleans
    included, raises :class:`UnsupportedIdentifier`.
    """
    if isinstance(value, bool):
        raise UnsupportedIdentifier(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise UnsupportedIdentifier(value)
        return str(int(value))
    if isinstance(value, str) and value.isprintable():
        return value
    raise UnsupportedIdentifier(value)


# ── Event records ─────────────────────────────────────────────────────────


def _require_str(obj: dict[str, Any], key: str, required: bool = False) -> str:
    if required and not obj.get(key):
        raise MalformedInput(f"event is missing {key!r}")
    value = obj.get(key, "")
    if not isinstance(value, str):
        raise MalformedInput(f"field {key!r} must be a string, got {type(value).__name__}")
    return value


@dataclass
class EventRecord:
    """One event decoded from a webhook batch."""

    event_type: str
    resource: str
    created: str
    id: Any
    href: str

    @classmethod
    def from_dict(cls, obj: Any) -> EventRecord:
        if not isinstance(obj, dict):
            raise MalformedInput(f"event must be an object, got {type(obj).__name__}")
        data = obj.get("data")
        if not isinstance(data, dict):
            raise MalformedInput("event is missing its data attribute")
        if "id" not in data:
            raise MalformedInput("event data is missing an id")
        return cls(
            event_type=_require_str(obj, "event_type"),
            resource=_require_str(obj, "resource"),
            created=_require_str(obj, "created"),
            id=data["id"],
            href=_require_str(data, "href", required=True),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "resource": self.resource,
            "created": self.created,
            "data": {"id": self.id, "href": self.href},
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @property
    def uri(self) -> str:
        """Logical URI ``{resource}/{id}``; raises UnsupportedIdentifier."""
        return f"{self.resource}/{coerce_identifier(self.id)}"


def decode_event(raw: bytes) -> EventRecord:
    try:
        obj = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedInput(f"event is not valid JSON: {exc}") from exc
    return EventRecord.from_dict(obj)


def decode_batch(raw: bytes) -> list[EventRecord]:
    """Decode a webhook batch: a JSON array of event objects, order kept."""
    try:
        obj = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedInput(f"batch is not valid JSON: {exc}") from exc
    if not isinstance(obj, list):
        raise MalformedInput(f"batch must be an array, got {type(obj).__name__}")
    return [EventRecord.from_dict(item) for item in obj]


# ── Archive records ───────────────────────────────────────────────────────


@dataclass
class ArchiveRecord:
    """Immutable compressed snapshot of one fetched resource."""

    uri: str
    resource_type: str
    hook_date: str
    data: bytes
    fetch_date: datetime
    digest: str
    key: str | None = field(default=None, compare=False)


# ── Purge cursor ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PurgeCursor:
    """Store position token scoped to the purge deadline it belongs to."""

    deadline: datetime
    position: str

    def encode(self) -> str:
        doc = json.dumps(
            {"deadline": self.deadline.isoformat(), "position": self.position},
            separators=(",", ":"),
        )
        return base64.urlsafe_b64encode(doc.encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, text: str) -> PurgeCursor:
        try:
            doc = json.loads(base64.urlsafe_b64decode(text.strip().encode("ascii")))
            return cls(
                deadline=parse_instant(doc["deadline"]),
                position=str(doc["position"]),
            )
        except (
            binascii.Error,
            UnicodeError,
            ValueError,
            KeyError,
            TypeError,
            AttributeError,
        ) as exc:
            raise CursorDecodeError(f"cannot decode purge cursor: {exc}") from exc
