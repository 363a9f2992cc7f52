"""Archive store interface.

The store is an opaque collaborator offering: single-record puts,
equality filters on ``uri`` and ``resource_type``, a range filter plus
stable ordering on ``fetch_date``, resumable key scans and key-only batch
deletes. Per-record atomicity is assumed; nothing spans records.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from hookvault.models import ArchiveRecord, parse_instant

# Store "kind" / table name
RESOURCE_KIND = "resource"


@dataclass
class ScanPage:
    """One page of a key scan and the position to resume after it."""

    keys: list[str] = field(default_factory=list)
    position: str = ""


def encode_position(fetch_date: datetime, key: str) -> str:
    """Position token for keyset pagination over ``(fetch_date, key)``."""
    return f"{fetch_date.isoformat()}|{key}"


def decode_position(position: str) -> tuple[datetime, str] | None:
    """Inverse of :func:`encode_position`; empty or garbled tokens restart."""
    if not position or "|" not in position:
        return None
    stamp, _, key = position.rpartition("|")
    try:
        return parse_instant(stamp), key
    except ValueError:
        return None


class ArchiveStore(ABC):
    """Persistence for archive records."""

    @abstractmethod
    def put(self, record: ArchiveRecord) -> str:
        """Persist a new record and return its store key."""

    @abstractmethod
    def list_by_uri(self, uri: str) -> Iterator[ArchiveRecord]:
        """Records with this URI, newest fetch first."""

    @abstractmethod
    def list_by_type(self, resource_type: str) -> Iterator[ArchiveRecord]:
        """Records of this resource type, newest fetch first."""

    @abstractmethod
    def scan_before(self, deadline: datetime, position: str, limit: int) -> ScanPage:
        """Keys with ``fetch_date < deadline`` in stable order.

        Resumes strictly after ``position`` (empty = from the start) and
        returns at most ``limit`` keys.
        """

    @abstractmethod
    def delete_many(self, keys: Sequence[str]) -> None:
        """Delete records by key; keys that no longer exist are ignored."""

    def close(self) -> None:
        """Release backend resources."""
