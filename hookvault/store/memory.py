"""In-process archive store for development and tests."""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Iterator, Sequence
from dataclasses import replace
from datetime import datetime

from hookvault.models import ArchiveRecord
from hookvault.store.base import ArchiveStore, ScanPage, decode_position, encode_position

logger = logging.getLogger(__name__)


class MemoryArchiveStore(ArchiveStore):
    """Dict-backed store with the same ordering rules as the SQL backend.

    Keys are decimal strings of a monotonically increasing counter so
    ``(fetch_date, int(key))`` gives the same stable order as PostgreSQL.
    """

    def __init__(self) -> None:
        self._records: dict[str, ArchiveRecord] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def put(self, record: ArchiveRecord) -> str:
        with self._lock:
            key = str(next(self._ids))
            self._records[key] = replace(record, key=key)
        logger.debug("Stored %s as key %s", record.uri, key)
        return key

    def get(self, key: str) -> ArchiveRecord | None:
        return self._records.get(key)

    def all(self) -> list[ArchiveRecord]:
        with self._lock:
            return list(self._records.values())

    def _newest_first(self, records: list[ArchiveRecord]) -> Iterator[ArchiveRecord]:
        records.sort(key=lambda r: (r.fetch_date, int(r.key or 0)), reverse=True)
        yield from records

    def list_by_uri(self, uri: str) -> Iterator[ArchiveRecord]:
        return self._newest_first([r for r in self.all() if r.uri == uri])

    def list_by_type(self, resource_type: str) -> Iterator[ArchiveRecord]:
        return self._newest_first(
            [r for r in self.all() if r.resource_type == resource_type]
        )

    def scan_before(self, deadline: datetime, position: str, limit: int) -> ScanPage:
        after = decode_position(position)
        candidates = sorted(
            (r for r in self.all() if r.fetch_date < deadline),
            key=lambda r: (r.fetch_date, int(r.key or 0)),
        )
        if after is not None:
            after_date, after_key = after
            after_id = int(after_key) if after_key.isdigit() else 0
            candidates = [
                r for r in candidates
                if (r.fetch_date, int(r.key or 0)) > (after_date, after_id)
            ]
        page = candidates[:limit]
        if not page:
            return ScanPage(keys=[], position=position)
        last = page[-1]
        return ScanPage(
            keys=[r.key for r in page if r.key is not None],
            position=encode_position(last.fetch_date, last.key or ""),
        )

    def delete_many(self, keys: Sequence[str]) -> None:
        with self._lock:
            for key in keys:
                self._records.pop(key, None)
