"""Query facade: stream archive records as a JSON array, newest first.

Each element is ``{"fetchdate", "hookdate", "digest", "resource"}`` where
``resource`` is the decompressed original JSON (``null`` without data).
Output stops once the running byte count reaches the response ceiling;
the array is always closed, so a truncated listing is still valid JSON.
"""

from __future__ import annotations

import io
import itertools
import json
import logging
from collections.abc import Iterable, Iterator

from hookvault.config import MAX_RESPONSE_SIZE
from hookvault.errors import CodecError
from hookvault.models import ArchiveRecord, format_instant
from hookvault.store.base import ArchiveStore
from hookvault.streams import CountingWriter, unpack_to

logger = logging.getLogger(__name__)


def select_records(
    store: ArchiveStore, resource_type: str, resource_id: str | None = None
) -> Iterator[ArchiveRecord]:
    """Records for one resource (``{type}/{id}``) or for a whole type."""
    if resource_id is None:
        return store.list_by_type(resource_type)
    return store.list_by_uri(f"{resource_type}/{resource_id}")


def prefetch(records: Iterator[ArchiveRecord]) -> Iterator[ArchiveRecord]:
    """Pull the first record now so store errors surface before streaming."""
    first = next(records, None)
    if first is None:
        return iter(())
    return itertools.chain([first], records)


def open_listing(
    store: ArchiveStore, resource_type: str, resource_id: str | None = None
) -> Iterator[ArchiveRecord]:
    """Start a listing query; raises StoreError before any output exists."""
    return prefetch(select_records(store, resource_type, resource_id))


def _header(record: ArchiveRecord) -> str:
    return (
        '{"fetchdate":' + json.dumps(format_instant(record.fetch_date))
        + ',"hookdate":' + json.dumps(record.hook_date)
        + ',"digest":' + json.dumps(record.digest)
        + ',"resource":'
    )


def render_record(record: ArchiveRecord) -> bytes:
    """One listing element; unreadable stored data renders as ``null``."""
    buf = io.BytesIO()
    out = CountingWriter(buf)
    out.write_str(_header(record))
    if record.data:
        try:
            unpack_to(out, io.BytesIO(record.data))
        except CodecError as exc:
            logger.error("Record %s (%s) has unreadable data: %s", record.key, record.uri, exc)
            buf = io.BytesIO()
            out = CountingWriter(buf)
            out.write_str(_header(record) + "null")
    else:
        out.write_str("null")
    out.write_str("}")
    return buf.getvalue()


def iter_listing(
    records: Iterable[ArchiveRecord], max_size: int = MAX_RESPONSE_SIZE
) -> Iterator[bytes]:
    """Yield the listing as byte chunks, one per record plus brackets."""
    yield b"["
    written = 1
    count = 0
    for record in records:
        if written >= max_size:
            logger.warning("Listing truncated after %d records (%d bytes)", count, written)
            break
        chunk = render_record(record)
        if count:
            chunk = b"," + chunk
        written += len(chunk)
        count += 1
        yield chunk
    yield b"]"
