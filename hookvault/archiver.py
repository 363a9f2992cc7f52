"""Resource archiver: fetch the resource an event references and persist it.

Handling rules for one save-resource task:
- Unsupported identifier -> abandoned (logged), the shape will not change
- Body over the fetch ceiling -> abandoned (logged), no record
- Compressed body over the blob limit -> abandoned (logged), no record
- Transport error, non-2xx, non-object JSON, store failure -> raised so
  the task is retried
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
from dataclasses import dataclass

import httpx

from hookvault.config import Settings
from hookvault.errors import (
    BlobTooLarge,
    CapExceeded,
    FetchError,
    InvalidResource,
    UnsupportedIdentifier,
)
from hookvault.integrity import new_content_hash
from hookvault.models import ArchiveRecord, EventRecord, utcnow
from hookvault.store.base import ArchiveStore
from hookvault.streams import MultiWriter, Packer, bounded_chunks

logger = logging.getLogger(__name__)

APP_KEY_HEADER = "X-Application-Key"


@dataclass
class FetchedResource:
    raw: bytes
    packed: bytes
    digest: str


async def fetch_resource(
    http: httpx.AsyncClient, href: str, app_key: str, cap: int
) -> FetchedResource:
    """GET ``href`` and read it once into a raw copy, a digest and a gzip blob.

    Raises:
        CapExceeded: the body is larger than ``cap``
        FetchError: transport failure or non-2xx status
    """
    raw = io.BytesIO()
    digest = new_content_hash()
    packer = Packer()
    fanout = MultiWriter(raw, digest, packer)
    headers = {APP_KEY_HEADER: app_key, "Content-Type": "application/json"}
    try:
        async with http.stream("GET", href, headers=headers) as response:
            response.raise_for_status()
            async for chunk in bounded_chunks(response.aiter_bytes(), cap):
                fanout.write(chunk)
    except httpx.HTTPError as exc:
        raise FetchError(f"fetch {href} failed: {exc}") from exc
    return FetchedResource(raw=raw.getvalue(), packed=packer.close(), digest=digest.hexdigest())


def _parse_object(raw: bytes, href: str) -> dict:
    try:
        obj = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidResource(f"{href} did not return JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise InvalidResource(f"{href} returned {type(obj).__name__}, expected an object")
    return obj


async def save_resource(
    event: EventRecord,
    store: ArchiveStore,
    http: httpx.AsyncClient,
    settings: Settings,
) -> ArchiveRecord | None:
    """Archive the resource behind one event.

    Returns the stored record, or None when the event was abandoned.

    Raises:
        FetchError: fetch failed (retryable)
        InvalidResource: body is not a JSON object (retryable)
        StoreError: persisting failed (retryable)
    """
    try:
        uri = event.uri
    except UnsupportedIdentifier as exc:
        logger.error("abandon save_resource for %s: %s", event.href, exc)
        return None

    try:
        fetched = await fetch_resource(http, event.href, settings.app_key, settings.fetch_cap)
    except CapExceeded as exc:
        logger.warning("abandon save_resource for %s: %s", uri, exc)
        return None

    if len(fetched.packed) > settings.max_blob_size:
        exc = BlobTooLarge(len(fetched.packed), settings.max_blob_size)
        logger.warning("abandon save_resource for %s: %s", uri, exc)
        return None

    _parse_object(fetched.raw, event.href)

    record = ArchiveRecord(
        uri=uri,
        resource_type=event.resource,
        hook_date=event.created,
        data=fetched.packed,
        fetch_date=utcnow(),
        digest=fetched.digest,
    )
    record.key = await asyncio.to_thread(store.put, record)
    logger.info(
        "Archived %s (%d bytes, %d packed, digest %s) as %s",
        uri, len(fetched.raw), len(fetched.packed), fetched.digest, record.key,
    )
    return record
