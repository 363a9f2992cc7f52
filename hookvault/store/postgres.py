"""PostgreSQL archive store (``resource`` table).

Indexed: uri, resource_type, fetch_date. Not indexed: hook_date, data,
digest. Listings stream through a server-side cursor so a large history
is never loaded at once.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from datetime import datetime

import psycopg
from psycopg.rows import dict_row

from hookvault.errors import StoreError
from hookvault.models import ArchiveRecord
from hookvault.store.base import (
    RESOURCE_KIND,
    ArchiveStore,
    ScanPage,
    decode_position,
    encode_position,
)

logger = logging.getLogger(__name__)

# Rows fetched per round trip when streaming listings
_LISTING_ITERSIZE = 50

_COLUMNS = "id, uri, resource_type, hook_date, data, fetch_date, digest"


def _row_to_record(row: dict) -> ArchiveRecord:
    return ArchiveRecord(
        uri=row["uri"],
        resource_type=row["resource_type"],
        hook_date=row["hook_date"],
        data=bytes(row["data"] or b""),
        fetch_date=row["fetch_date"],
        digest=row["digest"],
        key=str(row["id"]),
    )


class PostgresArchiveStore(ArchiveStore):
    """Archive store backed by a PostgreSQL table."""

    def __init__(self, database_url: str) -> None:
        self._url = database_url

    # ── DB helpers ────────────────────────────────────────────────────────

    def _connect(self, *, autocommit: bool = True) -> psycopg.Connection:
        return psycopg.connect(self._url, autocommit=autocommit, row_factory=dict_row)

    def init_tables(self) -> None:
        """Create the resource table and its indexes if missing. Idempotent."""
        try:
            with self._connect() as conn:
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {RESOURCE_KIND} (
                        id            BIGSERIAL PRIMARY KEY,
                        uri           TEXT NOT NULL,
                        resource_type TEXT NOT NULL,
                        hook_date     TEXT NOT NULL DEFAULT '',
                        data          BYTEA,
                        fetch_date    TIMESTAMPTZ NOT NULL,
                        digest        TEXT NOT NULL DEFAULT ''
                    )
                """)
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS {RESOURCE_KIND}_uri_fetch_idx "
                    f"ON {RESOURCE_KIND} (uri, fetch_date DESC)"
                )
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS {RESOURCE_KIND}_type_fetch_idx "
                    f"ON {RESOURCE_KIND} (resource_type, fetch_date DESC)"
                )
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS {RESOURCE_KIND}_fetch_idx "
                    f"ON {RESOURCE_KIND} (fetch_date, id)"
                )
        except psycopg.Error as exc:
            raise StoreError(f"unable to initialise {RESOURCE_KIND} table: {exc}") from exc
        logger.info("Archive table '%s' initialized", RESOURCE_KIND)

    # ── Writes ────────────────────────────────────────────────────────────

    def put(self, record: ArchiveRecord) -> str:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""INSERT INTO {RESOURCE_KIND}
                        (uri, resource_type, hook_date, data, fetch_date, digest)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        RETURNING id""",
                    (
                        record.uri,
                        record.resource_type,
                        record.hook_date,
                        record.data,
                        record.fetch_date,
                        record.digest,
                    ),
                ).fetchone()
        except psycopg.Error as exc:
            raise StoreError(f"unable to store resource {record.uri}: {exc}") from exc
        return str(row["id"])

    def delete_many(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        try:
            with self._connect() as conn:
                conn.execute(
                    f"DELETE FROM {RESOURCE_KIND} WHERE id = ANY(%s)",
                    ([int(k) for k in keys],),
                )
        except psycopg.Error as exc:
            raise StoreError(f"multi delete of {len(keys)} keys failed: {exc}") from exc

    # ── Reads ─────────────────────────────────────────────────────────────

    def _stream(self, where: str, value: str) -> Iterator[ArchiveRecord]:
        try:
            # Server-side cursors need a transaction, so no autocommit here
            with self._connect(autocommit=False) as conn:
                with conn.cursor(name=f"{RESOURCE_KIND}_listing") as cur:
                    cur.itersize = _LISTING_ITERSIZE
                    cur.execute(
                        f"SELECT {_COLUMNS} FROM {RESOURCE_KIND} "
                        f"WHERE {where} = %s ORDER BY fetch_date DESC, id DESC",
                        (value,),
                    )
                    for row in cur:
                        yield _row_to_record(row)
        except psycopg.Error as exc:
            raise StoreError(f"listing {where}={value} failed: {exc}") from exc

    def list_by_uri(self, uri: str) -> Iterator[ArchiveRecord]:
        return self._stream("uri", uri)

    def list_by_type(self, resource_type: str) -> Iterator[ArchiveRecord]:
        return self._stream("resource_type", resource_type)

    def scan_before(self, deadline: datetime, position: str, limit: int) -> ScanPage:
        after = decode_position(position)
        try:
            with self._connect() as conn:
                if after is None:
                    rows = conn.execute(
                        f"""SELECT id, fetch_date FROM {RESOURCE_KIND}
                            WHERE fetch_date < %s
                            ORDER BY fetch_date, id LIMIT %s""",
                        (deadline, limit),
                    ).fetchall()
                else:
                    after_date, after_key = after
                    rows = conn.execute(
                        f"""SELECT id, fetch_date FROM {RESOURCE_KIND}
                            WHERE fetch_date < %s AND (fetch_date, id) > (%s, %s)
                            ORDER BY fetch_date, id LIMIT %s""",
                        (deadline, after_date, int(after_key or 0), limit),
                    ).fetchall()
        except psycopg.Error as exc:
            raise StoreError(f"fetching keys before {deadline} failed: {exc}") from exc
        if not rows:
            return ScanPage(keys=[], position=position)
        last = rows[-1]
        return ScanPage(
            keys=[str(r["id"]) for r in rows],
            position=encode_position(last["fetch_date"], str(last["id"])),
        )
