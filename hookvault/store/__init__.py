"""Archive store backends.

Public API:
- ArchiveStore: interface used by the archiver, purger and listing
- MemoryArchiveStore: in-process backend (development, tests)
- PostgresArchiveStore: psycopg-backed ``resource`` table
- create_store: backend factory driven by Settings.backend
"""

from __future__ import annotations

from hookvault.config import Settings
from hookvault.store.base import ArchiveStore, ScanPage
from hookvault.store.memory import MemoryArchiveStore


def create_store(settings: Settings) -> ArchiveStore:
    """Build the configured archive store backend."""
    if settings.backend == "memory":
        return MemoryArchiveStore()
    from hookvault.store.postgres import PostgresArchiveStore

    store = PostgresArchiveStore(settings.database_url)
    store.init_tables()
    return store


__all__ = [
    "ArchiveStore",
    "MemoryArchiveStore",
    "ScanPage",
    "create_store",
]
