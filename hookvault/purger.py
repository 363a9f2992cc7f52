"""Retention purger: delete archive records fetched before a deadline.

The purge runs as a chain of tasks, one page of keys per task:

    START (purge-before, no cursor)
      -> PAGING (purge-step, cursor carries deadline + position)
      -> DONE (a page came back short)

Nothing recurses in-process. A failed page raises, the dispatcher retries
the same task, and the cursor it carries makes the retry idempotent.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from hookvault.config import PURGE_PAGE_SIZE, RETENTION_DAYS
from hookvault.errors import MalformedInput
from hookvault.models import PurgeCursor, parse_instant
from hookvault.store.base import ArchiveStore
from hookvault.tasks.dispatcher import TaskDispatcher, purge_step_later

logger = logging.getLogger(__name__)


class PurgeState(str, Enum):
    START = "start"
    PAGING = "paging"
    DONE = "done"


@dataclass
class PurgeStep:
    """What one purge invocation did."""

    state: PurgeState  # PAGING if a continuation was chained, else DONE
    deleted: int
    next_cursor: PurgeCursor | None = None


def purge_before(
    store: ArchiveStore,
    dispatcher: TaskDispatcher,
    deadline: datetime | None = None,
    cursor: PurgeCursor | None = None,
    page_size: int = PURGE_PAGE_SIZE,
) -> PurgeStep:
    """Delete one page of records with ``fetch_date < deadline``.

    With a ``cursor`` the deadline comes from the cursor and scanning
    resumes after its position; ``deadline`` is ignored.

    Raises:
        StoreError: the scan or the batch delete failed
        DispatchError: the continuation could not be enqueued
    """
    if cursor is not None:
        state, deadline, position = PurgeState.PAGING, cursor.deadline, cursor.position
    elif deadline is not None:
        state, position = PurgeState.START, ""
    else:
        raise ValueError("purge_before needs a deadline or a cursor")

    page = store.scan_before(deadline, position, page_size)
    store.delete_many(page.keys)
    logger.info(
        "Purge %s before %s: deleted %d records",
        state.value, deadline.isoformat(), len(page.keys),
    )

    if len(page.keys) < page_size:
        logger.info("Purge before %s complete", deadline.isoformat())
        return PurgeStep(state=PurgeState.DONE, deleted=len(page.keys))

    next_cursor = PurgeCursor(deadline=deadline, position=page.position)
    purge_step_later(dispatcher, next_cursor)
    return PurgeStep(state=PurgeState.PAGING, deleted=len(page.keys), next_cursor=next_cursor)


def daily_deadline(now: datetime, retention_days: int = RETENTION_DAYS) -> datetime:
    """Oldest fetch time the daily purge keeps."""
    return now - timedelta(days=retention_days)


# ── Payload parsing ───────────────────────────────────────────────────────


def parse_deadline_body(body: bytes) -> datetime:
    """Decode a purge-before task body ``{"deadline": "<ISO-8601>"}``.

    Raises:
        MalformedInput: body is not that document
    """
    try:
        doc = json.loads(body)
        return parse_instant(doc["deadline"])
    except (
        json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError, ValueError, AttributeError
    ) as exc:
        raise MalformedInput(f"bad purge-before body: {exc}") from exc


def parse_before_date(text: str) -> datetime:
    """Admin purge date ``YYYY-MM-DD`` -> midnight UTC of that day.

    Raises:
        MalformedInput: not a calendar date in that layout
    """
    try:
        day = datetime.strptime(text, "%Y-%m-%d")
    except (TypeError, ValueError) as exc:
        raise MalformedInput(f"bad purge date {text!r}: {exc}") from exc
    return day.replace(tzinfo=timezone.utc)
