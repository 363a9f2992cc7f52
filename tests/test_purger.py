"""Tests for the retention purger and its task routes."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from freezegun import freeze_time

from hookvault.errors import DispatchError, MalformedInput, StoreError
from hookvault.models import PurgeCursor, utcnow
from hookvault.purger import (
    PurgeState,
    daily_deadline,
    parse_before_date,
    parse_deadline_body,
    purge_before,
)
from hookvault.store.memory import MemoryArchiveStore
from hookvault.tasks.dispatcher import TASK_HEADER, InMemoryTaskQueue, TaskKind

from conftest import make_record

DEADLINE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _seed(store: MemoryArchiveStore, old: int, new: int = 5) -> None:
    for i in range(old):
        store.put(make_record(uri=f"invoices/{i}", fetch_date=DEADLINE - timedelta(minutes=i + 1)))
    for i in range(new):
        store.put(make_record(uri=f"invoices/n{i}", fetch_date=DEADLINE + timedelta(minutes=i)))


def _run_to_completion(store, queue) -> list[PurgeState]:
    """Run the START step, then every chained purge-step, in order."""
    states = [purge_before(store, queue, deadline=DEADLINE).state]
    while queue.pending(TaskKind.PURGE_STEP):
        [task] = queue.pending(TaskKind.PURGE_STEP)
        queue.complete(task)
        cursor = PurgeCursor.decode(task.payload.decode())
        states.append(purge_before(store, queue, cursor=cursor).state)
    return states


class TestPurgeToCompletion:
    """Exactly the records fetched before the deadline are deleted."""

    @pytest.mark.parametrize("old, steps", [(0, 1), (1, 1), (100, 2), (101, 2), (250, 3)])
    def test_deletes_exactly_old_records(self, old, steps):
        store, queue = MemoryArchiveStore(), InMemoryTaskQueue()
        _seed(store, old)
        states = _run_to_completion(store, queue)
        assert len(states) == steps
        assert states[-1] == PurgeState.DONE
        assert len(store) == 5
        assert all(r.fetch_date >= DEADLINE for r in store.all())

    def test_record_at_deadline_survives(self):
        store, queue = MemoryArchiveStore(), InMemoryTaskQueue()
        store.put(make_record(fetch_date=DEADLINE))
        purge_before(store, queue, deadline=DEADLINE)
        assert len(store) == 1

    def test_full_page_chains_cursor_with_deadline(self):
        store, queue = MemoryArchiveStore(), InMemoryTaskQueue()
        _seed(store, 150)
        step = purge_before(store, queue, deadline=DEADLINE)
        assert step.state == PurgeState.PAGING
        assert step.deleted == 100
        [task] = queue.pending(TaskKind.PURGE_STEP)
        assert PurgeCursor.decode(task.payload.decode()).deadline == DEADLINE

    def test_cursor_deadline_wins_over_argument(self):
        store, queue = MemoryArchiveStore(), InMemoryTaskQueue()
        _seed(store, 3)
        cursor = PurgeCursor(deadline=DEADLINE - timedelta(minutes=2), position="")
        purge_before(store, queue, deadline=DEADLINE, cursor=cursor)
        assert len(store) == 5 + 2

    def test_replayed_step_is_idempotent(self):
        store, queue = MemoryArchiveStore(), InMemoryTaskQueue()
        _seed(store, 150)
        step = purge_before(store, queue, deadline=DEADLINE)
        first = purge_before(store, queue, cursor=step.next_cursor)
        again = purge_before(store, queue, cursor=step.next_cursor)
        assert first.deleted == 50
        assert again.deleted == 0
        assert len(store) == 5


class TestPurgeFailures:
    def test_delete_failure_propagates(self):
        store = MagicMock()
        store.scan_before.return_value.keys = ["1"]
        store.delete_many.side_effect = StoreError("timeout")
        with pytest.raises(StoreError):
            purge_before(store, InMemoryTaskQueue(), deadline=DEADLINE)

    def test_chain_failure_propagates(self):
        store = MemoryArchiveStore()
        _seed(store, 100, new=0)
        dispatcher = MagicMock()
        dispatcher.enqueue.side_effect = DispatchError("redis down")
        with pytest.raises(DispatchError):
            purge_before(store, dispatcher, deadline=DEADLINE)

    def test_needs_deadline_or_cursor(self):
        with pytest.raises(ValueError):
            purge_before(MemoryArchiveStore(), InMemoryTaskQueue())


class TestDeadlines:
    @freeze_time("2025-06-01 12:00:00")
    def test_daily_deadline_is_one_year_back(self):
        assert daily_deadline(utcnow(), 365) == datetime(2024, 6, 1, 12, tzinfo=timezone.utc)

    def test_deadline_body(self):
        body = json.dumps({"deadline": DEADLINE.isoformat()}).encode()
        assert parse_deadline_body(body) == DEADLINE

    @pytest.mark.parametrize("body", [b"", b"[]", b'{"when": "x"}', b'{"deadline": "tomorrow"}', b'{"deadline": 5}'])
    def test_bad_deadline_body(self, body):
        with pytest.raises(MalformedInput):
            parse_deadline_body(body)

    def test_before_date_is_midnight_utc(self):
        assert parse_before_date("2024-01-01") == DEADLINE

    @pytest.mark.parametrize("text", ["01/01/2024", "2024-13-01", ""])
    def test_bad_before_date(self, text):
        with pytest.raises(MalformedInput):
            parse_before_date(text)


class TestPurgeRoutes:
    """POST /task/purge-before and /task/purge-step."""

    def test_purge_before_route_runs_first_page(self, client, store, queue):
        _seed(store, 120)
        body = json.dumps({"deadline": DEADLINE.isoformat()}).encode()
        resp = client.post("/task/purge-before", content=body, headers={TASK_HEADER: "p1"})
        assert resp.status_code == 200
        assert resp.json()["state"] == "paging"
        assert len(store) == 25
        assert len(queue.pending(TaskKind.PURGE_STEP)) == 1

    def test_requires_task_header(self, client, store):
        _seed(store, 3)
        body = json.dumps({"deadline": DEADLINE.isoformat()}).encode()
        assert client.post("/task/purge-before", content=body).status_code == 400
        assert len(store) == 8

    def test_malformed_cursor_is_abandoned(self, client, store):
        _seed(store, 3)
        resp = client.post("/task/purge-step", content=b"%%%", headers={TASK_HEADER: "p2"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "abandoned"
        assert len(store) == 8

    def test_store_failure_answers_500(self, app, client):
        app.state.store = MagicMock()
        app.state.store.scan_before.side_effect = StoreError("down")
        body = json.dumps({"deadline": DEADLINE.isoformat()}).encode()
        resp = client.post("/task/purge-before", content=body, headers={TASK_HEADER: "p3"})
        assert resp.status_code == 500

    def test_whole_chain_through_runner(self, client, store, queue, runner):
        _seed(store, 250)
        body = json.dumps({"deadline": DEADLINE.isoformat()}).encode()
        queue.enqueue(TaskKind.PURGE_BEFORE, body)
        runner.drain()
        assert len(store) == 5
        assert len(queue) == 0
