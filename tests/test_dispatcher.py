"""Tests for task dispatch: retry policies, the in-memory and Redis queues."""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import redis

from hookvault.errors import DispatchError
from hookvault.models import PurgeCursor
from hookvault.tasks.dispatcher import (
    DEFAULT_POLICIES,
    FIXED_FIVE_MINUTES,
    InMemoryTaskQueue,
    RetryPolicy,
    Task,
    TaskKind,
    purge_before_later,
    purge_step_later,
    save_resource_later,
)
from hookvault.tasks.redis_queue import RedisTaskQueue

from conftest import make_event

NOW = 1_700_000_000.0


class TestRetryPolicy:
    """Backoff schedule."""

    def test_fixed_policy(self):
        assert [FIXED_FIVE_MINUTES.backoff(n) for n in (1, 2, 10)] == [300.0, 300.0, 300.0]

    def test_exponential_policy_is_capped(self):
        policy = RetryPolicy(retry_limit=20, min_backoff=30.0, max_backoff=600.0)
        assert [policy.backoff(n) for n in range(1, 7)] == [30.0, 60.0, 120.0, 240.0, 480.0, 600.0]

    def test_defaults_per_kind(self):
        assert DEFAULT_POLICIES[TaskKind.SAVE_RESOURCE] == FIXED_FIVE_MINUTES
        assert DEFAULT_POLICIES[TaskKind.PURGE_STEP] == FIXED_FIVE_MINUTES
        assert DEFAULT_POLICIES[TaskKind.PROCESS_HOOK].min_backoff == 30.0

    def test_routes(self):
        assert TaskKind.SAVE_RESOURCE.route == "/task/save-resource"


class TestInMemoryQueue:
    """Claim, complete, fail and abandon."""

    def test_claims_only_due_tasks(self):
        queue = InMemoryTaskQueue()
        queue.enqueue(TaskKind.SAVE_RESOURCE, b"now")
        queue.enqueue(TaskKind.SAVE_RESOURCE, b"later", delay=3600)
        claimed = queue.claim_due(time.time(), 10)
        assert [t.payload for t in claimed] == [b"now"]

    def test_claimed_task_is_not_claimed_twice(self):
        queue = InMemoryTaskQueue()
        queue.enqueue(TaskKind.PROCESS_HOOK, b"x")
        far = 2 ** 40
        assert len(queue.claim_due(far, 10)) == 1
        assert queue.claim_due(far, 10) == []

    def test_failure_reschedules_with_backoff(self):
        queue = InMemoryTaskQueue()
        queue.enqueue(TaskKind.SAVE_RESOURCE, b"x")
        [task] = queue.claim_due(2 ** 40, 1)
        assert queue.fail(task, NOW) is True
        assert task.attempts == 1
        assert task.eta == NOW + 300.0
        assert queue.claim_due(NOW + 299.0, 1) == []
        assert queue.claim_due(NOW + 300.0, 1) == [task]

    def test_abandoned_after_retry_limit(self):
        queue = InMemoryTaskQueue()
        queue.enqueue(TaskKind.PURGE_BEFORE, b"{}", retry=RetryPolicy(retry_limit=2))
        outcomes = []
        now = 2 ** 40
        while len(queue):
            [task] = queue.claim_due(now, 1)
            outcomes.append(queue.fail(task, now))
            now += 10_000
        assert outcomes == [True, True, False]
        assert len(queue.abandoned) == 1

    def test_named_task_is_not_queued_twice(self):
        queue = InMemoryTaskQueue()
        first = queue.enqueue(TaskKind.PURGE_STEP, b"c", name="step-1")
        second = queue.enqueue(TaskKind.PURGE_STEP, b"c", name="step-1")
        assert not first.duplicate
        assert second.duplicate
        assert len(queue) == 1


class TestProducers:
    """Typed helpers build the right payloads."""

    def test_save_resource_payload_is_event_json(self):
        queue = InMemoryTaskQueue()
        save_resource_later(queue, make_event(id=7.0))
        [task] = queue.pending(TaskKind.SAVE_RESOURCE)
        assert json.loads(task.payload)["data"]["id"] == 7.0

    def test_purge_before_payload(self):
        queue = InMemoryTaskQueue()
        purge_before_later(queue, datetime(2024, 1, 1, tzinfo=timezone.utc))
        [task] = queue.pending(TaskKind.PURGE_BEFORE)
        assert json.loads(task.payload) == {"deadline": "2024-01-01T00:00:00+00:00"}

    def test_purge_step_is_named_after_cursor(self):
        queue = InMemoryTaskQueue()
        cursor = PurgeCursor(datetime(2024, 1, 1, tzinfo=timezone.utc), "pos|1")
        purge_step_later(queue, cursor)
        purge_step_later(queue, cursor)
        [task] = queue.pending(TaskKind.PURGE_STEP)
        assert PurgeCursor.decode(task.payload.decode()) == cursor


class TestTaskSerialization:
    def test_task_json_round_trip(self):
        task = Task(kind=TaskKind.PROCESS_HOOK, payload=b"\x1f\x8b\x00", attempts=3, eta=NOW)
        again = Task.from_json(task.to_json())
        assert again == task


# ── Redis queue (client mocked) ───────────────────────────────────────────


def _mock_redis():
    client = MagicMock()
    client.register_script.return_value = MagicMock(return_value=[])
    client.pipeline.return_value.execute.return_value = [True, 1]
    return client


class TestRedisQueue:
    """Key layout and failure mapping, with a mocked Redis client."""

    def test_enqueue_writes_body_and_schedule(self):
        client = _mock_redis()
        queue = RedisTaskQueue(client, prefix="t")
        handle = queue.enqueue(TaskKind.SAVE_RESOURCE, b"{}", name="abc")
        pipe = client.pipeline.return_value
        pipe.set.assert_called_once()
        assert pipe.set.call_args[0][0] == "t:body:abc"
        assert pipe.zadd.call_args[0][0] == "t:due"
        assert handle.task_id == "abc"
        assert not handle.duplicate

    def test_existing_body_means_duplicate(self):
        client = _mock_redis()
        client.pipeline.return_value.execute.return_value = [None, 0]
        handle = RedisTaskQueue(client).enqueue(TaskKind.PURGE_STEP, b"c", name="step")
        assert handle.duplicate

    def test_redis_error_raises_dispatch_error(self):
        client = _mock_redis()
        client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")
        with pytest.raises(DispatchError):
            RedisTaskQueue(client).enqueue(TaskKind.PROCESS_HOOK, b"x")

    def test_claim_loads_bodies_and_drops_stale_ids(self):
        client = _mock_redis()
        task = Task(kind=TaskKind.PURGE_BEFORE, payload=b"{}", task_id="live", eta=NOW)
        client.register_script.return_value.return_value = ["live", "gone"]
        client.get.side_effect = lambda key: task.to_json() if key.endswith(":live") else None
        queue = RedisTaskQueue(client, prefix="t", lease_seconds=60)
        claimed = queue.claim_due(NOW, 10)
        assert [t.task_id for t in claimed] == ["live"]
        client.zrem.assert_called_once_with("t:due", "gone")
        script = client.register_script.return_value
        assert script.call_args.kwargs == {"keys": ["t:due"], "args": [NOW, 10, NOW + 60]}
