"""Redis-backed durable task queue.

Layout (prefix ``hookvault:tasks``):
- ``{prefix}:body:{task_id}``  JSON task document
- ``{prefix}:due``             sorted set, member task_id, score = eta

Claiming is a Lua script that moves due members' scores forward by the
lease time, so a worker that dies mid-delivery only delays its tasks by
one lease instead of losing them. Unlike the message bus, nothing here
fails open: every Redis error on enqueue surfaces as DispatchError.
"""

from __future__ import annotations

import logging

import redis

from hookvault.errors import DispatchError
from hookvault.tasks.dispatcher import RetryPolicy, Task, TaskHandle, TaskKind, TaskQueue

logger = logging.getLogger(__name__)

KEY_PREFIX = "hookvault:tasks"

# Seconds a claimed task stays invisible to other workers
DEFAULT_LEASE_SECONDS = 600.0

_CLAIM_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[2]))
for _, id in ipairs(ids) do
    redis.call('ZADD', KEYS[1], ARGV[3], id)
end
return ids
"""


class RedisTaskQueue(TaskQueue):
    """Durable queue shared by the web process (producer) and workers."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        prefix: str = KEY_PREFIX,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
    ) -> None:
        self._redis = client
        self._prefix = prefix
        self._lease = lease_seconds
        self._claim = client.register_script(_CLAIM_SCRIPT)

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> RedisTaskQueue:
        return cls(redis.from_url(redis_url, decode_responses=True), **kwargs)

    @property
    def due_key(self) -> str:
        return f"{self._prefix}:due"

    def body_key(self, task_id: str) -> str:
        return f"{self._prefix}:body:{task_id}"

    # ── Producer side ─────────────────────────────────────────────────────

    def enqueue(
        self,
        kind: TaskKind,
        payload: bytes,
        *,
        retry: RetryPolicy | None = None,
        name: str | None = None,
        delay: float = 0.0,
    ) -> TaskHandle:
        task = self._build(kind, payload, retry, name, delay)
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.set(self.body_key(task.task_id), task.to_json(), nx=True)
            pipe.zadd(self.due_key, {task.task_id: task.eta}, nx=True)
            created, _ = pipe.execute()
        except redis.RedisError as exc:
            raise DispatchError(f"enqueue {task.kind.value} failed: {exc}") from exc
        if not created:
            logger.info("Task %s already queued, not adding again", task.task_id)
            return task.handle(duplicate=True)
        logger.debug("Task %s queued for %s", task.task_id, task.route)
        return task.handle()

    # ── Consumer side ─────────────────────────────────────────────────────

    def claim_due(self, now: float, limit: int) -> list[Task]:
        ids = self._claim(keys=[self.due_key], args=[now, limit, now + self._lease])
        tasks: list[Task] = []
        for task_id in ids or []:
            raw = self._redis.get(self.body_key(task_id))
            if raw is None:
                # Body gone (completed elsewhere): drop the stale schedule entry
                self._redis.zrem(self.due_key, task_id)
                continue
            tasks.append(Task.from_json(raw))
        return tasks

    def complete(self, task: Task) -> None:
        pipe = self._redis.pipeline(transaction=True)
        pipe.delete(self.body_key(task.task_id))
        pipe.zrem(self.due_key, task.task_id)
        pipe.execute()

    def reschedule(self, task: Task) -> None:
        pipe = self._redis.pipeline(transaction=True)
        pipe.set(self.body_key(task.task_id), task.to_json())
        pipe.zadd(self.due_key, {task.task_id: task.eta})
        pipe.execute()

    def discard(self, task: Task) -> None:
        self.complete(task)
