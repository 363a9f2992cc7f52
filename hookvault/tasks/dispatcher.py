"""Durable task dispatch: "run this named operation later, with retries".

Delivery contract:
- At-least-once: handlers must tolerate being invoked more than once
- Each task kind maps to one handler endpoint (``/task/{kind}``)
- Deliveries carry the X-Task-Name header; handlers reject requests
  without it before doing any work
- A failed delivery is retried per the kind's RetryPolicy; past the
  retry limit the task is abandoned and logged, never escalated
- Handlers may chain: enqueue another task as their last action
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from hookvault.models import EventRecord, PurgeCursor

logger = logging.getLogger(__name__)

# Injected on every delivery; its presence marks a genuine task invocation
TASK_HEADER = "X-Task-Name"
RETRY_COUNT_HEADER = "X-Task-Retry-Count"


class TaskKind(str, Enum):
    PROCESS_HOOK = "process-hook"
    SAVE_RESOURCE = "save-resource"
    PURGE_BEFORE = "purge-before"
    PURGE_STEP = "purge-step"

    @property
    def route(self) -> str:
        return f"/task/{self.value}"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff between ``min_backoff`` and ``max_backoff``.

    ``min_backoff == max_backoff`` gives a fixed retry interval.
    """

    retry_limit: int = 20
    min_backoff: float = 300.0
    max_backoff: float = 300.0

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = self.min_backoff * (2 ** max(attempt - 1, 0))
        return min(delay, self.max_backoff)


# Retry every 5 minutes, 20 times, then abandon
FIXED_FIVE_MINUTES = RetryPolicy(retry_limit=20, min_backoff=300.0, max_backoff=300.0)

DEFAULT_POLICIES: dict[TaskKind, RetryPolicy] = {
    TaskKind.PROCESS_HOOK: RetryPolicy(retry_limit=20, min_backoff=30.0, max_backoff=600.0),
    TaskKind.SAVE_RESOURCE: FIXED_FIVE_MINUTES,
    TaskKind.PURGE_BEFORE: FIXED_FIVE_MINUTES,
    TaskKind.PURGE_STEP: FIXED_FIVE_MINUTES,
}


@dataclass
class TaskHandle:
    """Receipt for an enqueued task."""

    task_id: str
    kind: TaskKind
    eta: float
    duplicate: bool = False


@dataclass
class Task:
    """A queued unit of work and its delivery bookkeeping."""

    kind: TaskKind
    payload: bytes
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    retry: RetryPolicy = FIXED_FIVE_MINUTES
    eta: float = field(default_factory=time.time)
    attempts: int = 0

    @property
    def route(self) -> str:
        return self.kind.route

    def handle(self, duplicate: bool = False) -> TaskHandle:
        return TaskHandle(self.task_id, self.kind, self.eta, duplicate)

    def to_json(self) -> str:
        return json.dumps({
            "task_id": self.task_id,
            "kind": self.kind.value,
            "payload": base64.b64encode(self.payload).decode("ascii"),
            "retry": [self.retry.retry_limit, self.retry.min_backoff, self.retry.max_backoff],
            "eta": self.eta,
            "attempts": self.attempts,
        })

    @classmethod
    def from_json(cls, raw: str | bytes) -> Task:
        doc = json.loads(raw)
        limit, min_backoff, max_backoff = doc["retry"]
        return cls(
            kind=TaskKind(doc["kind"]),
            payload=base64.b64decode(doc["payload"]),
            task_id=doc["task_id"],
            retry=RetryPolicy(int(limit), float(min_backoff), float(max_backoff)),
            eta=float(doc["eta"]),
            attempts=int(doc["attempts"]),
        )


class TaskDispatcher(Protocol):
    """What producers need: enqueue a task, get a handle or DispatchError."""

    def enqueue(
        self,
        kind: TaskKind,
        payload: bytes,
        *,
        retry: RetryPolicy | None = None,
        name: str | None = None,
        delay: float = 0.0,
    ) -> TaskHandle: ...


class TaskQueue(ABC):
    """Queue backend consumed by the TaskRunner."""

    def _build(
        self,
        kind: TaskKind,
        payload: bytes,
        retry: RetryPolicy | None,
        name: str | None,
        delay: float,
    ) -> Task:
        kind = TaskKind(kind)
        return Task(
            kind=kind,
            payload=payload,
            task_id=name or uuid.uuid4().hex,
            retry=retry or DEFAULT_POLICIES[kind],
            eta=time.time() + delay,
        )

    @abstractmethod
    def enqueue(
        self,
        kind: TaskKind,
        payload: bytes,
        *,
        retry: RetryPolicy | None = None,
        name: str | None = None,
        delay: float = 0.0,
    ) -> TaskHandle:
        """Queue a task. A ``name`` already pending is not queued twice."""

    @abstractmethod
    def claim_due(self, now: float, limit: int) -> list[Task]:
        """Lease up to ``limit`` tasks whose eta has passed."""

    @abstractmethod
    def complete(self, task: Task) -> None:
        """Forget a successfully delivered task."""

    @abstractmethod
    def reschedule(self, task: Task) -> None:
        """Persist a failed task's new eta and attempt count."""

    @abstractmethod
    def discard(self, task: Task) -> None:
        """Drop a task that exhausted its retries."""

    def fail(self, task: Task, now: float) -> bool:
        """Record a failed delivery. Returns False if the task was abandoned."""
        task.attempts += 1
        if task.attempts > task.retry.retry_limit:
            logger.error(
                "Task %s (%s) abandoned after %d attempts",
                task.task_id, task.kind.value, task.attempts,
            )
            self.discard(task)
            return False
        task.eta = now + task.retry.backoff(task.attempts)
        logger.warning(
            "Task %s (%s) failed, retry %d/%d in %.0fs",
            task.task_id, task.kind.value, task.attempts,
            task.retry.retry_limit, task.eta - now,
        )
        self.reschedule(task)
        return True


# ── In-process queue ──────────────────────────────────────────────────────


class InMemoryTaskQueue(TaskQueue):
    """Single-process queue for development and tests.

    Same semantics as the Redis queue except durability: pending tasks
    do not survive a restart.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._leased: set[str] = set()
        self._lock = threading.Lock()
        self.abandoned: list[Task] = []

    def __len__(self) -> int:
        return len(self._tasks)

    def pending(self, kind: TaskKind | None = None) -> list[Task]:
        with self._lock:
            tasks = sorted(self._tasks.values(), key=lambda t: t.eta)
        return [t for t in tasks if kind is None or t.kind == kind]

    def enqueue(self, kind, payload, *, retry=None, name=None, delay=0.0) -> TaskHandle:
        task = self._build(kind, payload, retry, name, delay)
        with self._lock:
            existing = self._tasks.get(task.task_id)
            if existing is not None:
                return existing.handle(duplicate=True)
            self._tasks[task.task_id] = task
        logger.debug("Task %s queued for %s", task.task_id, task.route)
        return task.handle()

    def claim_due(self, now: float, limit: int) -> list[Task]:
        with self._lock:
            due = sorted(
                (t for t in self._tasks.values()
                 if t.eta <= now and t.task_id not in self._leased),
                key=lambda t: t.eta,
            )[:limit]
            self._leased.update(t.task_id for t in due)
        return due

    def complete(self, task: Task) -> None:
        with self._lock:
            self._tasks.pop(task.task_id, None)
            self._leased.discard(task.task_id)

    def reschedule(self, task: Task) -> None:
        with self._lock:
            self._tasks[task.task_id] = task
            self._leased.discard(task.task_id)

    def discard(self, task: Task) -> None:
        with self._lock:
            self._tasks.pop(task.task_id, None)
            self._leased.discard(task.task_id)
            self.abandoned.append(task)


# ── Producers ─────────────────────────────────────────────────────────────


def process_hook_later(dispatcher: TaskDispatcher, payload: bytes) -> TaskHandle:
    """Queue a compressed webhook batch for decoding."""
    return dispatcher.enqueue(TaskKind.PROCESS_HOOK, payload)


def save_resource_later(dispatcher: TaskDispatcher, event: EventRecord) -> TaskHandle:
    """Queue the fetch-and-archive of one event's resource."""
    return dispatcher.enqueue(TaskKind.SAVE_RESOURCE, event.to_json())


def purge_before_later(dispatcher: TaskDispatcher, deadline: datetime) -> TaskHandle:
    """Start a purge of every archive record fetched before ``deadline``."""
    body = json.dumps({"deadline": deadline.isoformat()}).encode("utf-8")
    return dispatcher.enqueue(TaskKind.PURGE_BEFORE, body)


def purge_step_later(dispatcher: TaskDispatcher, cursor: PurgeCursor) -> TaskHandle:
    """Continue a purge from ``cursor``.

    The task is named after the cursor, so a retried step that chains the
    same continuation twice does not queue it twice.
    """
    encoded = cursor.encode()
    name = "purge-step-" + hashlib.sha1(encoded.encode("ascii")).hexdigest()[:20]
    return dispatcher.enqueue(TaskKind.PURGE_STEP, encoded.encode("ascii"), name=name)
