"""Durable task dispatch for hookvault.

Public API:
- TaskKind, RetryPolicy, TaskHandle, Task: task vocabulary
- TaskDispatcher: producer-side protocol (``enqueue``)
- InMemoryTaskQueue / RedisTaskQueue: queue backends
- TaskRunner: delivers due tasks to ``/task/{kind}`` over HTTP
- *_later helpers: typed producers for each task kind
"""

from __future__ import annotations

from hookvault.tasks.dispatcher import (
    DEFAULT_POLICIES,
    FIXED_FIVE_MINUTES,
    RETRY_COUNT_HEADER,
    TASK_HEADER,
    InMemoryTaskQueue,
    RetryPolicy,
    Task,
    TaskDispatcher,
    TaskHandle,
    TaskKind,
    TaskQueue,
    process_hook_later,
    purge_before_later,
    purge_step_later,
    save_resource_later,
)
from hookvault.tasks.runner import TaskRunner

__all__ = [
    "DEFAULT_POLICIES",
    "FIXED_FIVE_MINUTES",
    "RETRY_COUNT_HEADER",
    "TASK_HEADER",
    "InMemoryTaskQueue",
    "RetryPolicy",
    "Task",
    "TaskDispatcher",
    "TaskHandle",
    "TaskKind",
    "TaskQueue",
    "TaskRunner",
    "process_hook_later",
    "purge_before_later",
    "purge_step_later",
    "save_resource_later",
]
