"""Task runner: delivers queued tasks to their handler endpoints over HTTP.

Each delivery is a POST to ``/task/{kind}`` with the task payload as body
and the X-Task-Name / X-Task-Retry-Count headers injected. A 2xx answer
completes the task; any other status, or a transport error, counts as a
failed attempt and is rescheduled per the task's RetryPolicy.
"""

from __future__ import annotations

import logging
import threading
import time

import httpx

from hookvault.tasks.dispatcher import (
    RETRY_COUNT_HEADER,
    TASK_HEADER,
    Task,
    TaskKind,
    TaskQueue,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 1.0
BATCH_SIZE = 10

_CONTENT_TYPES = {
    TaskKind.PROCESS_HOOK: "application/octet-stream",
    TaskKind.SAVE_RESOURCE: "application/json",
    TaskKind.PURGE_BEFORE: "application/json",
    TaskKind.PURGE_STEP: "text/plain",
}


class TaskRunner:
    """Claim-deliver-acknowledge loop over a TaskQueue.

    Runs in a background thread (``start``/``stop``) or one pass at a
    time (``run_once``). The HTTP client's base_url points at the web
    process serving the task routes.
    """

    def __init__(
        self,
        queue: TaskQueue,
        client: httpx.Client,
        *,
        batch_size: int = BATCH_SIZE,
        poll_interval: float = POLL_INTERVAL_S,
    ) -> None:
        self._queue = queue
        self._client = client
        self._batch_size = batch_size
        self._poll_interval = poll_interval
        self._running = False
        self._thread: threading.Thread | None = None
        self.delivered = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._running

    def deliver(self, task: Task) -> bool:
        """POST one task to its handler. Returns True on a 2xx answer."""
        headers = {
            TASK_HEADER: task.task_id,
            RETRY_COUNT_HEADER: str(task.attempts),
            "Content-Type": _CONTENT_TYPES[task.kind],
        }
        try:
            resp = self._client.post(task.route, content=task.payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Delivery of task %s to %s failed: %s", task.task_id, task.route, exc)
            return False
        if not resp.is_success:
            logger.warning(
                "Task %s handler %s answered HTTP %d",
                task.task_id, task.route, resp.status_code,
            )
            return False
        return True

    def run_once(self, now: float | None = None) -> int:
        """Deliver every task due at ``now``. Returns how many were claimed."""
        now = time.time() if now is None else now
        tasks = self._queue.claim_due(now, self._batch_size)
        for task in tasks:
            if self.deliver(task):
                self._queue.complete(task)
                self.delivered += 1
            else:
                self._queue.fail(task, now)
                self.failed += 1
        return len(tasks)

    def drain(self, now: float | None = None, max_rounds: int = 10_000) -> int:
        """Run passes until nothing is due at ``now``. Returns tasks claimed."""
        total = 0
        for _ in range(max_rounds):
            claimed = self.run_once(now)
            if not claimed:
                break
            total += claimed
        return total

    # ── Background thread ─────────────────────────────────────────────────

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="hookvault-tasks")
        self._thread.start()
        logger.info("Task runner STARTED (batch=%d, poll=%ss)", self._batch_size, self._poll_interval)

    def stop(self, timeout: float | None = None) -> None:
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info("Task runner STOPPED (%d delivered, %d failed)", self.delivered, self.failed)

    def run_forever(self) -> None:
        """Run the delivery loop in the calling thread until stopped."""
        self._running = True
        self._run_loop()

    def _run_loop(self) -> None:
        while self._running:
            try:
                if not self.run_once():
                    time.sleep(self._poll_interval)
            except Exception:
                logger.exception("Task runner pass failed")
                time.sleep(self._poll_interval)


def main() -> None:
    """Entry point for the ``hookvault-worker`` process."""
    from hookvault.config import get_settings
    from hookvault.tasks.redis_queue import RedisTaskQueue

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    queue = RedisTaskQueue.from_url(settings.redis_url)
    # Handlers may fetch up to fetch_timeout before answering
    timeout = httpx.Timeout(settings.fetch_timeout + 30.0)
    with httpx.Client(base_url=settings.task_base_url, timeout=timeout) as client:
        runner = TaskRunner(queue, client)
        logger.info("Delivering tasks to %s", settings.task_base_url)
        try:
            runner.run_forever()
        except KeyboardInterrupt:
            pass
        finally:
            runner.stop()
