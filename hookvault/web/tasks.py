"""Task handler routes: ``POST /task/{kind}``.

Delivery contract:
- Requests without X-Task-Name are rejected with 400 before any work
- 200 tells the dispatcher the task is finished, including tasks that
  were abandoned because their payload can never be processed
- 500 tells the dispatcher to retry with the task's backoff
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from hookvault.archiver import save_resource
from hookvault.errors import (
    DispatchError,
    FetchError,
    InvalidResource,
    MalformedInput,
    StoreError,
)
from hookvault.ingress import process_hook
from hookvault.models import PurgeCursor, decode_event
from hookvault.purger import parse_deadline_body, purge_before
from hookvault.tasks.dispatcher import RETRY_COUNT_HEADER, TASK_HEADER, TaskKind

logger = logging.getLogger(__name__)

_TRANSIENT = (DispatchError, FetchError, InvalidResource, StoreError)


def require_task_header(
    x_task_name: str | None = Header(default=None, alias=TASK_HEADER),
) -> str:
    """Reject anything the dispatcher did not deliver."""
    if not x_task_name:
        raise HTTPException(status_code=400, detail="not a task delivery")
    return x_task_name


def _done(task_name: str, **extra) -> JSONResponse:
    return JSONResponse({"status": "done", "task": task_name, **extra})


def _abandoned(kind: TaskKind, task_name: str, exc: Exception) -> JSONResponse:
    logger.error("abandon %s task %s: %s", kind.value, task_name, exc)
    return JSONResponse({"status": "abandoned", "task": task_name})


def _retry(kind: TaskKind, request: Request, task_name: str, exc: Exception) -> JSONResponse:
    logger.warning(
        "%s task %s failed (retry count %s): %s",
        kind.value, task_name, request.headers.get(RETRY_COUNT_HEADER, "0"), exc,
    )
    return JSONResponse({"status": "retry", "task": task_name}, status_code=500)


def register_task_routes(app: FastAPI) -> None:
    """Register one handler route per task kind."""

    @app.post(TaskKind.PROCESS_HOOK.route)
    async def process_hook_task(request: Request, task_name: str = Depends(require_task_header)):
        """Decode a webhook batch and fan out save-resource tasks."""
        body = await request.body()
        try:
            count = await asyncio.to_thread(process_hook, request.app.state.dispatcher, body)
        except _TRANSIENT as exc:
            return _retry(TaskKind.PROCESS_HOOK, request, task_name, exc)
        return _done(task_name, events=count)

    @app.post(TaskKind.SAVE_RESOURCE.route)
    async def save_resource_task(request: Request, task_name: str = Depends(require_task_header)):
        """Fetch and archive the resource behind one event."""
        body = await request.body()
        try:
            event = decode_event(body)
        except MalformedInput as exc:
            return _abandoned(TaskKind.SAVE_RESOURCE, task_name, exc)
        state = request.app.state
        try:
            record = await save_resource(event, state.store, state.http, state.settings)
        except _TRANSIENT as exc:
            return _retry(TaskKind.SAVE_RESOURCE, request, task_name, exc)
        return _done(task_name, key=record.key if record else None)

    @app.post(TaskKind.PURGE_BEFORE.route)
    async def purge_before_task(request: Request, task_name: str = Depends(require_task_header)):
        """Delete the first page of records older than the deadline."""
        body = await request.body()
        try:
            deadline = parse_deadline_body(body)
        except MalformedInput as exc:
            return _abandoned(TaskKind.PURGE_BEFORE, task_name, exc)
        state = request.app.state
        try:
            step = await asyncio.to_thread(
                purge_before, state.store, state.dispatcher,
                deadline=deadline, page_size=state.settings.purge_page_size,
            )
        except _TRANSIENT as exc:
            return _retry(TaskKind.PURGE_BEFORE, request, task_name, exc)
        return _done(task_name, state=step.state.value, deleted=step.deleted)

    @app.post(TaskKind.PURGE_STEP.route)
    async def purge_step_task(request: Request, task_name: str = Depends(require_task_header)):
        """Continue a purge from the cursor in the body."""
        body = await request.body()
        try:
            cursor = PurgeCursor.decode(body.decode("ascii"))
        except (MalformedInput, UnicodeDecodeError) as exc:
            return _abandoned(TaskKind.PURGE_STEP, task_name, exc)
        state = request.app.state
        try:
            step = await asyncio.to_thread(
                purge_before, state.store, state.dispatcher,
                cursor=cursor, page_size=state.settings.purge_page_size,
            )
        except _TRANSIENT as exc:
            return _retry(TaskKind.PURGE_STEP, request, task_name, exc)
        return _done(task_name, state=step.state.value, deleted=step.deleted)

    logger.info("Task routes registered: %s", ", ".join(k.route for k in TaskKind))
