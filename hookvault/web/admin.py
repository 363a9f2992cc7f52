"""Purge triggers: the daily cron hook and the admin ``POST /purge``.

Security contract:
- ``POST /purge`` requires X-Admin-Token, compared in constant time
- An unset admin token rejects every call (fail closed)
- ``GET /cron/daily`` is left open for the scheduler; it can only start
  a purge over the configured retention window
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hookvault.errors import DispatchError, MalformedInput
from hookvault.models import utcnow
from hookvault.purger import daily_deadline, parse_before_date
from hookvault.tasks.dispatcher import purge_before_later

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = "X-Admin-Token"


def _is_admin(request: Request) -> bool:
    expected = request.app.state.settings.admin_token
    supplied = request.headers.get(ADMIN_TOKEN_HEADER, "")
    if not expected or not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


def _parse_purge_body(body: bytes) -> str:
    try:
        doc = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedInput(f"purge body is not JSON: {exc}") from exc
    if not isinstance(doc, dict):
        raise MalformedInput("purge body must be an object")
    before = doc.get("before", doc.get("Before"))
    if not isinstance(before, str):
        raise MalformedInput("purge body needs a 'before' date")
    return before


def register_admin_routes(app: FastAPI) -> None:
    """Register the cron and admin purge triggers."""

    @app.get("/cron/daily")
    async def cron_daily(request: Request):
        """Start a purge of everything older than the retention window."""
        settings = request.app.state.settings
        deadline = daily_deadline(utcnow(), settings.retention_days)
        try:
            handle = await asyncio.to_thread(
                purge_before_later, request.app.state.dispatcher, deadline
            )
        except DispatchError:
            logger.exception("Failed to start the daily purge")
            return JSONResponse({"status": "error"}, status_code=500)
        logger.info("Daily purge before %s queued as %s", deadline.isoformat(), handle.task_id)
        return {"status": "queued", "deadline": deadline.isoformat()}

    @app.post("/purge")
    async def purge(request: Request):
        """Admin: purge every record fetched before a calendar date."""
        if not _is_admin(request):
            client = request.client.host if request.client else "?"
            logger.warning("Unauthorized purge request from %s", client)
            return JSONResponse({"status": "Not Authorized"}, status_code=401)
        try:
            deadline = parse_before_date(_parse_purge_body(await request.body()))
        except MalformedInput as exc:
            logger.error("failed to process purge request: %s", exc)
            return JSONResponse({"status": "bad request"}, status_code=400)
        try:
            await asyncio.to_thread(purge_before_later, request.app.state.dispatcher, deadline)
        except DispatchError:
            logger.exception("Failed to start purge before %s", deadline.date())
            return JSONResponse({"status": "error"}, status_code=500)
        logger.info("Admin purge before %s queued", deadline.date())
        return "OK"

    logger.info("Admin routes registered: /cron/daily, /purge")
