"""Webhook intake route: ``POST /r``.

Security contract:
- Never return error details to the webhook caller
- 400 for a missing, malformed or mismatched X-Signature
- 413 for a body over the ingress ceiling
- Nothing is enqueued unless the signature verified
- Log every delivery for the audit trail
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hookvault.errors import AuthenticationFailed, CapExceeded, DispatchError
from hookvault.ingress import accept_webhook
from hookvault.integrity import app_key_digest

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"
CONTENT_KEY_HEADER = "X-Content-Key"


def _log_webhook(status: str, size: int = 0, task_id: str = "") -> None:
    """Audit log for webhook activity."""
    logger.info("WEBHOOK_AUDIT status=%s bytes=%d task=%s", status, size, task_id)


async def _handle_webhook(request: Request) -> JSONResponse:
    settings = request.app.state.settings
    start = time.time()
    try:
        accepted = await accept_webhook(
            request.stream(),
            request.headers.get(SIGNATURE_HEADER),
            settings.app_key,
            request.app.state.dispatcher,
            settings.ingress_cap,
        )
    except CapExceeded as exc:
        _log_webhook("too_large", exc.cap)
        return JSONResponse({"status": "too large"}, status_code=413)
    except AuthenticationFailed:
        _log_webhook("signature_failed")
        return JSONResponse({"status": "invalid signature"}, status_code=400)
    except DispatchError:
        logger.exception("Failed to enqueue webhook batch")
        _log_webhook("dispatch_failed")
        return JSONResponse({"status": "error"}, status_code=500)

    _log_webhook("queued", accepted.size, accepted.handle.task_id)
    logger.debug("Webhook processed in %.1fms", (time.time() - start) * 1000)
    return JSONResponse(
        {"status": "received"},
        headers={CONTENT_KEY_HEADER: app_key_digest(settings.app_key)},
    )


def register_webhook_routes(app: FastAPI) -> None:
    """Register the webhook intake routes on the FastAPI app."""

    @app.post("/r")
    async def receive_webhook(request: Request):
        """Receive a signed webhook batch."""
        return await _handle_webhook(request)

    @app.post("/r/")
    async def receive_webhook_slash(request: Request):
        """Receive a signed webhook batch (trailing slash)."""
        return await _handle_webhook(request)

    logger.info("Webhook routes registered: /r")
