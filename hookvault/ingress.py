"""Ingress gateway: accept signed webhook batches and fan them out as tasks.

Security contract:
- The body is read once, through the size ceiling, while being signed
  and compressed at the same time; nothing is enqueued before the whole
  body has been read and its signature verified
- Signature failure -> AuthenticationFailed, no side effects
- Over-ceiling body -> CapExceeded, no side effects
- A batch that cannot be decoded is abandoned (logged), never retried
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass

from hookvault.config import INGRESS_CAP
from hookvault.errors import AuthenticationFailed, CodecError, MalformedInput
from hookvault.integrity import new_signer, verify_signature
from hookvault.models import decode_batch
from hookvault.streams import CountingWriter, MultiWriter, Packer, bounded_chunks, unpack
from hookvault.tasks.dispatcher import (
    TaskDispatcher,
    TaskHandle,
    process_hook_later,
    save_resource_later,
)

logger = logging.getLogger(__name__)


@dataclass
class SignedBody:
    """Result of the single read pass over a webhook body."""

    payload: bytes  # gzip-compressed body
    signature: str  # hex HMAC-SHA256 of the raw body
    size: int  # raw body length


@dataclass
class AcceptedBatch:
    """Receipt for a verified and enqueued webhook batch."""

    handle: TaskHandle
    size: int
    packed_size: int


async def read_signed_body(
    chunks: AsyncIterable[bytes], app_key: str, cap: int = INGRESS_CAP
) -> SignedBody:
    """Cap, sign and compress a body in one streaming pass.

    Raises:
        CapExceeded: the body is larger than ``cap``
    """
    signer = new_signer(app_key)
    packer = Packer()
    counter = CountingWriter(packer)
    fanout = MultiWriter(signer, counter)
    async for chunk in bounded_chunks(chunks, cap):
        fanout.write(chunk)
    return SignedBody(payload=packer.close(), signature=signer.hexdigest(), size=counter.written)


async def accept_webhook(
    chunks: AsyncIterable[bytes],
    signature_header: str | None,
    app_key: str,
    dispatcher: TaskDispatcher,
    cap: int = INGRESS_CAP,
) -> AcceptedBatch:
    """Verify a webhook delivery and enqueue its batch for processing.

    Raises:
        CapExceeded: body over ``cap``
        AuthenticationFailed: signature missing, malformed or wrong
        DispatchError: the process-hook task could not be enqueued
    """
    body = await read_signed_body(chunks, app_key, cap)
    if not verify_signature(body.signature, signature_header):
        raise AuthenticationFailed("webhook signature mismatch")
    handle = await asyncio.to_thread(process_hook_later, dispatcher, body.payload)
    logger.debug(
        "Webhook batch accepted: %d bytes (%d packed) -> task %s",
        body.size, len(body.payload), handle.task_id,
    )
    return AcceptedBatch(handle=handle, size=body.size, packed_size=len(body.payload))


def process_hook(dispatcher: TaskDispatcher, payload: bytes) -> int:
    """Unpack a webhook batch and enqueue one save-resource task per event.

    Returns the number of events enqueued; 0 when the batch was abandoned.

    Raises:
        DispatchError: an event could not be enqueued; the whole batch is
            redelivered, so events enqueued before the failure repeat
    """
    try:
        raw = unpack(io.BytesIO(payload)).getvalue()
        events = decode_batch(raw)
    except (CodecError, MalformedInput) as exc:
        logger.error("abandon process_hook, undecodable batch: %s", exc)
        return 0
    for event in events:
        save_resource_later(dispatcher, event)
    logger.info("Batch of %d events queued for archiving", len(events))
    return len(events)
