"""Error taxonomy for the ingest / archive / purge pipeline.

Each family maps to one handling rule:
- AuthenticationFailed: reject the request, no side effects
- MalformedInput: log and abandon, a retry cannot fix the payload
- ResourceLimitExceeded: abandon (accepted data loss at archive time)
- Transient (DispatchError, StoreError, FetchError, InvalidResource):
  fail the handler so the dispatcher retries with backoff
- ConfigurationError: fatal at startup
"""

from __future__ import annotations


class HookVaultError(Exception):
    """Base exception for all hookvault errors."""


# ── Authentication ────────────────────────────────────────────────────────


class AuthenticationFailed(HookVaultError):
    """Webhook signature missing, malformed or mismatched."""


# ── Malformed input ───────────────────────────────────────────────────────


class MalformedInput(HookVaultError):
    """Payload can never be processed, no matter how often it is retried."""


class UnsupportedIdentifier(MalformedInput):
    """Event identifier is not an integer, float or string."""

    def __init__(self, value: object) -> None:
        super().__init__(
            f"Unexpected type for event identifier: {type(value).__name__}"
        )
        self.value = value


class CursorDecodeError(MalformedInput):
    """Purge cursor string could not be decoded."""


# ── Resource limits ───────────────────────────────────────────────────────


class ResourceLimitExceeded(HookVaultError):
    """A size bound was hit."""


class CapExceeded(ResourceLimitExceeded):
    """Bounded reader read past its ceiling.

    ``data`` holds the bytes returned by the read that crossed the ceiling,
    so callers can decide whether partial output is salvageable.
    """

    def __init__(self, cap: int, data: bytes = b"") -> None:
        super().__init__(f"data read cap of {cap} bytes was reached")
        self.cap = cap
        self.data = data


class BlobTooLarge(ResourceLimitExceeded):
    """Compressed payload exceeds the store's maximum blob size."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"compressed payload {size} bytes exceeds max {limit} bytes")
        self.size = size
        self.limit = limit


# ── Codec ─────────────────────────────────────────────────────────────────


class CodecError(HookVaultError):
    """Compressed data is malformed."""


# ── Transient failures (retried by the dispatcher) ────────────────────────


class DispatchError(HookVaultError):
    """A task could not be enqueued."""


class StoreError(HookVaultError):
    """Archive store read, write or delete failed."""


class FetchError(HookVaultError):
    """Fetching the referenced resource failed."""


class InvalidResource(HookVaultError):
    """Fetched resource is not a well-formed JSON object."""


# ── Configuration ─────────────────────────────────────────────────────────


class ConfigurationError(HookVaultError):
    """Required configuration is missing; the process must not start."""
