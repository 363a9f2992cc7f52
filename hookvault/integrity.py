"""Integrity layer: inbound HMAC signatures and fetched-content digests.

Security contract:
- Signatures are HMAC-SHA256 over the raw request body, hex-encoded
- Comparison uses hmac.compare_digest() (constant-time)
- A missing or malformed signature is indistinguishable from a mismatch
- Content digests (SHA-1) are integrity records, not security controls
"""

from __future__ import annotations

import hashlib
import hmac
import string

_HEX_DIGITS = frozenset(string.hexdigits)


class HashWriter:
    """Adapt a hashlib/hmac object to the writer interface."""

    def __init__(self, hash_obj) -> None:
        self.hash = hash_obj

    def write(self, data: bytes) -> int:
        self.hash.update(data)
        return len(data)

    def hexdigest(self) -> str:
        return self.hash.hexdigest()


def new_signer(app_key: str) -> HashWriter:
    """HMAC-SHA256 writer keyed with the shared application key."""
    return HashWriter(hmac.new(app_key.encode("utf-8"), digestmod=hashlib.sha256))


def new_content_hash() -> HashWriter:
    """Unkeyed digest writer for fetched resource bytes."""
    return HashWriter(hashlib.sha1())


def sign(app_key: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of ``body``; what a webhook sender puts in X-Signature."""
    return hmac.new(app_key.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(computed_hex: str, supplied: str | None) -> bool:
    """Check a supplied hex signature against the computed one.

    Args:
        computed_hex: Hex digest computed over the received body
        supplied: Value of the X-Signature header (may be None)

    Returns:
        True only if the supplied value is well-formed hex equal to the
        computed digest, ignoring hex letter case
    """
    if not supplied:
        return False
    supplied = supplied.strip().lower()
    if len(supplied) != len(computed_hex) or not set(supplied) <= _HEX_DIGITS:
        return False
    return hmac.compare_digest(computed_hex.lower(), supplied)


def app_key_digest(app_key: str) -> str:
    """SHA-256 hex of the application key, echoed back to webhook senders."""
    return hashlib.sha256(app_key.encode("utf-8")).hexdigest()
