"""HMAC signatures used to authorise gateway requests."""

from __future__ import annotations

import hashlib
import hmac


def _as_bytes(value: bytes | bytearray | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def compute_hmac(message: bytes | str, key: str) -> bytes:
    """Return the hex-encoded HMAC-SHA1 of ``message`` under ``key``, as bytes."""
    digest = hmac.new(_as_bytes(key), _as_bytes(message), hashlib.sha1).hexdigest()
    return digest.encode("ascii")


def check_hmac(message: bytes | str, message_hmac: bytes | str, key: str) -> bool:
    """Return True if ``message_hmac`` is the hex HMAC of ``message`` under ``key``."""
    return hmac.compare_digest(_as_bytes(message_hmac), compute_hmac(message, key))