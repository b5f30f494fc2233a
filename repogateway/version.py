"""API protocol versions understood by the gateway."""

from __future__ import annotations

API_PROTOCOL_VERSION = 3
"""Latest API protocol version understood by the server."""

MIN_API_PROTOCOL_VERSION = 2
"""Oldest API protocol version understood by the server."""

API_ROOT = "/api/v1"
"""Root path of the HTTP API."""


def max_api_version(request_version: int) -> int:
    """Return the smaller of the requested and the latest supported version."""
    return min(request_version, API_PROTOCOL_VERSION)