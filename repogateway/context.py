"""Per-request context and process shutdown handling."""

from __future__ import annotations

import signal
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from repogateway.logs import get_logger


@dataclass(frozen=True)
class RequestContext:
    """Identifies a request and records when it was received."""

    request_id: uuid.UUID
    received_at: datetime
    started: float = field(repr=False, compare=False)

    @classmethod
    def new(cls) -> "RequestContext":
        """Create a context with a fresh random ID, starting now."""
        return cls(uuid.uuid4(), datetime.now(timezone.utc), time.monotonic())

    def elapsed(self) -> float:
        """Seconds passed since the request was received."""
        return time.monotonic() - self.started


def setup_close_handler(actions: Iterable[Callable[[], None]]) -> threading.Event:
    """Run ``actions`` on the first SIGINT or SIGTERM, then set the returned event.

    Must be called from the main thread.
    """
    actions = list(actions)
    done = threading.Event()
    triggered = False

    def _handle(signum, frame):
        nonlocal triggered
        if triggered:
            return
        triggered = True
        get_logger("close_handler").info("interrupt received")
        for action in actions:
            action()
        done.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handle)
    return done