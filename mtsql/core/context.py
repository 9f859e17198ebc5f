"""
Execution context for storage calls.

A Context carries a cancellation flag and an optional deadline. Every
storage operation accepts one; the database handle refuses to start a
statement on a done context and aborts a running statement once the
context becomes done.

Example:
    ctx = with_timeout(0.5)
    storage.get(key, ctx)      # raises ContextCancelledError after 0.5s
"""

import threading
import time
from typing import Optional

DEADLINE_EXCEEDED = "context deadline exceeded"
CANCELED = "context canceled"


class Context:
    """
    Cancellation and deadline for one or more storage calls.
    
    Attributes:
        deadline: time.monotonic() value after which the context is done,
            or None for no deadline
    """

    def __init__(self, timeout: Optional[float] = None):
        if timeout is not None and timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {timeout}")
        self._cancelled = threading.Event()
        self.deadline: Optional[float] = (
            time.monotonic() + timeout if timeout is not None else None
        )

    def cancel(self) -> None:
        """Mark the context cancelled. Safe to call from any thread."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def done(self) -> bool:
        """True once cancelled or past the deadline."""
        return self.cancelled or self.expired

    def err(self) -> Optional[str]:
        """Reason the context is done, or None while still live."""
        if self.cancelled:
            return CANCELED
        if self.expired:
            return DEADLINE_EXCEEDED
        return None

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (never negative)."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


def background() -> Context:
    """Context that is never cancelled and has no deadline."""
    return Context()


def with_timeout(seconds: float) -> Context:
    """Context that expires after `seconds`."""
    return Context(timeout=seconds)
