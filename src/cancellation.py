"""Caller-supplied cancellation for one agent turn or approval batch.

A token combines an optional deadline with an explicit ``cancel()`` switch.
Blocking calls ask it for ``timeout()`` so an in-flight HTTP request never
outlives the deadline, and backoff sleeps go through ``sleep()`` so they wake
up as soon as the token is cancelled.
"""

from __future__ import annotations

import threading
import time

from src.errors import CancellationError


class CancellationToken:
    """Thread-safe cancellation signal with an optional deadline."""

    def __init__(self, *, deadline_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = (
            time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        )

    @classmethod
    def none(cls) -> CancellationToken:
        """A token that is never cancelled and has no deadline."""
        return cls()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or ``None`` without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def timeout(self, cap: float) -> float:
        """Timeout for one blocking call: ``cap`` bounded by the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return cap
        return min(cap, remaining)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancellationError()

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``; raise ``CancellationError`` if cancelled meanwhile."""
        remaining = self.remaining()
        wait_for = seconds if remaining is None else min(seconds, remaining)
        if self._event.wait(wait_for):
            raise CancellationError()
        self.raise_if_cancelled()
