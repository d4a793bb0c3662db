"""Cooperative cancellation signal threaded through every suspension point."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from .errors import DeadlineExceededError, ScrapeCancelledError


class ScrapeContext:
    """Cancellation token with an optional deadline.

    The scrape loop, the retry backoff and the sources all consult the same
    context. Nothing raises on its own when the context is cancelled; each
    suspension point checks :meth:`done` or uses :meth:`sleep` and decides how
    to unwind.
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = threading.Event()
        self._deadline = deadline
        self._clock = clock
        self._reason: Optional[ScrapeCancelledError] = None
        self._lock = threading.Lock()

    @classmethod
    def with_timeout(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> "ScrapeContext":
        """Return a context that expires ``seconds`` from now."""

        return cls(deadline=clock() + seconds, clock=clock)

    # ------------------------------------------------------------------
    # Signalling
    # ------------------------------------------------------------------
    def cancel(self, reason: Optional[ScrapeCancelledError] = None) -> None:
        with self._lock:
            if self._reason is None:
                self._reason = reason or ScrapeCancelledError()
        self._event.set()

    def done(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel(DeadlineExceededError())
            return True
        return False

    def error(self) -> Optional[ScrapeCancelledError]:
        """Return the cancellation error, or ``None`` while still active."""

        if not self.done():
            return None
        with self._lock:
            return self._reason

    def raise_if_done(self) -> None:
        err = self.error()
        if err is not None:
            raise err

    # ------------------------------------------------------------------
    # Time budget
    # ------------------------------------------------------------------
    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, ``None`` when unbounded."""

        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def timeout(self, default: float) -> float:
        """Bound a per-call network timeout by the remaining deadline."""

        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)

    def sleep(self, seconds: float) -> bool:
        """Wait ``seconds`` unless cancelled first.

        Returns ``True`` when the full delay elapsed and ``False`` when the
        wait was cut short by cancellation or the deadline.
        """

        if self.done():
            return False
        if seconds <= 0:
            return True

        wait_for = seconds
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            wait_for = remaining

        if self._event.wait(wait_for):
            return False
        return not self.done()

