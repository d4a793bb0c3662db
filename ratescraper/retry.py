"""Bounded retry with exponential backoff for a single bank scrape."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from .context import ScrapeContext
from .errors import ParseError, RateLimitedError, ScrapeCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behaviour."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds before the second attempt
    backoff_multiplier: float = 2.0
    max_delay: Optional[float] = 30.0  # cap on a single backoff, None for no cap
    jitter: float = 0.25  # up to this fraction of the backoff is added at random

    # Retry on these exception types
    retry_exceptions: Tuple[Type[BaseException], ...] = (Exception,)

    # Never retry these (takes precedence)
    fatal_exceptions: Tuple[Type[BaseException], ...] = (ParseError,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            self.max_attempts = 1
        if self.backoff_multiplier < 1.0:
            self.backoff_multiplier = 1.0
        if self.base_delay < 0:
            self.base_delay = 0.0
        if self.jitter < 0:
            self.jitter = 0.0

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, ScrapeCancelledError):
            return False
        if isinstance(exc, self.fatal_exceptions):
            return False
        return isinstance(exc, self.retry_exceptions)


class RetryPolicy:
    """Run an operation up to ``max_attempts`` times.

    The last exception is re-raised unchanged once attempts are exhausted so
    callers can still classify the original cause. A cancelled context stops
    the loop with the context's own cancellation error.
    """

    def __init__(self, config: Optional[RetryConfig] = None, rng: Optional[random.Random] = None) -> None:
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()

    def backoff_delay(self, attempt_index: int) -> float:
        """Delay after the failed attempt ``attempt_index`` (0-based), before jitter."""

        delay = self.config.base_delay * (self.config.backoff_multiplier ** attempt_index)
        if self.config.max_delay is not None:
            delay = min(delay, self.config.max_delay)
        return delay

    def _wait_time(self, attempt_index: int, exc: BaseException) -> float:
        retry_after = getattr(exc, "retry_after", None)
        if isinstance(exc, RateLimitedError) and retry_after:
            if self.config.max_delay is not None:
                return min(float(retry_after), self.config.max_delay)
            return float(retry_after)

        delay = self.backoff_delay(attempt_index)
        return delay + delay * self.config.jitter * self._rng.random()

    def execute(
        self,
        operation: Callable[[], T],
        ctx: Optional[ScrapeContext] = None,
        label: str = "operation",
    ) -> T:
        ctx = ctx or ScrapeContext()
        max_attempts = self.config.max_attempts
        last_exc: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            ctx.raise_if_done()

            try:
                return operation()
            except Exception as exc:
                if not self.config.is_retryable(exc):
                    raise
                last_exc = exc
                logger.warning(
                    "%s attempt %d/%d failed: %s", label, attempt, max_attempts, exc
                )

            if attempt < max_attempts:
                wait_time = self._wait_time(attempt - 1, last_exc)
                logger.debug("%s retrying in %.2fs", label, wait_time)
                if not ctx.sleep(wait_time):
                    ctx.raise_if_done()

        assert last_exc is not None
        logger.error("%s failed after %d attempts: %s", label, max_attempts, last_exc)
        raise last_exc
