"""Sequential, rate-limited scraping across every configured bank."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter

from .banks import get_bank_scraper
from .banks.base import RateSource
from .config import Config
from .context import ScrapeContext
from .errors import NoDataFoundError, ScrapeCancelledError, UnknownBankError
from .metrics import HealthStatus, MetricsCollector
from .models import InterestRate, ScrapeResult, ScrapeRun
from .retry import RetryConfig, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorConfig:
    """Cadence and retry settings for the orchestrator (seconds)."""

    min_delay: float = 2.0
    max_delay: float = 5.0
    request_timeout: float = 60.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)

    @classmethod
    def default(cls) -> "OrchestratorConfig":
        return cls()

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Build a config from :class:`Config` environment settings."""

        Config.validate()
        return cls(
            min_delay=Config.MIN_DELAY,
            max_delay=Config.MAX_DELAY,
            request_timeout=Config.REQUEST_TIMEOUT,
            retry_config=RetryConfig(
                max_attempts=Config.RETRY_MAX_ATTEMPTS,
                base_delay=Config.RETRY_BASE_DELAY,
                backoff_multiplier=Config.RETRY_MULTIPLIER,
                max_delay=Config.RETRY_MAX_DELAY,
            ),
        )


def _pooled_session() -> requests.Session:
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=10, pool_maxsize=2)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class Orchestrator:
    """Coordinates scraping from multiple banks, one bank at a time.

    Banks are polled in configuration order with a random pause between them
    so the request cadence does not look automated. A failing bank never stops
    the run; only cancellation of the caller's context does, and the results
    gathered up to that point are still returned.
    """

    def __init__(
        self,
        sources: Sequence[RateSource],
        config: Optional[OrchestratorConfig] = None,
        rng: Optional[random.Random] = None,
        session: Optional[requests.Session] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._config = config or OrchestratorConfig.default()
        self._rng = rng or random.Random()
        self._retry = RetryPolicy(self._config.retry_config, rng=self._rng)
        self._metrics = metrics or MetricsCollector()
        self._session = session or _pooled_session()
        self._sources = tuple(sources)

        seen = set()
        for source in self._sources:
            if source.bank_code in seen:
                raise ValueError(f"Duplicate bank code configured: {source.bank_code}")
            seen.add(source.bank_code)

            bind = getattr(source, "bind_session", None)
            if callable(bind):
                bind(self._session, self._config.request_timeout)

    @classmethod
    def from_registry(cls, bank_codes: Iterable[str], **kwargs) -> "Orchestrator":
        """Build an orchestrator from registered bank codes, keeping their order."""

        return cls([get_bank_scraper(code) for code in bank_codes], **kwargs)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def get_bank_count(self) -> int:
        return len(self._sources)

    def list_bank_codes(self) -> List[str]:
        return [source.bank_code for source in self._sources]

    def scrape_all(self, ctx: Optional[ScrapeContext] = None) -> ScrapeRun:
        """Scrape every bank in order, pausing between banks."""

        ctx = ctx or ScrapeContext()
        total = len(self._sources)
        run = ScrapeRun()

        logger.info("Starting scrape of all banks (bank_count=%d)", total)
        self._metrics.start_run()

        for index, source in enumerate(self._sources):
            if ctx.done():
                return self._cancel_run(run, ctx, total)

            try:
                result = self._scrape_source(source, ctx)
            except ScrapeCancelledError:
                return self._cancel_run(run, ctx, total)
            run.results.append(result)

            if index < total - 1:
                delay = self.random_delay()
                logger.debug(
                    "Waiting %.2fs before next bank %s", delay, self._sources[index + 1].bank_code
                )
                if not ctx.sleep(delay):
                    return self._cancel_run(run, ctx, total)

        self._metrics.finish_run()

        logger.info(
            "Scrape completed (successful=%d, failed=%d, total_rates=%d)",
            len(run.successful),
            len(run.failed),
            run.total_rates,
        )
        return run

    def scrape_bank(self, bank_code: str, ctx: Optional[ScrapeContext] = None) -> ScrapeResult:
        """Scrape a single bank immediately, without the inter-bank pause."""

        for source in self._sources:
            if source.bank_code == bank_code:
                return self._scrape_source(source, ctx or ScrapeContext())

        raise UnknownBankError(
            f"No scraper configured for bank: {bank_code}. Configured banks: {self.list_bank_codes()}"
        )

    def get_all_rates(self, ctx: Optional[ScrapeContext] = None) -> List[InterestRate]:
        """Return the rates of every bank that succeeded, in bank order.

        Raises:
            ScrapeCancelledError: If the run was cancelled before finishing.
        """

        run = self.scrape_all(ctx)
        if run.error is not None:
            raise run.error
        return run.rates()

    def get_health_status(self, next_run_time: Optional[datetime] = None) -> HealthStatus:
        return self._metrics.get_health_status(next_run_time, len(self._sources))

    def random_delay(self) -> float:
        """A pause uniformly drawn from ``[min_delay, max_delay)``."""

        low = self._config.min_delay
        high = self._config.max_delay
        if high <= low:
            return low
        return low + self._rng.random() * (high - low)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _cancel_run(self, run: ScrapeRun, ctx: ScrapeContext, total: int) -> ScrapeRun:
        run.error = ctx.error() or ScrapeCancelledError()
        logger.warning("Scrape cancelled (completed=%d, total=%d): %s", len(run), total, run.error)
        self._metrics.finish_run()
        return run

    def _scrape_source(self, source: RateSource, ctx: ScrapeContext) -> ScrapeResult:
        bank_code = source.bank_code
        bank_name = source.bank_name
        attempts = 0

        def fetch() -> List[InterestRate]:
            nonlocal attempts
            attempts += 1
            rates = source.scrape_rates(ctx)
            if not rates:
                raise NoDataFoundError(bank_code=bank_code)
            return list(rates)

        logger.info("Scraping bank %s (%s)", bank_code, bank_name)
        self._metrics.start_scrape(bank_code)
        started = time.monotonic()

        try:
            rates = self._retry.execute(fetch, ctx, label=bank_code)
        except ScrapeCancelledError:
            logger.warning("Scrape of bank %s interrupted by cancellation", bank_code)
            self._metrics.abort_scrape(bank_code)
            raise
        except Exception as exc:
            duration = time.monotonic() - started
            self._metrics.record_failure(bank_code, exc)
            logger.error("Failed to scrape bank %s after %.2fs: %s", bank_code, duration, exc)
            return ScrapeResult(
                bank_code=bank_code,
                bank_name=bank_name,
                success=False,
                duration=duration,
                error=exc,
                attempts=attempts,
            )

        duration = time.monotonic() - started
        self._metrics.record_success(bank_code, len(rates))
        logger.info("Successfully scraped bank %s (rates=%d, %.2fs)", bank_code, len(rates), duration)
        return ScrapeResult(
            bank_code=bank_code,
            bank_name=bank_name,
            success=True,
            duration=duration,
            rates=tuple(rates),
            attempts=attempts,
        )
