"""Thread-safe scrape metrics and the health snapshot derived from them."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

# A bank failing this many runs in a row degrades overall health.
DEGRADED_CONSECUTIVE_FAILURES = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class SourceMetrics:
    """Cumulative counters for one bank."""

    bank_code: str
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    last_error: Optional[str] = None
    in_flight_since: Optional[datetime] = None
    last_duration: Optional[float] = None
    last_rates_scraped: int = 0
    succeeded_last_run: Optional[bool] = None


@dataclass(frozen=True)
class MetricsSummary:
    """Overview of scraping performance across runs."""

    runs_started: int
    runs_finished: int
    total_successful: int
    total_failed: int
    last_run_time: Optional[datetime]
    last_run_successes: int
    last_run_failures: int
    last_run_duration: float
    last_run_rates_scraped: int


@dataclass(frozen=True)
class SourceHealth:
    bank_code: str
    status: str
    last_success: Optional[datetime]
    last_failure: Optional[datetime]
    consecutive_failures: int
    last_error: Optional[str]
    in_flight: bool

    def to_dict(self) -> Dict:
        return {
            "status": self.status,
            "last_success": _iso(self.last_success),
            "last_failure": _iso(self.last_failure),
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
            "in_flight": self.in_flight,
        }


@dataclass(frozen=True)
class HealthStatus:
    """Read-only view of scraper health, computed on demand."""

    status: str
    message: str
    total_sources: int
    sources_with_success: int
    last_run_succeeded: int
    last_run_records: int
    runs_finished: int
    next_run_time: Optional[datetime] = None
    last_run_time: Optional[datetime] = None
    sources: Dict[str, SourceHealth] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status == HEALTHY

    @property
    def unhealthy_sources(self) -> List[str]:
        return [code for code, source in self.sources.items() if source.status != HEALTHY]

    def to_dict(self) -> Dict:
        return {
            "status": self.status,
            "healthy": self.healthy,
            "message": self.message,
            "total_banks": self.total_sources,
            "banks_with_success": self.sources_with_success,
            "last_run_succeeded": self.last_run_succeeded,
            "last_run_records": self.last_run_records,
            "runs_finished": self.runs_finished,
            "next_run_time": _iso(self.next_run_time),
            "last_run_time": _iso(self.last_run_time),
            "unhealthy_banks": self.unhealthy_sources,
            "banks": {code: source.to_dict() for code, source in self.sources.items()},
        }


class MetricsCollector:
    """Aggregates per-bank and global counters behind a single lock.

    The scrape loop is the only writer; health readers may run on any thread.
    Every public method holds the lock for the whole of its read or write.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._sources: Dict[str, SourceMetrics] = {}
        self._current_run: Dict[str, bool] = {}
        self._current_run_durations: Dict[str, float] = {}
        self._last_run: Dict[str, bool] = {}
        self._last_run_durations: Dict[str, float] = {}
        self._runs_started = 0
        self._runs_finished = 0
        self._total_successful = 0
        self._total_failed = 0
        self._run_records = 0
        self._last_run_records = 0
        self._last_run_time: Optional[datetime] = None

    def _source(self, bank_code: str) -> SourceMetrics:
        metrics = self._sources.get(bank_code)
        if metrics is None:
            metrics = SourceMetrics(bank_code=bank_code)
            self._sources[bank_code] = metrics
        return metrics

    def _finish_scrape(self, metrics: SourceMetrics, now: datetime) -> float:
        duration = 0.0
        if metrics.in_flight_since is not None:
            duration = (now - metrics.in_flight_since).total_seconds()
        metrics.in_flight_since = None
        metrics.last_duration = duration
        self._current_run_durations[metrics.bank_code] = duration
        return duration

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------
    def start_run(self) -> None:
        with self._lock:
            self._runs_started += 1
            # Stand-alone scrapes between runs do not belong to this run
            self._current_run = {}
            self._current_run_durations = {}
            self._run_records = 0

    def start_scrape(self, bank_code: str) -> None:
        with self._lock:
            self._source(bank_code).in_flight_since = self._clock()

    def abort_scrape(self, bank_code: str) -> None:
        """Clear the in-flight marker of a scrape that was cancelled."""

        with self._lock:
            metrics = self._sources.get(bank_code)
            if metrics is not None:
                metrics.in_flight_since = None

    def record_success(self, bank_code: str, rates_scraped: int) -> None:
        with self._lock:
            now = self._clock()
            metrics = self._source(bank_code)
            self._finish_scrape(metrics, now)
            metrics.success_count += 1
            metrics.consecutive_failures = 0
            metrics.last_success = now
            metrics.last_error = None
            metrics.last_rates_scraped = rates_scraped
            self._current_run[bank_code] = True
            self._total_successful += 1
            self._run_records += rates_scraped

    def record_failure(self, bank_code: str, err: Optional[BaseException]) -> None:
        with self._lock:
            now = self._clock()
            metrics = self._source(bank_code)
            self._finish_scrape(metrics, now)
            metrics.failure_count += 1
            metrics.consecutive_failures += 1
            metrics.last_failure = now
            metrics.last_rates_scraped = 0
            if err is not None:
                metrics.last_error = str(err)
            self._current_run[bank_code] = False
            self._total_failed += 1

    def finish_run(self) -> None:
        with self._lock:
            for bank_code, succeeded in self._current_run.items():
                self._source(bank_code).succeeded_last_run = succeeded
            # A cancelled run can leave a bank marked in flight
            for metrics in self._sources.values():
                metrics.in_flight_since = None
            self._runs_finished += 1
            self._last_run_time = self._clock()
            self._last_run = self._current_run
            self._last_run_durations = self._current_run_durations
            self._last_run_records = self._run_records
            self._current_run = {}
            self._current_run_durations = {}
            self._run_records = 0

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------
    def get_source_metrics(self) -> Dict[str, SourceMetrics]:
        """Return copies of the per-bank counters."""

        with self._lock:
            return {code: replace(metrics) for code, metrics in self._sources.items()}

    def get_summary(self) -> MetricsSummary:
        with self._lock:
            successes = sum(1 for ok in self._last_run.values() if ok)
            return MetricsSummary(
                runs_started=self._runs_started,
                runs_finished=self._runs_finished,
                total_successful=self._total_successful,
                total_failed=self._total_failed,
                last_run_time=self._last_run_time,
                last_run_successes=successes,
                last_run_failures=len(self._last_run) - successes,
                last_run_duration=sum(self._last_run_durations.values()),
                last_run_rates_scraped=self._last_run_records,
            )

    def get_health_status(self, next_run_time: Optional[datetime], source_count: int) -> HealthStatus:
        with self._lock:
            sources = {code: replace(metrics) for code, metrics in self._sources.items()}
            last_run = dict(self._last_run)
            runs_finished = self._runs_finished
            last_run_time = self._last_run_time
            last_run_records = self._last_run_records

        return build_health_status(
            sources=sources,
            last_run=last_run,
            runs_finished=runs_finished,
            last_run_time=last_run_time,
            last_run_records=last_run_records,
            next_run_time=next_run_time,
            source_count=source_count,
        )


def _source_status(metrics: SourceMetrics) -> str:
    if metrics.success_count == 0:
        return UNHEALTHY
    if metrics.consecutive_failures >= DEGRADED_CONSECUTIVE_FAILURES:
        return UNHEALTHY
    if metrics.consecutive_failures > 0:
        return DEGRADED
    return HEALTHY


def build_health_status(
    sources: Dict[str, SourceMetrics],
    last_run: Dict[str, bool],
    runs_finished: int,
    last_run_time: Optional[datetime],
    last_run_records: int,
    next_run_time: Optional[datetime],
    source_count: int,
) -> HealthStatus:
    """Classify overall health from a consistent copy of the metrics.

    * unhealthy: no bank has ever produced rates;
    * degraded: a bank has failed ``DEGRADED_CONSECUTIVE_FAILURES`` runs in a
      row, or the most recent finished run did not succeed for every
      configured bank;
    * healthy: otherwise.
    """

    with_success = sum(1 for metrics in sources.values() if metrics.success_count > 0)
    last_run_succeeded = sum(1 for ok in last_run.values() if ok)
    failing = [
        code
        for code, metrics in sources.items()
        if metrics.consecutive_failures >= DEGRADED_CONSECUTIVE_FAILURES
    ]

    if with_success == 0:
        status = UNHEALTHY
        message = "No successful scrapes recorded yet" if runs_finished == 0 else "No bank has returned rates"
    elif failing:
        status = DEGRADED
        message = f"Repeated failures for: {', '.join(sorted(failing))}"
    elif runs_finished > 0 and last_run_succeeded < source_count:
        status = DEGRADED
        message = f"Last run succeeded for {last_run_succeeded} of {source_count} banks"
    else:
        status = HEALTHY
        message = "Scraper is operating normally"

    source_health = {
        code: SourceHealth(
            bank_code=code,
            status=_source_status(metrics),
            last_success=metrics.last_success,
            last_failure=metrics.last_failure,
            consecutive_failures=metrics.consecutive_failures,
            last_error=metrics.last_error,
            in_flight=metrics.in_flight_since is not None,
        )
        for code, metrics in sources.items()
    }

    return HealthStatus(
        status=status,
        message=message,
        total_sources=source_count,
        sources_with_success=with_success,
        last_run_succeeded=last_run_succeeded,
        last_run_records=last_run_records,
        runs_finished=runs_finished,
        next_run_time=next_run_time,
        last_run_time=last_run_time,
        sources=source_health,
    )
