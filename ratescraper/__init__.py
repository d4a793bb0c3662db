"""Rate-limited interest rate scraping across many independent banks."""

from .context import ScrapeContext
from .errors import (
    DeadlineExceededError,
    NoDataFoundError,
    RateScraperError,
    ScrapeCancelledError,
    ScrapeError,
    UnknownBankError,
)
from .metrics import HealthStatus, MetricsCollector
from .models import InterestRate, ScrapeResult, ScrapeRun
from .orchestrator import Orchestrator, OrchestratorConfig
from .retry import RetryConfig, RetryPolicy

__all__ = [
    "DeadlineExceededError",
    "HealthStatus",
    "InterestRate",
    "MetricsCollector",
    "NoDataFoundError",
    "Orchestrator",
    "OrchestratorConfig",
    "RateScraperError",
    "RetryConfig",
    "RetryPolicy",
    "ScrapeCancelledError",
    "ScrapeContext",
    "ScrapeError",
    "ScrapeResult",
    "ScrapeRun",
    "UnknownBankError",
]
