"""Value objects produced by the scrapers and the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import ScrapeCancelledError


@dataclass(frozen=True)
class InterestRate:
    """A single advertised rate for one product and term at one bank."""

    bank_code: str
    bank_name: str
    product_type: str
    term_months: int
    term_label: str
    rate: Decimal
    effective_date: date
    scraped_at: datetime
    currency: str = "VND"

    def to_dict(self) -> Dict:
        return {
            "bank_code": self.bank_code,
            "bank_name": self.bank_name,
            "product_type": self.product_type,
            "term_months": self.term_months,
            "term_label": self.term_label,
            "rate": float(self.rate),
            "currency": self.currency,
            "effective_date": self.effective_date.isoformat(),
            "scraped_at": self.scraped_at.isoformat(),
        }


@dataclass(frozen=True)
class ScrapeResult:
    """Outcome of scraping one bank during one run."""

    bank_code: str
    bank_name: str
    success: bool
    duration: float
    rates: Tuple[InterestRate, ...] = ()
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def rates_scraped(self) -> int:
        return len(self.rates)

    def to_dict(self) -> Dict:
        return {
            "bank_code": self.bank_code,
            "bank_name": self.bank_name,
            "success": self.success,
            "error": str(self.error) if self.error is not None else None,
            "duration_seconds": round(self.duration, 3),
            "rates_scraped": self.rates_scraped,
            "attempts": self.attempts,
        }


@dataclass
class ScrapeRun:
    """Ordered results of one ``scrape_all`` call.

    ``error`` is set only when the run was cancelled; ``results`` then holds
    the banks completed before the cancellation.
    """

    results: List[ScrapeResult] = field(default_factory=list)
    error: Optional[ScrapeCancelledError] = None

    def __iter__(self) -> Iterator[ScrapeResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, index: int) -> ScrapeResult:
        return self.results[index]

    @property
    def cancelled(self) -> bool:
        return self.error is not None

    @property
    def successful(self) -> List[ScrapeResult]:
        return [result for result in self.results if result.success]

    @property
    def failed(self) -> List[ScrapeResult]:
        return [result for result in self.results if not result.success]

    @property
    def total_rates(self) -> int:
        return sum(result.rates_scraped for result in self.successful)

    def rates(self) -> List[InterestRate]:
        """Flatten the rates of successful banks in run order."""

        collected: List[InterestRate] = []
        for result in self.successful:
            collected.extend(result.rates)
        return collected
