"""
Base interface for bank rate scrapers
"""
from __future__ import annotations

import logging
import random
import re
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Protocol, Tuple, runtime_checkable

import requests
from bs4 import BeautifulSoup

from ..context import ScrapeContext
from ..errors import (
    BankUnavailableError,
    InvalidResponseError,
    NetworkTimeoutError,
    RateLimitedError,
)
from ..models import InterestRate

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Rotated per request so the cadence looks less like a bot
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
]

ACCEPT_LANGUAGE = "vi-VN,vi;q=0.9,en-US;q=0.8,en;q=0.7"


@runtime_checkable
class RateSource(Protocol):
    """Anything the orchestrator can poll for rates."""

    @property
    def bank_code(self) -> str: ...

    @property
    def bank_name(self) -> str: ...

    def scrape_rates(self, ctx: ScrapeContext) -> List[InterestRate]: ...


class BankScraper(ABC):
    """Abstract base class for bank interest rate scrapers"""

    def __init__(self, bank_code: str, bank_name: str, rate_url: str = "",
                 session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self.bank_code = bank_code
        self.bank_name = bank_name
        self.rate_url = rate_url
        self.timeout = timeout
        self.session = session

    def bind_session(self, session: requests.Session, timeout: Optional[float] = None) -> None:
        """Share the orchestrator's pooled session instead of owning one."""
        self.session = session
        if timeout is not None:
            self.timeout = timeout

    @abstractmethod
    def scrape_rates(self, ctx: ScrapeContext) -> List[InterestRate]:
        """
        Scrape interest rates from the bank

        Args:
            ctx: Cancellation context; bounds the network timeout

        Returns:
            List[InterestRate]: Rates found, possibly empty

        Raises:
            ScrapeError: If the bank could not be reached or parsed
        """

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    def _get(self, url: str, ctx: ScrapeContext, accept: str) -> requests.Response:
        ctx.raise_if_done()
        if self.session is None:
            self.session = requests.Session()

        headers = {
            "User-Agent": random.choice(USER_AGENTS),
            "Accept": accept,
            "Accept-Language": ACCEPT_LANGUAGE,
        }
        timeout = ctx.timeout(self.timeout)

        try:
            logger.info(f"Fetching {self.bank_name}: {url}")
            response = self.session.get(url, headers=headers, timeout=timeout)
        except requests.Timeout as exc:
            raise NetworkTimeoutError(f"timed out after {timeout:.0f}s: {url}", self.bank_code) from exc
        except requests.RequestException as exc:
            raise BankUnavailableError(f"request failed: {exc}", self.bank_code) from exc

        if response.status_code == 429:
            raise RateLimitedError(
                f"HTTP 429 from {url}",
                self.bank_code,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.status_code >= 500:
            raise BankUnavailableError(f"HTTP {response.status_code} from {url}", self.bank_code)
        if response.status_code != 200:
            raise InvalidResponseError(f"unexpected status code {response.status_code}", self.bank_code)

        return response

    def fetch_page(self, url: str, ctx: ScrapeContext) -> BeautifulSoup:
        """Fetch an HTML page and return the parsed document"""
        response = self._get(
            url, ctx, "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
        )
        return BeautifulSoup(response.content, "html.parser")

    def fetch_json(self, url: str, ctx: ScrapeContext) -> Any:
        """Fetch a JSON document"""
        response = self._get(url, ctx, "application/json")
        try:
            return response.json()
        except ValueError as exc:
            raise InvalidResponseError(f"response is not valid JSON: {url}", self.bank_code) from exc

    # ------------------------------------------------------------------
    # Parsing helpers
    # ------------------------------------------------------------------
    def create_rate(self, product_type: str, term_months: int, term_label: str, rate,
                    effective_date: Optional[date] = None,
                    scraped_at: Optional[datetime] = None,
                    currency: str = "VND") -> InterestRate:
        """Build a rate entry stamped with this bank's identity"""
        now = scraped_at or datetime.now(timezone.utc)
        return InterestRate(
            bank_code=self.bank_code,
            bank_name=self.bank_name,
            product_type=product_type,
            term_months=term_months,
            term_label=term_label,
            rate=Decimal(str(rate)),
            effective_date=effective_date or now.date().replace(day=1),
            scraped_at=now,
            currency=currency,
        )


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


_NUMBER = re.compile(r"[\d.]+")


def parse_rate_from_string(text: str) -> Decimal:
    """
    Parse a percentage such as ``"4,7 %"`` into a Decimal.

    Raises:
        ValueError: If no number is present or it falls outside 0-30%
    """
    cleaned = text.strip().replace("%", "").replace(",", ".").replace(" ", "")
    match = _NUMBER.search(cleaned)
    if not match:
        raise ValueError(f"no number found in: {text!r}")

    try:
        rate = Decimal(match.group(0).strip("."))
    except InvalidOperation as exc:
        raise ValueError(f"malformed number in: {text!r}") from exc
    if rate < 0 or rate > 30:
        raise ValueError(f"rate out of range: {rate}")
    return rate


_TERM_PATTERNS = [
    (re.compile(r"(\d+)\s*(tháng|thang|months?)"), 1),
    (re.compile(r"(\d+)\s*(năm|nam|years?)"), 12),
    (re.compile(r"(\d+)\s*(tuần|tuan|weeks?)"), 0),
    (re.compile(r"(\d+)\s*(ngày|ngay|days?)"), 0),
]
_NO_TERM = re.compile(r"không\s*kỳ\s*hạn|kkh")
_BARE_NUMBER = re.compile(r"(\d+)")


def parse_term_months(text: str) -> Tuple[int, str]:
    """
    Parse a deposit or loan term into ``(months, label)``.

    Terms shorter than a month (weeks, days, no fixed term) map to 0 months.

    Raises:
        ValueError: If the text contains no recognisable term
    """
    s = text.strip().lower()

    if _NO_TERM.search(s):
        return 0, "Không kỳ hạn"

    for pattern, multiply in _TERM_PATTERNS:
        match = pattern.search(s)
        if not match:
            continue
        num = int(match.group(1))
        if multiply == 0:
            if "tuần" in s or "tuan" in s or "week" in s:
                return 0, f"{num} tuần"
            return 0, f"{num} ngày"
        if multiply == 12:
            return num * 12, f"{num} năm"
        return num, f"{num} tháng"

    match = _BARE_NUMBER.search(s)
    if match:
        num = int(match.group(1))
        return num, f"{num} tháng"

    raise ValueError(f"could not parse term: {text!r}")
