"""
Generic scraper for banks that publish rates as a plain HTML table
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from typing import List, Optional

from bs4 import BeautifulSoup

from ..context import ScrapeContext
from ..errors import ParseError
from ..models import InterestRate
from .base import BankScraper, parse_rate_from_string, parse_term_months

logger = logging.getLogger(__name__)

_DATE_PATTERN = re.compile(r"(\d{1,2})[./-](\d{1,2})[./-](\d{4})")


class HtmlTableScraper(BankScraper):
    """Scraper for a rate table with one term column and one rate column"""

    def __init__(self, bank_code: str, bank_name: str, rate_url: str,
                 row_selector: str = "table tr",
                 term_column: int = 0,
                 rate_column: int = 1,
                 product_type: str = "deposit",
                 currency: str = "VND",
                 date_selector: Optional[str] = None,
                 **kwargs):
        super().__init__(bank_code, bank_name, rate_url, **kwargs)
        self.row_selector = row_selector
        self.term_column = term_column
        self.rate_column = rate_column
        self.product_type = product_type
        self.currency = currency
        self.date_selector = date_selector

    def scrape_rates(self, ctx: ScrapeContext) -> List[InterestRate]:
        soup = self.fetch_page(self.rate_url, ctx)
        return self.parse_rates(soup)

    def parse_effective_date(self, soup: BeautifulSoup) -> Optional[date]:
        """Find a DD/MM/YYYY date in the configured element, if any"""
        if not self.date_selector:
            return None

        element = soup.select_one(self.date_selector)
        if element is None:
            return None

        match = _DATE_PATTERN.search(element.get_text(" ", strip=True))
        if not match:
            return None

        day, month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None

    def parse_rates(self, soup: BeautifulSoup) -> List[InterestRate]:
        """Turn table rows into rate records, skipping headers and malformed rows"""
        rows = soup.select(self.row_selector)
        if not rows:
            raise ParseError(f"no rows matched {self.row_selector!r}", self.bank_code)

        now = datetime.now(timezone.utc)
        effective_date = self.parse_effective_date(soup)
        needed = max(self.term_column, self.rate_column) + 1
        rates: List[InterestRate] = []

        for row in rows:
            cells = [cell.get_text(" ", strip=True) for cell in row.find_all(["td", "th"])]
            if len(cells) < needed:
                continue

            try:
                term_months, term_label = parse_term_months(cells[self.term_column])
                rate = parse_rate_from_string(cells[self.rate_column])
            except ValueError as e:
                logger.debug(f"{self.bank_name}: skipping row {cells}: {e}")
                continue

            rates.append(self.create_rate(
                self.product_type,
                term_months,
                term_label,
                rate,
                effective_date=effective_date,
                scraped_at=now,
                currency=self.currency,
            ))

        logger.info(f"{self.bank_name}: parsed {len(rates)} rates from {len(rows)} rows")
        return rates
