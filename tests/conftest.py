from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from ratescraper.context import ScrapeContext
from ratescraper.models import InterestRate


def make_rates(bank_code, count, product_type="deposit"):
    scraped_at = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
    return [
        InterestRate(
            bank_code=bank_code,
            bank_name=bank_code.upper(),
            product_type=product_type,
            term_months=months,
            term_label=f"{months} tháng",
            rate=Decimal("4.5"),
            effective_date=date(2024, 5, 1),
            scraped_at=scraped_at,
        )
        for months in range(1, count + 1)
    ]


class ScriptedSource:
    """Fake bank that plays back a list of outcomes, repeating the last one."""

    def __init__(self, bank_code, outcomes, bank_name=None, after_call=None):
        self.bank_code = bank_code
        self.bank_name = bank_name or bank_code.upper()
        self._outcomes = list(outcomes)
        self._after_call = after_call
        self.calls = 0

    def scrape_rates(self, ctx):
        outcome = self._outcomes[min(self.calls, len(self._outcomes) - 1)]
        self.calls += 1
        if self._after_call is not None:
            self._after_call(ctx)
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)


class RecordingContext(ScrapeContext):
    """Context whose sleeps return immediately and are recorded."""

    def __init__(self, on_sleep=None):
        super().__init__()
        self.sleeps = []
        self._on_sleep = on_sleep

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        if self._on_sleep is not None:
            self._on_sleep(self)
        return not self.done()


@pytest.fixture
def rates():
    return make_rates


@pytest.fixture
def scripted_source():
    return ScriptedSource


@pytest.fixture
def recording_context():
    return RecordingContext
