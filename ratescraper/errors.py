"""Error taxonomy shared by the orchestrator, the retry policy and sources."""

from __future__ import annotations

from typing import Optional


class RateScraperError(RuntimeError):
    """Base class for every error raised by the scraper package."""


class ScrapeError(RateScraperError):
    """A transient failure while fetching rates from a single bank."""

    def __init__(self, message: str = "", bank_code: str = "") -> None:
        self.bank_code = bank_code
        super().__init__(message or self.default_message)

    default_message = "scrape failed"

    def __str__(self) -> str:
        message = super().__str__()
        return f"[{self.bank_code}] {message}" if self.bank_code else message


class NetworkTimeoutError(ScrapeError):
    default_message = "network request timed out"


class BankUnavailableError(ScrapeError):
    default_message = "bank website unavailable"


class RateLimitedError(ScrapeError):
    default_message = "rate limited by bank server"

    def __init__(self, message: str = "", bank_code: str = "", retry_after: Optional[float] = None) -> None:
        super().__init__(message, bank_code)
        self.retry_after = retry_after


class InvalidResponseError(ScrapeError):
    default_message = "invalid response from bank"


class NoDataFoundError(ScrapeError):
    """The source answered but yielded zero rate records."""

    default_message = "no interest rate data found"


class ParseError(ScrapeError):
    """The response could not be understood; retrying yields the same result."""

    default_message = "failed to parse rate data"


class UnknownBankError(ValueError):
    """Raised when the caller references an unsupported bank."""


class ScrapeCancelledError(RateScraperError):
    """The caller cancelled the run before it completed."""

    def __init__(self, message: str = "scrape cancelled") -> None:
        super().__init__(message)


class DeadlineExceededError(ScrapeCancelledError):
    """The run's deadline passed before it completed."""

    def __init__(self, message: str = "scrape deadline exceeded") -> None:
        super().__init__(message)
