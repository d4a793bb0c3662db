"""
Bank rate sources and the registry the orchestrator is built from
"""
import json
import logging
from pathlib import Path
from typing import Callable, Dict, List, Union

from ..errors import UnknownBankError
from .base import BankScraper, RateSource, parse_rate_from_string, parse_term_months
from .html_table import HtmlTableScraper

logger = logging.getLogger(__name__)

__all__ = [
    'AVAILABLE_BANKS',
    'BankScraper',
    'HtmlTableScraper',
    'RateSource',
    'get_bank_scraper',
    'load_sources_file',
    'parse_rate_from_string',
    'parse_term_months',
    'register_bank',
]

# Registry of all available banks, in registration order
AVAILABLE_BANKS: Dict[str, Callable[[], RateSource]] = {}


def register_bank(bank_code: str, factory: Callable[[], RateSource]) -> None:
    """
    Register a factory for a bank source

    Args:
        bank_code: Stable identifier, unique across banks
        factory: Zero-argument callable returning a fresh source
    """
    code = bank_code.strip().lower()
    if code in AVAILABLE_BANKS:
        logger.info("Replacing registered bank %s", code)
    AVAILABLE_BANKS[code] = factory


def get_bank_scraper(bank_code: str) -> RateSource:
    """
    Get a bank source instance by bank code

    Raises:
        UnknownBankError: If bank_code is not registered
    """
    code = bank_code.strip().lower()
    if code not in AVAILABLE_BANKS:
        raise UnknownBankError(
            f"Unknown bank: {bank_code}. Available banks: {list(AVAILABLE_BANKS.keys())}"
        )
    return AVAILABLE_BANKS[code]()


def load_sources_file(path: Union[str, Path]) -> List[str]:
    """
    Register table-driven banks described in a JSON file.

    The file holds a list of objects with ``bank_code``, ``bank_name`` and
    ``rate_url`` plus any optional :class:`HtmlTableScraper` settings.

    Returns:
        List[str]: The registered bank codes, in file order
    """
    entries = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(entries, list):
        raise ValueError(f"{path}: expected a list of bank definitions")

    codes = []
    for entry in entries:
        for key in ("bank_code", "bank_name", "rate_url"):
            if not entry.get(key):
                raise ValueError(f"{path}: bank definition missing '{key}': {entry}")

        settings = dict(entry)
        register_bank(settings["bank_code"], lambda settings=settings: HtmlTableScraper(**settings))
        codes.append(settings["bank_code"].strip().lower())

    logger.info("Loaded %d bank definitions from %s", len(codes), path)
    return codes
