"""Command-line runner: scrape every configured bank once and report."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from .banks import AVAILABLE_BANKS, load_sources_file
from .config import Config
from .context import ScrapeContext
from .errors import UnknownBankError
from .orchestrator import Orchestrator, OrchestratorConfig

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="ratescraper", add_help=True)
    p.add_argument(
        "--sources",
        default=Config.SOURCES_FILE,
        help="JSON file of table-driven bank definitions (default: $SCRAPER_SOURCES_FILE).",
    )
    p.add_argument(
        "--banks",
        default=",".join(Config.BANKS),
        help="Comma-separated bank codes to scrape, in order (default: every registered bank).",
    )
    p.add_argument(
        "--timeout",
        type=float,
        default=Config.RUN_TIMEOUT,
        help="Abort the run after this many seconds; completed banks are still reported.",
    )
    p.add_argument("--output", help="Write the successful banks' rates to this JSON file.")
    p.add_argument("--health", action="store_true", help="Print the health snapshot as JSON after the run.")
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if (args.verbose or Config.DEBUG) else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.sources:
        load_sources_file(Path(args.sources).expanduser())

    bank_codes = [code.strip().lower() for code in args.banks.split(",") if code.strip()]
    if not bank_codes:
        bank_codes = list(AVAILABLE_BANKS.keys())
    if not bank_codes:
        print("No banks configured; pass --sources or set SCRAPER_SOURCES_FILE.", file=sys.stderr)
        return 2

    try:
        orchestrator = Orchestrator.from_registry(bank_codes, config=OrchestratorConfig.from_env())
    except UnknownBankError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    with orchestrator:
        print(f"Scraping {orchestrator.get_bank_count()} banks sequentially...")
        started = time.monotonic()
        run = orchestrator.scrape_all(ScrapeContext.with_timeout(args.timeout))
        elapsed = time.monotonic() - started

        print()
        print("=" * 64)
        print(f"RESULTS ({elapsed:.1f}s elapsed)")
        print("=" * 64)
        for result in run:
            if result.success:
                print(f"  OK   {result.bank_name} ({result.bank_code}): {result.rates_scraped} rates")
            else:
                print(f"  FAIL {result.bank_name} ({result.bank_code}): {result.error}")
        print("=" * 64)
        print(
            f"SUMMARY: {len(run.successful)}/{orchestrator.get_bank_count()} banks, "
            f"{run.total_rates} rates"
        )
        summary = orchestrator.metrics.get_summary()
        print(
            f"TOTALS: {summary.total_successful} successful, {summary.total_failed} failed scrapes; "
            f"last run {summary.last_run_duration:.1f}s"
        )

        if run.cancelled:
            print(f"Run stopped early: {run.error}", file=sys.stderr)

        if args.output:
            payload = [rate.to_dict() for rate in run.rates()]
            Path(args.output).write_text(
                json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8"
            )
            print(f"Wrote {len(payload)} rates to {args.output}")

        if args.health:
            health = orchestrator.get_health_status()
            print(json.dumps(health.to_dict(), ensure_ascii=False, indent=2))

    return 1 if run.cancelled else 0
