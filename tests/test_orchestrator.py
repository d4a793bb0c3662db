import random
import threading

import pytest

from ratescraper.context import ScrapeContext
from ratescraper.errors import (
    BankUnavailableError,
    NoDataFoundError,
    ScrapeCancelledError,
    UnknownBankError,
)
from ratescraper.metrics import DEGRADED, HEALTHY, UNHEALTHY
from ratescraper.orchestrator import Orchestrator, OrchestratorConfig
from ratescraper.retry import RetryConfig


def fast_config(max_attempts=3, min_delay=0.0, max_delay=0.0):
    return OrchestratorConfig(
        min_delay=min_delay,
        max_delay=max_delay,
        request_timeout=5.0,
        retry_config=RetryConfig(max_attempts=max_attempts, base_delay=0.0, jitter=0.0),
    )


@pytest.fixture
def scenario(scripted_source, rates):
    always_ok = scripted_source("a", [rates("a", 4)])
    always_down = scripted_source("b", [BankUnavailableError("connection refused", "b")])
    empty_then_ok = scripted_source("c", [[], rates("c", 2)])
    orchestrator = Orchestrator(
        [always_ok, always_down, empty_then_ok], config=fast_config(max_attempts=2)
    )
    return orchestrator, (always_ok, always_down, empty_then_ok)


def test_scrape_all_mixed_outcomes(scenario):
    orchestrator, (a, b, c) = scenario

    run = orchestrator.scrape_all()

    assert run.error is None
    assert [result.bank_code for result in run] == ["a", "b", "c"]

    first, second, third = run.results
    assert first.success is True
    assert first.rates_scraped == 4
    assert first.error is None

    assert second.success is False
    assert isinstance(second.error, BankUnavailableError)
    assert second.rates == ()

    assert third.success is True
    assert third.rates_scraped == 2
    assert third.attempts == 2
    assert c.calls == 2
    assert b.calls == 2


def test_metrics_after_mixed_run(scenario):
    orchestrator, _ = scenario

    orchestrator.scrape_all()

    metrics = orchestrator.metrics.get_source_metrics()
    assert (metrics["a"].success_count, metrics["a"].failure_count) == (1, 0)
    assert (metrics["b"].success_count, metrics["b"].failure_count) == (0, 1)
    assert (metrics["c"].success_count, metrics["c"].failure_count) == (1, 0)
    assert orchestrator.metrics.get_summary().last_run_rates_scraped == 6


def test_get_all_rates_drops_failed_banks(scenario):
    orchestrator, _ = scenario

    collected = orchestrator.get_all_rates()

    assert len(collected) == 6
    assert [rate.bank_code for rate in collected] == ["a"] * 4 + ["c"] * 2


@pytest.mark.parametrize("count", [0, 1, 2, 5])
def test_one_result_per_bank_in_configured_order(scripted_source, rates, count):
    codes = [f"bank{i}" for i in reversed(range(count))]
    sources = [scripted_source(code, [rates(code, 1)]) for code in codes]

    run = Orchestrator(sources, config=fast_config()).scrape_all()

    assert [result.bank_code for result in run] == codes
    assert run.error is None


def test_inter_bank_delays_within_bounds(scripted_source, rates, recording_context):
    sources = [scripted_source(f"b{i}", [rates(f"b{i}", 1)]) for i in range(6)]
    orchestrator = Orchestrator(
        sources, config=fast_config(min_delay=1.0, max_delay=3.0), rng=random.Random(42)
    )
    ctx = recording_context()

    orchestrator.scrape_all(ctx)

    assert len(ctx.sleeps) == 5
    assert all(1.0 <= delay < 3.0 for delay in ctx.sleeps)


def test_delays_are_reproducible_with_seeded_rng(scripted_source, rates, recording_context):
    def delays(seed):
        sources = [scripted_source(f"b{i}", [rates(f"b{i}", 1)]) for i in range(4)]
        orchestrator = Orchestrator(
            sources, config=fast_config(min_delay=1.0, max_delay=3.0), rng=random.Random(seed)
        )
        ctx = recording_context()
        orchestrator.scrape_all(ctx)
        return ctx.sleeps

    assert delays(3) == delays(3)


@pytest.mark.parametrize("max_delay", [2.0, 0.5])
def test_delay_clamped_to_min_when_max_not_greater(scripted_source, rates, recording_context, max_delay):
    sources = [scripted_source(f"b{i}", [rates(f"b{i}", 1)]) for i in range(3)]
    orchestrator = Orchestrator(sources, config=fast_config(min_delay=2.0, max_delay=max_delay))
    ctx = recording_context()

    orchestrator.scrape_all(ctx)

    assert ctx.sleeps == [2.0, 2.0]


def test_retry_failure_counts_once_per_run(scripted_source):
    down = scripted_source("b", [BankUnavailableError()])
    orchestrator = Orchestrator([down], config=fast_config(max_attempts=4))

    run = orchestrator.scrape_all()

    assert down.calls == 4
    assert run[0].attempts == 4
    assert orchestrator.metrics.get_source_metrics()["b"].failure_count == 1


def test_empty_results_become_no_data_failure(scripted_source):
    empty = scripted_source("e", [[]])

    run = Orchestrator([empty], config=fast_config(max_attempts=2)).scrape_all()

    assert run[0].success is False
    assert isinstance(run[0].error, NoDataFoundError)
    assert empty.calls == 2


@pytest.mark.parametrize("completed", [0, 1, 2])
def test_cancel_after_m_banks_returns_m_results(scripted_source, rates, completed):
    ctx = ScrapeContext()
    sources = []
    for i in range(4):
        after_call = (lambda c: c.cancel()) if i == completed - 1 else None
        sources.append(scripted_source(f"b{i}", [rates(f"b{i}", 1)], after_call=after_call))
    orchestrator = Orchestrator(sources, config=fast_config())
    if completed == 0:
        ctx.cancel()

    run = orchestrator.scrape_all(ctx)

    assert len(run) == completed
    assert run.cancelled
    assert isinstance(run.error, ScrapeCancelledError)
    assert all(result.success for result in run)
    assert orchestrator.metrics.get_summary().runs_finished == 1


def test_cancel_during_delay_aborts_run(scripted_source, rates, recording_context):
    sources = [scripted_source(f"b{i}", [rates(f"b{i}", 1)]) for i in range(3)]
    orchestrator = Orchestrator(sources, config=fast_config(min_delay=1.0, max_delay=2.0))
    ctx = recording_context(on_sleep=lambda c: c.cancel())

    run = orchestrator.scrape_all(ctx)

    assert len(run) == 1
    assert run.cancelled
    assert sources[1].calls == 0


def test_cancel_during_retry_does_not_record_failure(scripted_source, rates, recording_context):
    ok = scripted_source("ok", [rates("ok", 1)])
    flaky = scripted_source("flaky", [BankUnavailableError()])
    config = fast_config(max_attempts=3)
    config.retry_config.base_delay = 1.0
    orchestrator = Orchestrator([ok, flaky], config=config)

    def cancel_on_backoff(ctx):
        if len(ctx.sleeps) == 2:  # the first is the inter-bank pause
            ctx.cancel()

    run = orchestrator.scrape_all(recording_context(on_sleep=cancel_on_backoff))

    assert [result.bank_code for result in run] == ["ok"]
    assert run.cancelled
    assert orchestrator.metrics.get_source_metrics()["flaky"].failure_count == 0


def test_get_all_rates_raises_on_cancellation(scripted_source, rates):
    ctx = ScrapeContext()
    ctx.cancel()
    orchestrator = Orchestrator([scripted_source("a", [rates("a", 1)])], config=fast_config())

    with pytest.raises(ScrapeCancelledError):
        orchestrator.get_all_rates(ctx)


def test_scrape_bank_targets_one_bank(scenario, recording_context):
    orchestrator, (a, b, c) = scenario
    ctx = recording_context()

    result = orchestrator.scrape_bank("a", ctx)

    assert result.success is True
    assert result.rates_scraped == 4
    assert (a.calls, b.calls, c.calls) == (1, 0, 0)
    assert ctx.sleeps == []
    assert orchestrator.metrics.get_summary().runs_finished == 0


def test_scrape_bank_not_counted_in_next_run(scenario):
    orchestrator, _ = scenario
    orchestrator.scrape_bank("a")
    ctx = ScrapeContext()
    ctx.cancel()

    run = orchestrator.scrape_all(ctx)

    assert len(run) == 0
    health = orchestrator.get_health_status()
    assert health.last_run_records == 0
    assert health.last_run_succeeded == 0
    assert orchestrator.metrics.get_source_metrics()["a"].success_count == 1


def test_scrape_bank_cancelled_mid_retry_clears_in_flight(scripted_source, recording_context):
    flaky = scripted_source("flaky", [BankUnavailableError()])
    config = fast_config(max_attempts=3)
    config.retry_config.base_delay = 1.0
    orchestrator = Orchestrator([flaky], config=config)

    with pytest.raises(ScrapeCancelledError):
        orchestrator.scrape_bank("flaky", recording_context(on_sleep=lambda ctx: ctx.cancel()))

    metrics = orchestrator.metrics.get_source_metrics()["flaky"]
    assert metrics.in_flight_since is None
    assert metrics.failure_count == 0
    assert orchestrator.get_health_status().sources["flaky"].in_flight is False


def test_scrape_bank_unknown_code_fails_fast(scenario):
    orchestrator, sources = scenario

    with pytest.raises(UnknownBankError):
        orchestrator.scrape_bank("zzz")

    assert orchestrator.metrics.get_source_metrics() == {}
    assert all(source.calls == 0 for source in sources)


def test_duplicate_bank_codes_rejected(scripted_source, rates):
    with pytest.raises(ValueError):
        Orchestrator(
            [scripted_source("a", [rates("a", 1)]), scripted_source("a", [rates("a", 1)])],
            config=fast_config(),
        )


def test_bank_count_and_codes(scenario):
    orchestrator, _ = scenario

    assert orchestrator.get_bank_count() == 3
    assert orchestrator.list_bank_codes() == ["a", "b", "c"]


def test_shared_session_bound_into_sources(scripted_source, rates):
    class SessionAware:
        bank_code = "s"
        bank_name = "Session Aware"

        def __init__(self):
            self.bound = None

        def bind_session(self, session, timeout=None):
            self.bound = (session, timeout)

        def scrape_rates(self, ctx):
            return rates("s", 1)

    session = object()
    first, second = SessionAware(), SessionAware()
    second.bank_code = "t"

    Orchestrator([first, second], config=fast_config(), session=session)

    assert first.bound == (session, 5.0)
    assert second.bound[0] is first.bound[0]


def test_health_status_reflects_runs(scenario):
    orchestrator, _ = scenario

    assert orchestrator.get_health_status().status == UNHEALTHY

    orchestrator.scrape_all()

    status = orchestrator.get_health_status()
    assert status.status == DEGRADED
    assert status.total_sources == 3
    assert status.sources_with_success == 2
    assert status.last_run_records == 6


def test_health_healthy_after_clean_run(scripted_source, rates):
    orchestrator = Orchestrator(
        [scripted_source("a", [rates("a", 2)]), scripted_source("b", [rates("b", 3)])],
        config=fast_config(),
    )

    orchestrator.scrape_all()

    assert orchestrator.get_health_status().status == HEALTHY


def test_health_reads_concurrent_with_scrape(scripted_source, rates):
    sources = [scripted_source(f"b{i}", [rates(f"b{i}", 2)]) for i in range(40)]
    orchestrator = Orchestrator(sources, config=fast_config(min_delay=0.0, max_delay=0.001))
    done = threading.Event()
    errors = []
    observed = []

    def reader():
        try:
            while not done.is_set():
                status = orchestrator.get_health_status()
                assert status.total_sources == 40
                observed.append(status.sources_with_success)
        except Exception as exc:  # pragma: no cover - surfaced by the assertion
            errors.append(exc)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for thread in readers:
        thread.start()
    try:
        for _ in range(3):
            run = orchestrator.scrape_all()
            assert len(run) == 40
    finally:
        done.set()
        for thread in readers:
            thread.join(timeout=30)

    assert not errors
    assert all(0 <= value <= 40 for value in observed)
    assert orchestrator.get_health_status().status == HEALTHY
