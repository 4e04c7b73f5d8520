"""
Unit tests for the sweep service: SSE lines and where side-channel notices go.
"""
import asyncio
import logging

from avm_aggregator.data.base import FetchOutcome
from avm_aggregator.services.orchestrator import SweepOrchestrator
from avm_aggregator.services.sweep_service import SweepService


def captcha_outcome():
    outcome = FetchOutcome.found(420000, 400000, 440000)
    outcome.notices = ["CAPTCHA detected on Zillow"]
    return outcome


def service(store, fetchers):
    return SweepService(store, orchestrator_factory=lambda notify: SweepOrchestrator(fetchers, notify=notify))


def drain(lines):
    async def run():
        return [line async for line in lines]
    return asyncio.run(run())


def test_stream_logs_notices(store, stub_fetcher, address, caplog):
    caplog.set_level(logging.INFO, logger="avm_aggregator.services.sweep_service")
    svc = service(store, [stub_fetcher("zillow", captcha_outcome())])

    lines = drain(svc.stream(address))

    assert all(line.startswith("data: ") and line.endswith("\n\n") for line in lines)
    assert "CAPTCHA detected on Zillow" in caplog.messages
    assert store.entries()[0].median_estimate == 420000


def test_full_sweep_folds_notices_into_errors(store, stub_fetcher, address):
    svc = service(store, [
        stub_fetcher("zillow", captcha_outcome()),
        stub_fetcher("redfin", FetchOutcome.failed("Timed out")),
    ])

    payload, cached, etag = asyncio.run(svc.sweep(address))

    assert cached is False
    assert payload["errors"] == ["Redfin: Timed out", "CAPTCHA detected on Zillow"]
    assert etag.startswith('W/"')
