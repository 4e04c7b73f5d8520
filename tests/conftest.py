"""
Pytest configuration and shared fixtures.

Async code is driven with asyncio.run from plain test functions. HTTP
upstreams are faked with httpx.MockTransport and the browser with FakePage.
"""
import asyncio
import contextlib
from typing import Optional

import pytest

from avm_aggregator.core import cache as cache_module
from avm_aggregator.core.config import settings
from avm_aggregator.data.base import FetchOutcome
from avm_aggregator.data.registry import get_source
from avm_aggregator.services.history import HistoryStore

ADDRESS = "123 Main St, Tampa, FL 33601"


class StubFetcher:
    """Fetcher with a canned outcome; optionally slow, failing, or logging its timing."""

    def __init__(self, source_id: str, outcome: Optional[FetchOutcome] = None, delay: float = 0.0,
                 exc: Optional[BaseException] = None, log: Optional[list] = None):
        self.source = get_source(source_id)
        self.outcome = outcome or FetchOutcome.missing()
        self.delay = delay
        self.exc = exc
        self.log = log
        self.calls = 0

    async def fetch(self, address: str) -> FetchOutcome:
        self.calls += 1
        if self.log is not None:
            self.log.append(("start", self.source.id))
        await asyncio.sleep(self.delay)
        if self.log is not None:
            self.log.append(("end", self.source.id))
        if self.exc is not None:
            raise self.exc
        return self.outcome


class FakePage:
    """Stands in for a Playwright page behind the BrowserPage protocol."""

    def __init__(self, html: str = "<html></html>", text: str = "", status: Optional[int] = 200,
                 site_key: Optional[str] = None, solved_html: Optional[str] = None,
                 solved_text: Optional[str] = None, goto_exc: Optional[BaseException] = None):
        self.html = html
        self.text = text
        self.status = status
        self._site_key = site_key
        self.solved_html = solved_html
        self.solved_text = solved_text
        self.goto_exc = goto_exc
        self.url = ""
        self.visits: list[str] = []
        self.tokens: list[str] = []

    async def goto(self, url: str, timeout: float):
        if self.goto_exc is not None:
            raise self.goto_exc
        self.url = url
        self.visits.append(url)
        return self.status

    async def content(self) -> str:
        return self.html

    async def body_text(self) -> str:
        return self.text

    async def site_key(self):
        return self._site_key

    async def submit_captcha_token(self, token: str) -> None:
        self.tokens.append(token)
        if self.solved_html is not None:
            self.html = self.solved_html
        if self.solved_text is not None:
            self.text = self.solved_text


def page_factory(page: FakePage):
    @contextlib.asynccontextmanager
    async def factory():
        yield page
    return factory


@pytest.fixture(autouse=True)
def _isolated_settings():
    """Keep the rate limiter and the aggregate cache out of the way between tests."""
    rpm = settings.RATE_LIMIT_RPM
    settings.RATE_LIMIT_RPM = 100_000
    cache_module._local_cache.clear()
    yield
    settings.RATE_LIMIT_RPM = rpm
    cache_module._local_cache.clear()


@pytest.fixture
def stub_fetcher():
    return StubFetcher


@pytest.fixture
def fake_page():
    return FakePage


@pytest.fixture
def make_page_factory():
    return page_factory


@pytest.fixture
def history_path(tmp_path):
    return tmp_path / "history.json"


@pytest.fixture
def store(history_path) -> HistoryStore:
    return HistoryStore(history_path, capacity=50)


@pytest.fixture
def address() -> str:
    return ADDRESS
