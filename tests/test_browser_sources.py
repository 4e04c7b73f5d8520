"""
Unit tests for page-based sources, driven through FakePage instead of a real browser.
"""
import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from avm_aggregator.core.config import settings
from avm_aggregator.core.utils import parse_address
from avm_aggregator.data.browser_sources import (
    PAGE_SOURCES,
    BrowserPageFetcher,
    UnavailableFetcher,
    browser_fetchers,
    extract_estimate,
    is_challenge,
    parse_money,
)
from avm_aggregator.data.captcha import CaptchaResult, SolveStatus
from avm_aggregator.data.registry import SOURCES

CHALLENGE_HTML = '<html><div class="g-recaptcha" data-sitekey="site-key"></div></html>'
RECAPTCHA_SCRIPT_HTML = ('<html><head><script src="https://www.google.com/recaptcha/api.js" async></script>'
                         '<script>window.captchaConfig = {sitekey: "x"};</script></head>'
                         '<body><form id="login"></form></body></html>')


class StubSolver:
    def __init__(self, result: CaptchaResult):
        self.result = result
        self.calls = []

    async def solve(self, site_key, page_url):
        self.calls.append((site_key, page_url))
        return self.result


def zillow(page, make_page_factory, solver=None):
    solver = solver or StubSolver(CaptchaResult(SolveStatus.SOLVED, token="tok"))
    return BrowserPageFetcher(PAGE_SOURCES["zillow"], solver, make_page_factory(page), navigation_timeout=5)


@pytest.mark.parametrize("raw,expected", [
    ("$1,234,500", 1234500),
    ("412300", 412300),
    ("$1.2M", 1200000),
    ("450K", 450000),
    ("$ 98,000.50", 98001),
    ("n/a", None),
])
def test_parse_money(raw, expected):
    assert parse_money(raw) == expected


class TestExtractEstimate:
    def test_visible_text_with_range(self):
        text = "Zestimate®: $412,300\nEstimated sales range $395,000 - $430,000"
        found = extract_estimate(PAGE_SOURCES["zillow"], text)
        assert (found.estimate, found.low, found.high) == (412300, 395000, 430000)
        assert found.method == "visible_text"

    def test_range_not_bracketing_estimate_is_ignored(self):
        text = "Zestimate: $412,300  Rent Zestimate range $2,000 - $2,400"
        found = extract_estimate(PAGE_SOURCES["zillow"], text)
        assert (found.low, found.high) == (391685, 432915)

    def test_implausible_figures_fall_through_to_page_state(self):
        html = ('<script id="__NEXT_DATA__" type="application/json">'
                '{"props":{"zestimate":405000}}</script>')
        found = extract_estimate(PAGE_SOURCES["zillow"], "Rent Zestimate: $2,450/mo", html)
        assert (found.estimate, found.low, found.high) == (405000, 384750, 425250)
        assert found.method == "page_state"

    def test_other_source_patterns(self):
        assert extract_estimate(PAGE_SOURCES["redfin"], "Redfin Estimate for this home $530K").estimate == 530000
        assert extract_estimate(PAGE_SOURCES["xome"], "Xome Value: $1.1M").estimate == 1100000

    def test_nothing_readable(self):
        assert extract_estimate(PAGE_SOURCES["zillow"], "3 bd | 2 ba | 1,850 sqft", "<html></html>") is None


def test_challenge_markers():
    assert is_challenge(CHALLENGE_HTML)
    assert is_challenge("<p>Our systems have detected unusual traffic</p>")
    assert not is_challenge("<html><body>Zestimate $400,000</body></html>")


def test_recaptcha_script_alone_is_not_a_challenge():
    assert not is_challenge(RECAPTCHA_SCRIPT_HTML)


def test_page_urls(address):
    parsed = parse_address(address)
    assert PAGE_SOURCES["realtor"].build_url(parsed) == \
        "https://www.realtor.com/realestateandhomes-detail/123-main-st_tampa_FL_33601"
    assert PAGE_SOURCES["zillow"].build_url(parsed) == \
        "https://www.zillow.com/homes/123-main-st-tampa-fl-33601_rb/"


class TestBrowserPageFetcher:
    def test_estimate_from_page(self, address, fake_page, make_page_factory):
        page = fake_page(text="Zestimate: $412,300")
        outcome = asyncio.run(zillow(page, make_page_factory).fetch(address))
        assert outcome.success
        assert outcome.estimate == 412300
        assert outcome.low <= outcome.estimate <= outcome.high
        assert outcome.url == page.visits[0]
        assert outcome.notices == []

    def test_login_recaptcha_script_does_not_block_estimate(self, address, fake_page, make_page_factory):
        page = fake_page(html=RECAPTCHA_SCRIPT_HTML, text="Zestimate®: $412,300")
        solver = StubSolver(CaptchaResult(SolveStatus.SOLVED, token="tok"))
        outcome = asyncio.run(zillow(page, make_page_factory, solver).fetch(address))

        assert outcome.success
        assert outcome.estimate == 412300
        assert outcome.notices == []
        assert solver.calls == []

    def test_readable_estimate_wins_over_challenge_markup(self, address, fake_page, make_page_factory):
        page = fake_page(html=CHALLENGE_HTML, text="Zestimate: $398,000")
        solver = StubSolver(CaptchaResult(SolveStatus.SOLVED, token="tok"))
        outcome = asyncio.run(zillow(page, make_page_factory, solver).fetch(address))

        assert outcome.estimate == 398000
        assert solver.calls == []
        assert page.tokens == []

    def test_page_without_number_is_url_only(self, address, fake_page, make_page_factory):
        page = fake_page(text="3 bd | 2 ba")
        outcome = asyncio.run(zillow(page, make_page_factory).fetch(address))
        assert outcome.success
        assert outcome.estimate is None
        assert outcome.url.startswith("https://www.zillow.com/homes/")

    def test_challenge_solved_then_read(self, address, fake_page, make_page_factory):
        page = fake_page(html=CHALLENGE_HTML, site_key="site-key",
                         solved_html="<html>ok</html>", solved_text="Zestimate: $500,000")
        solver = StubSolver(CaptchaResult(SolveStatus.SOLVED, token="tok"))
        outcome = asyncio.run(zillow(page, make_page_factory, solver).fetch(address))

        assert outcome.success
        assert outcome.estimate == 500000
        assert outcome.notices == ["CAPTCHA detected on Zillow"]
        assert page.tokens == ["tok"]
        assert len(page.visits) == 2
        assert solver.calls[0][0] == "site-key"

    def test_solver_timeout_is_an_error(self, address, fake_page, make_page_factory):
        page = fake_page(html=CHALLENGE_HTML, site_key="site-key")
        solver = StubSolver(CaptchaResult(SolveStatus.TIMED_OUT, detail="no solution after 24 polls"))
        outcome = asyncio.run(zillow(page, make_page_factory, solver).fetch(address))

        assert not outcome.success
        assert not outcome.not_found
        assert outcome.error_reason == "CAPTCHA solve timed out"
        assert outcome.notices == ["CAPTCHA detected on Zillow"]
        assert page.tokens == []

    def test_solver_failure_is_an_error(self, address, fake_page, make_page_factory):
        page = fake_page(html=CHALLENGE_HTML, site_key="site-key")
        solver = StubSolver(CaptchaResult(SolveStatus.FAILED, detail="ERROR_ZERO_BALANCE"))
        outcome = asyncio.run(zillow(page, make_page_factory, solver).fetch(address))
        assert outcome.error_reason == "CAPTCHA solve failed: ERROR_ZERO_BALANCE"

    def test_challenge_without_site_key(self, address, fake_page, make_page_factory):
        page = fake_page(html="<p>unusual traffic from your network</p>")
        solver = StubSolver(CaptchaResult(SolveStatus.SOLVED, token="tok"))
        outcome = asyncio.run(zillow(page, make_page_factory, solver).fetch(address))
        assert outcome.error_reason == "CAPTCHA without a site key"
        assert solver.calls == []

    def test_still_blocked_after_token(self, address, fake_page, make_page_factory):
        page = fake_page(html=CHALLENGE_HTML, site_key="site-key")
        outcome = asyncio.run(zillow(page, make_page_factory).fetch(address))
        assert outcome.error_reason == "Still blocked after CAPTCHA"

    def test_blocked_status(self, address, fake_page, make_page_factory):
        outcome = asyncio.run(zillow(fake_page(status=403), make_page_factory).fetch(address))
        assert outcome.error_reason == "Blocked (HTTP 403)"

    def test_missing_page_is_not_found(self, address, fake_page, make_page_factory):
        outcome = asyncio.run(zillow(fake_page(status=404), make_page_factory).fetch(address))
        assert not outcome.success
        assert outcome.not_found

    @pytest.mark.parametrize("exc,reason", [
        (PlaywrightTimeoutError("Timeout 5000ms exceeded"), "Timed out"),
        (asyncio.TimeoutError(), "Timed out"),
        (PlaywrightError("net::ERR_NAME_NOT_RESOLVED"), "Navigation failed"),
    ])
    def test_navigation_failures(self, address, fake_page, make_page_factory, exc, reason):
        outcome = asyncio.run(zillow(fake_page(goto_exc=exc), make_page_factory).fetch(address))
        assert not outcome.success
        assert outcome.error_reason == reason
        assert outcome.url is not None

    def test_unparseable_address_never_opens_a_page(self, fake_page, make_page_factory):
        page = fake_page()
        outcome = asyncio.run(zillow(page, make_page_factory).fetch("nowhere"))
        assert not outcome.success
        assert page.visits == []


class TestBrowserFetchers:
    def test_disabled_automation_yields_placeholders(self, monkeypatch, address):
        monkeypatch.setattr(settings, "BROWSER_ENABLED", False)
        fetchers = browser_fetchers()
        assert all(isinstance(f, UnavailableFetcher) for f in fetchers)
        assert [f.source.id for f in fetchers] == [s.id for s in SOURCES[1:]]

        outcome = asyncio.run(fetchers[0].fetch(address))
        assert outcome.not_found
        assert outcome.error_reason == "Scraper unavailable"

    def test_page_factory_enables_real_fetchers(self, fake_page, make_page_factory):
        solver = StubSolver(CaptchaResult(SolveStatus.FAILED))
        fetchers = browser_fetchers(solver=solver, page_factory=make_page_factory(fake_page()))
        assert all(isinstance(f, BrowserPageFetcher) for f in fetchers)
        assert len(fetchers) == 7
