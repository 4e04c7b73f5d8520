"""
Valuation sources read from rendered third-party pages.

Each page source is data: a URL builder plus text patterns for the visible
page and for embedded page-state JSON (`__NEXT_DATA__` and friends). One
fetcher class drives them all through a small `BrowserPage` protocol, so the
Playwright specifics stay in `PlaywrightPage` / `playwright_page`.

Zero results are normal here. A page that loads but shows no number we can
read is returned as a url-only success for manual follow-up.
"""
import asyncio
import contextlib
import logging
import re
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, Callable, Optional, Protocol
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .base import FetchOutcome, SourceFetcher
from .captcha import CaptchaSolver, SolveStatus, captcha_solver
from .registry import Source, get_source
from .api_sources import default_range
from ..core.config import settings
from ..core.errors import InvalidAddressError, SourceFetchError
from ..core.utils import ParsedAddress, parse_address, round_half_up, slugify

logger = logging.getLogger(__name__)

# Masks the usual automation tells before any page script runs.
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
window.chrome = window.chrome || {runtime: {}};
"""

CHALLENGE_MARKERS = (
    "g-recaptcha",
    "data-sitekey",
    "unusual traffic",
    "i'm not a robot",
    "press & hold",
    "captcha",
)

BLOCKED_STATUSES = {403, 429}

# Anything outside this band is a phone number, a zip, or a rent figure.
MIN_PLAUSIBLE = 10_000
MAX_PLAUSIBLE = 100_000_000

_MONEY_RE = re.compile(r"^\$?\s*([\d,]+(?:\.\d+)?)\s*([KkMm])?$")

def parse_money(raw: str) -> Optional[int]:
    """'$1,234,500' -> 1234500, '$1.2M' -> 1200000, '450K' -> 450000"""
    m = _MONEY_RE.match(raw.strip())
    if not m:
        return None
    try:
        value = float(m.group(1).replace(",", ""))
    except ValueError:
        return None
    suffix = (m.group(2) or "").upper()
    if suffix == "K":
        value *= 1_000
    elif suffix == "M":
        value *= 1_000_000
    return round_half_up(value)

def _plausible(value: Optional[int]) -> bool:
    return value is not None and MIN_PLAUSIBLE <= value <= MAX_PLAUSIBLE

_MONEY = r"\$?\s*([\d,]+(?:\.\d+)?(?:\s?[KkMm]\b)?)"
_RANGE_RE = re.compile(r"\$([\d,]+(?:\.\d+)?[KkMm]?)\s*(?:-|–|to)\s*\$([\d,]+(?:\.\d+)?[KkMm]?)")
_STATE_SCRIPT_RE = re.compile(
    r'<script[^>]*id="(?:__NEXT_DATA__|__APOLLO_STATE__|__PRELOADED_STATE__)"[^>]*>(.*?)</script>',
    re.DOTALL,
)

@dataclass(frozen=True)
class PageSource:
    source_id: str
    build_url: Callable[[ParsedAddress], str]
    text_patterns: tuple[re.Pattern, ...]
    state_patterns: tuple[re.Pattern, ...] = ()

def _street_slug(a: ParsedAddress) -> str:
    return slugify(f"{a.street_number} {a.street_name}")

PAGE_SOURCES: dict[str, PageSource] = {p.source_id: p for p in (
    PageSource(
        "zillow",
        lambda a: f"https://www.zillow.com/homes/{slugify(a.full_address)}_rb/",
        (re.compile(r"Zestimate[®:\s]*" + _MONEY, re.I),
         re.compile(_MONEY + r"\s*Zestimate", re.I)),
        (re.compile(r'"zestimate"\s*:\s*(\d+)'),),
    ),
    PageSource(
        "redfin",
        lambda a: f"https://www.redfin.com/search?location={quote(a.full_address)}",
        (re.compile(r"Redfin Estimate[^$\d]{0,40}" + _MONEY, re.I),),
        (re.compile(r'"predictedValue"\s*:\s*(\d+(?:\.\d+)?)'),),
    ),
    PageSource(
        "realtor",
        lambda a: "https://www.realtor.com/realestateandhomes-detail/"
                  f"{_street_slug(a)}_{slugify(a.city)}_{a.state}_{a.zip_code}",
        (re.compile(r"(?:RealEstimate|Estimated value)[^$\d]{0,40}" + _MONEY, re.I),),
        (re.compile(r'"estimated_value"\s*:\s*(\d+)'),),
    ),
    PageSource(
        "trulia",
        lambda a: f"https://www.trulia.com/home/{_street_slug(a)}-{slugify(a.city)}-{a.state.lower()}-{a.zip_code}",
        (re.compile(r"Estimated (?:Home )?Value[^$\d]{0,40}" + _MONEY, re.I),),
        (re.compile(r'"estimatedValue"\s*:\s*(\d+)'),),
    ),
    PageSource(
        "comehome",
        lambda a: f"https://www.comehome.com/search?address={quote(a.full_address)}",
        (re.compile(r"ComeHome (?:Estimate|Value)[^$\d]{0,40}" + _MONEY, re.I),),
        (re.compile(r'"avm"\s*:\s*\{[^}]*"value"\s*:\s*(\d+)'),),
    ),
    PageSource(
        "bankofamerica",
        lambda a: f"https://www.bankofamerica.com/mortgage/home-value-estimator/?address={quote(a.full_address)}",
        (re.compile(r"(?:Estimated home value|Home value estimate)[^$\d]{0,40}" + _MONEY, re.I),),
    ),
    PageSource(
        "xome",
        lambda a: f"https://www.xome.com/realestate/{a.state.lower()}/{slugify(a.city)}/{a.zip_code}/{_street_slug(a)}",
        (re.compile(r"Xome Value[^$\d]{0,40}" + _MONEY, re.I),),
        (re.compile(r'"xomeValue"\s*:\s*(\d+)'),),
    ),
)}

@dataclass
class Extraction:
    estimate: int
    low: int
    high: int
    method: str

def _embedded_state(html: str) -> str:
    return "\n".join(m.group(1) for m in _STATE_SCRIPT_RE.finditer(html))

def extract_estimate(page_source: PageSource, text: str, html: str = "") -> Optional[Extraction]:
    """
    Rendered text first, embedded page state second. Returns None when
    neither yields a plausible dollar figure.
    """
    for pattern in page_source.text_patterns:
        for m in pattern.finditer(text):
            value = parse_money(m.group(1))
            if _plausible(value):
                low, high = _nearby_range(text, m.end(), value)
                return Extraction(value, low, high, "visible_text")

    state = _embedded_state(html) or html
    for pattern in page_source.state_patterns:
        m = pattern.search(state)
        if m:
            value = round_half_up(float(m.group(1)))
            if _plausible(value):
                low, high = default_range(value)
                return Extraction(value, low, high, "page_state")
    return None

def _nearby_range(text: str, pos: int, estimate: int) -> tuple[int, int]:
    """Use a "$a - $b" range printed shortly after the estimate if it brackets it."""
    m = _RANGE_RE.search(text, pos, pos + 200)
    if m:
        low, high = parse_money(m.group(1)), parse_money(m.group(2))
        if low is not None and high is not None and low <= estimate <= high:
            return low, high
    return default_range(estimate)

_SCRIPT_TAG_RE = re.compile(r"<script\b[^>]*>.*?</script>", re.I | re.DOTALL)

def is_challenge(html: str) -> bool:
    """Challenge markup in the page itself; script loaders (login widgets) do not count."""
    lowered = _SCRIPT_TAG_RE.sub("", html).lower()
    return any(marker in lowered for marker in CHALLENGE_MARKERS)

# ----- Browser seam -----

class BrowserPage(Protocol):
    url: str

    async def goto(self, url: str, timeout: float) -> Optional[int]: ...
    async def content(self) -> str: ...
    async def body_text(self) -> str: ...
    async def site_key(self) -> Optional[str]: ...
    async def submit_captcha_token(self, token: str) -> None: ...

PageFactory = Callable[[], AsyncContextManager[BrowserPage]]

class PlaywrightPage:
    """Adapts a Playwright page to BrowserPage."""
    def __init__(self, page):
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str, timeout: float) -> Optional[int]:
        response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)
        return response.status if response else None

    async def content(self) -> str:
        return await self._page.content()

    async def body_text(self) -> str:
        return await self._page.evaluate("() => document.body ? document.body.innerText : ''")

    async def site_key(self) -> Optional[str]:
        el = await self._page.query_selector("[data-sitekey]")
        return await el.get_attribute("data-sitekey") if el else None

    async def submit_captcha_token(self, token: str) -> None:
        await self._page.evaluate(
            """(t) => {
                const area = document.getElementById('g-recaptcha-response');
                if (area) { area.style.display = 'block'; area.value = t; }
                const form = area ? area.closest('form') : document.querySelector('form');
                if (form) form.submit();
            }""",
            token,
        )
        with contextlib.suppress(PlaywrightError):
            await self._page.wait_for_load_state("domcontentloaded", timeout=15_000)

@contextlib.asynccontextmanager
async def playwright_page(user_agent: str | None = None, headless: bool | None = None) -> AsyncIterator[BrowserPage]:
    """
    One Chromium session per page fetch. Heavy, which is why the
    orchestrator never runs two of these at once.
    """
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(
            headless=settings.BROWSER_HEADLESS if headless is None else headless,
            args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-blink-features=AutomationControlled"],
        )
        try:
            context = await browser.new_context(
                user_agent=user_agent or settings.BROWSER_USER_AGENT,
                viewport={"width": 1440, "height": 900},
                locale="en-US",
            )
            await context.add_init_script(STEALTH_INIT_SCRIPT)
            page = await context.new_page()
            yield PlaywrightPage(page)
        finally:
            await browser.close()

# ----- Fetchers -----

class BrowserPageFetcher(SourceFetcher):
    def __init__(
        self,
        page_source: PageSource,
        solver: CaptchaSolver,
        page_factory: PageFactory = playwright_page,
        navigation_timeout: float = 25.0,
    ):
        self.source: Source = get_source(page_source.source_id)
        self.page_source = page_source
        self.solver = solver
        self._open_page = page_factory
        self.navigation_timeout = navigation_timeout

    async def fetch(self, address: str) -> FetchOutcome:
        try:
            url = self.page_source.build_url(parse_address(address))
        except InvalidAddressError as exc:
            return FetchOutcome.failed(exc.message)

        log_extra = {"source": self.source.id}
        notices: list[str] = []
        try:
            async with self._open_page() as page:
                return await self._read_page(page, url, notices, log_extra)
        except SourceFetchError as exc:
            logger.warning("%s: %s", self.source.id, exc.message, extra=log_extra)
            outcome = FetchOutcome.failed(exc.message, url=url)
        except (asyncio.TimeoutError, PlaywrightTimeoutError):
            logger.warning("%s page load timed out", self.source.id, extra=log_extra)
            outcome = FetchOutcome.failed("Timed out", url=url)
        except PlaywrightError as exc:
            logger.warning("%s navigation failed: %s", self.source.id, exc, extra=log_extra)
            outcome = FetchOutcome.failed("Navigation failed", url=url)
        outcome.notices = notices
        return outcome

    async def _read_page(self, page: BrowserPage, url: str, notices: list[str], log_extra: dict) -> FetchOutcome:
        status = await page.goto(url, self.navigation_timeout)
        if status in BLOCKED_STATUSES:
            raise SourceFetchError(f"Blocked (HTTP {status})", source=self.source.id)

        html = await page.content()
        text = await page.body_text()
        found = extract_estimate(self.page_source, text, html) if status != 404 else None

        # a readable estimate wins over any challenge markup on the same page
        if found is None and is_challenge(html):
            logger.info("challenge detected", extra=log_extra)
            notices.append(f"CAPTCHA detected on {self.source.display_name}")
            await self._clear_challenge(page, url)
            html = await page.content()
            if is_challenge(html):
                raise SourceFetchError("Still blocked after CAPTCHA", source=self.source.id)
            text = await page.body_text()
            found = extract_estimate(self.page_source, text, html) if status != 404 else None

        if status == 404:
            return FetchOutcome(success=False, not_found=True, error_reason="Property page not found",
                                url=url, notices=notices)

        final_url = page.url or url
        if found is None:
            logger.info("no estimate on page", extra=log_extra)
            return FetchOutcome(success=True, url=final_url, notices=notices)

        logger.info("estimate %s via %s", found.estimate, found.method, extra=log_extra)
        return FetchOutcome(success=True, estimate=found.estimate, low=found.low, high=found.high,
                            url=final_url, notices=notices)

    async def _clear_challenge(self, page: BrowserPage, url: str) -> None:
        site_key = await page.site_key()
        if not site_key:
            raise SourceFetchError("CAPTCHA without a site key", source=self.source.id)

        result = await self.solver.solve(site_key, url)
        if result.status is SolveStatus.TIMED_OUT:
            raise SourceFetchError("CAPTCHA solve timed out", source=self.source.id)
        if not result.solved:
            raise SourceFetchError(f"CAPTCHA solve failed: {result.detail}", source=self.source.id)

        await page.submit_captcha_token(result.token)
        await page.goto(url, self.navigation_timeout)

class UnavailableFetcher(SourceFetcher):
    """Stands in for a browser source when automation is switched off."""
    def __init__(self, source_id: str):
        self.source: Source = get_source(source_id)

    async def fetch(self, address: str) -> FetchOutcome:
        return FetchOutcome.missing("Scraper unavailable")

def browser_fetchers(solver: CaptchaSolver | None = None,
                     page_factory: PageFactory | None = None) -> list[SourceFetcher]:
    """Registry order. Disabled automation yields placeholders so the UI still sees every source."""
    if not settings.BROWSER_ENABLED and page_factory is None:
        return [UnavailableFetcher(sid) for sid in PAGE_SOURCES]

    solver = solver or captcha_solver()
    return [
        BrowserPageFetcher(ps, solver, page_factory or playwright_page,
                           navigation_timeout=settings.NAVIGATION_TIMEOUT_SECONDS)
        for ps in PAGE_SOURCES.values()
    ]
