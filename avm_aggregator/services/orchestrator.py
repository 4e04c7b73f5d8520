import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

from ..core.config import settings
from ..core.errors import SourceFetchError
from ..core.metrics import record_source_outcome
from ..core.utils import parse_address
from ..data.api_sources import avm_api_fetcher, default_range
from ..data.base import FetchOutcome, PropertyData, SourceFetcher, SourceKind
from ..data.browser_sources import browser_fetchers
from ..data.registry import COMPLETE_MARKER, SOURCES
from ..schemas import FetchEvent, FetchStatus, ValuationEstimate

logger = logging.getLogger(__name__)

# (level, message); the caller decides how to surface it
Notify = Callable[[str, str], None]

def complete_event() -> FetchEvent:
    return FetchEvent(source=COMPLETE_MARKER, status=FetchStatus.FOUND)

@dataclass
class SweepResult:
    address: str
    estimates: list[ValuationEstimate] = field(default_factory=list)
    property_data: Optional[PropertyData] = None
    events: list[FetchEvent] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def record(self, event: FetchEvent, outcome: FetchOutcome, display_name: str) -> None:
        self.events.append(event)
        if event.status is FetchStatus.FOUND:
            self.estimates.append(ValuationEstimate(
                source=display_name, estimate=event.estimate, low=event.low, high=event.high, url=event.url,
            ))
            if self.property_data is None and outcome.property_data and not outcome.property_data.is_empty():
                self.property_data = outcome.property_data
        elif event.status is FetchStatus.ERROR:
            self.errors.append(f"{display_name}: {event.error}")

def to_event(source_id: str, outcome: FetchOutcome) -> FetchEvent:
    """Map a fetcher outcome onto exactly one terminal stream status."""
    if outcome.success and outcome.estimate is not None:
        low, high = outcome.low, outcome.high
        if low is None or high is None:
            low, high = default_range(outcome.estimate)
        prop = outcome.property_data
        return FetchEvent(
            source=source_id, status=FetchStatus.FOUND,
            estimate=outcome.estimate, low=min(low, outcome.estimate), high=max(high, outcome.estimate),
            url=outcome.url,
            property_data=prop.to_payload() if prop and not prop.is_empty() else None,
        )
    if outcome.success:
        # page resolved but carried no number: hand back the link only
        return FetchEvent(source=source_id, status=FetchStatus.NOT_FOUND, url=outcome.url)
    if outcome.not_found:
        return FetchEvent(source=source_id, status=FetchStatus.NOT_FOUND, url=outcome.url, error=outcome.error_reason)
    return FetchEvent(source=source_id, status=FetchStatus.ERROR, url=outcome.url,
                      error=outcome.error_reason or "Unknown error")

class SweepOrchestrator:
    """
    Runs one sweep for one address:
      checking for every source → API sources concurrently → browser sources
      one at a time → completion sentinel.
    Every source gets exactly one terminal event, whatever its fetcher does.
    """
    def __init__(
        self,
        fetchers: list[SourceFetcher],
        api_timeout: float = 20.0,
        browser_timeout: float = 180.0,
        notify: Optional[Notify] = None,
    ):
        order = {s.id: i for i, s in enumerate(SOURCES)}
        self.fetchers = sorted(fetchers, key=lambda f: order.get(f.source.id, len(order)))
        self.api_timeout = api_timeout
        self.browser_timeout = browser_timeout
        self._notify = notify or (lambda level, message: None)

    def stream(self, address: str, result: Optional[SweepResult] = None) -> AsyncIterator[FetchEvent]:
        """
        Validate now, fetch lazily. An unparseable address raises
        InvalidAddressError here, before any event or fetch.
        """
        parsed = parse_address(address)
        result = result if result is not None else SweepResult(address=parsed.full_address)
        return self._run(parsed.full_address, result)

    async def run(self, address: str) -> SweepResult:
        """Full sweep without progress, for the synchronous endpoint."""
        result = SweepResult(address=address.strip())
        async for _ in self.stream(address, result):
            pass
        return result

    async def _run(self, address: str, result: SweepResult) -> AsyncIterator[FetchEvent]:
        logger.info("sweep started", extra={"address": address})
        for fetcher in self.fetchers:
            yield FetchEvent(source=fetcher.source.id, status=FetchStatus.CHECKING)

        api = [f for f in self.fetchers if f.source.kind is SourceKind.API]
        browser = [f for f in self.fetchers if f.source.kind is SourceKind.BROWSER]

        # API sources are independent network calls; report each as it lands.
        tasks = [asyncio.create_task(self._resolve(f, address, self.api_timeout, result)) for f in api]
        for next_done in asyncio.as_completed(tasks):
            yield await next_done

        # Browser sessions are heavy and bursts draw bot checks: strictly one at a time.
        for fetcher in browser:
            yield await self._resolve(fetcher, address, self.browser_timeout, result)

        logger.info(
            "sweep complete: %d estimate(s), %d error(s)", len(result.estimates), len(result.errors),
            extra={"address": address},
        )
        done = complete_event()
        result.events.append(done)
        yield done

    async def _resolve(self, fetcher: SourceFetcher, address: str, timeout: float,
                       result: SweepResult) -> FetchEvent:
        source = fetcher.source
        start = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(fetcher.fetch(address), timeout)
        except asyncio.TimeoutError:
            outcome = FetchOutcome.failed("Timed out")
        except SourceFetchError as exc:
            logger.warning("fetcher failed: %s", exc.message, extra={"source": source.id})
            outcome = FetchOutcome.failed(exc.message)
        except Exception as exc:
            # fetchers are not supposed to raise; contain it anyway
            logger.exception("fetcher raised", extra={"source": source.id})
            outcome = FetchOutcome.failed(f"Unexpected error: {exc.__class__.__name__}")

        elapsed = time.perf_counter() - start
        event = to_event(source.id, outcome)
        result.record(event, outcome, source.display_name)
        record_source_outcome(source.id, event.status.value, elapsed)
        logger.info(
            "source resolved", extra={"source": source.id, "status": event.status.value,
                                      "elapsed_ms": int(elapsed * 1000)},
        )

        for notice in outcome.notices:
            self._notify("info", notice)
        if event.status is FetchStatus.ERROR:
            self._notify("warning", f"{source.display_name}: {event.error}")
        return event

def default_fetchers() -> list[SourceFetcher]:
    return [avm_api_fetcher(), *browser_fetchers()]

def build_orchestrator(notify: Optional[Notify] = None) -> SweepOrchestrator:
    return SweepOrchestrator(
        default_fetchers(),
        api_timeout=settings.API_TIMEOUT_SECONDS + 5,
        browser_timeout=settings.BROWSER_SOURCE_TIMEOUT_SECONDS,
        notify=notify,
    )
