"""
Caller-side sweep client.

Streams `/v1/avm/stream` and, only if the stream breaks before anything
was found, falls back once to the synchronous `POST /v1/avm`. Once a
`found` event has arrived the partial results stand; a second sweep would
double the cost and could disagree with what is already shown.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx
from pydantic import ValidationError

from .core.errors import InvalidAddressError, NoEstimatesError, SweepFailedError, TransportError
from .data.registry import COMPLETE_MARKER, match
from .schemas import AvmFetchResponse, ConsolidatedResult, FetchEvent, FetchStatus, ValuationEstimate
from .services.consolidator import consolidate

logger = logging.getLogger(__name__)

@dataclass
class SweepReport:
    address: str
    estimates: list[ValuationEstimate] = field(default_factory=list)
    property_data: Optional[dict[str, Any]] = None
    events: list[FetchEvent] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    complete: bool = False
    used_fallback: bool = False

    @property
    def saw_found(self) -> bool:
        return any(e.status is FetchStatus.FOUND and e.source != COMPLETE_MARKER for e in self.events)

    def consolidated(self) -> ConsolidatedResult:
        """Raises NoEstimatesError when the sweep found nothing."""
        if not self.estimates:
            raise NoEstimatesError("Sweep returned no estimates")
        return consolidate(e.estimate for e in self.estimates)

class AvmClient:
    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"x-api-key": api_key} if api_key else {}
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, headers=self.headers,
                                 timeout=self.timeout, transport=self._transport)

    async def sweep(self, address: str, on_event: Optional[Callable[[FetchEvent], None]] = None) -> SweepReport:
        if not address or not address.strip():
            raise InvalidAddressError("Address is required")

        report = SweepReport(address=address.strip())
        try:
            await self._stream(address, report, on_event)
            return report
        except TransportError as exc:
            if report.saw_found:
                logger.warning("stream broke after partial results, keeping them: %s", exc.message)
                return report
            logger.warning("stream broke before any result, running full sweep: %s", exc.message)
        return await self._fallback(address, report)

    async def _stream(self, address: str, report: SweepReport,
                      on_event: Optional[Callable[[FetchEvent], None]]) -> None:
        try:
            async with self._client() as client:
                async with client.stream("GET", "/v1/avm/stream", params={"address": address},
                                         headers={"Accept": "text/event-stream"}) as r:
                    if r.status_code == 400:
                        await r.aread()
                        raise InvalidAddressError(_error_message(r))
                    if r.status_code >= 400:
                        raise TransportError(f"stream rejected with HTTP {r.status_code}")

                    async for line in r.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        event = _parse_event(line[5:].strip())
                        if event.source == COMPLETE_MARKER:
                            report.complete = True
                            return
                        self._apply(report, event)
                        if on_event:
                            on_event(event)
        except httpx.HTTPError as exc:
            raise TransportError(f"stream failed: {exc.__class__.__name__}") from exc

        if not report.complete:
            raise TransportError("stream ended without completion event")

    def _apply(self, report: SweepReport, event: FetchEvent) -> None:
        report.events.append(event)
        source = match(event.source)
        label = source.display_name if source else event.source
        if event.status is FetchStatus.FOUND and event.estimate is not None:
            report.estimates.append(ValuationEstimate(
                source=label, estimate=event.estimate,
                low=event.low if event.low is not None else event.estimate,
                high=event.high if event.high is not None else event.estimate,
                url=event.url,
            ))
            if report.property_data is None and event.property_data and any(event.property_data.values()):
                report.property_data = event.property_data
        elif event.status is FetchStatus.ERROR:
            report.errors.append(f"{label}: {event.error}")

    async def _fallback(self, address: str, report: SweepReport) -> SweepReport:
        try:
            async with self._client() as client:
                r = await client.post("/v1/avm", json={"address": address})
        except httpx.HTTPError as exc:
            raise SweepFailedError(f"fallback sweep failed: {exc.__class__.__name__}") from exc

        if r.status_code == 400:
            raise InvalidAddressError(_error_message(r))
        if r.status_code >= 400:
            raise SweepFailedError(f"fallback sweep failed: {_error_message(r)}")
        try:
            body = AvmFetchResponse.model_validate(r.json())
        except (ValueError, ValidationError) as exc:
            raise SweepFailedError("fallback sweep returned a malformed body") from exc

        report.estimates = list(body.results)
        report.property_data = body.property_data
        report.errors = list(body.errors)
        report.used_fallback = True
        report.complete = True
        return report

def _parse_event(data: str) -> FetchEvent:
    try:
        return FetchEvent.model_validate(json.loads(data))
    except (ValueError, ValidationError) as exc:
        raise TransportError("malformed stream event") from exc

def _error_message(r: httpx.Response) -> str:
    try:
        return r.json().get("error") or f"HTTP {r.status_code}"
    except ValueError:
        return f"HTTP {r.status_code}"
