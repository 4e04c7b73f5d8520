import json
import logging
from typing import AsyncIterator, Callable, Optional

from ..core.cache import cache
from ..core.metrics import FALLBACK_SWEEPS
from ..core.utils import normalize_address, parse_address, weak_etag
from ..data.registry import COMPLETE_MARKER
from ..schemas import AvmFetchResponse, FetchEvent
from .history import HistoryStore, history_store
from .orchestrator import Notify, SweepOrchestrator, SweepResult, build_orchestrator

logger = logging.getLogger(__name__)

def sse_line(event: FetchEvent) -> str:
    return f"data: {json.dumps(event.to_wire(), separators=(',', ':'))}\n\n"

class SweepService:
    """
    Glue between the HTTP layer and the orchestrator:
      stream  → SSE lines, history written when the sweep completes
      sweep   → one aggregate payload (the fallback path), cached + ETag'd
    Only sweeps that found at least one estimate reach history.
    """
    def __init__(
        self,
        store: HistoryStore,
        orchestrator_factory: Callable[[Optional[Notify]], SweepOrchestrator] = build_orchestrator,
    ):
        self.store = store
        self._orchestrator_factory = orchestrator_factory

    def _notifier(self, notes: Optional[list[str]] = None) -> Notify:
        """Log every notice; also collect them when the caller keeps a list."""
        def notify(level: str, message: str) -> None:
            if notes is not None:
                notes.append(message)
            logger.log(logging.WARNING if level == "warning" else logging.INFO, message)

        return notify

    def _record(self, result: SweepResult) -> None:
        prop = result.property_data.to_payload() if result.property_data else None
        self.store.add_entry(result.address, result.estimates, prop)

    def stream(self, address: str) -> AsyncIterator[str]:
        """Raises InvalidAddressError before the first byte is produced."""
        result = SweepResult(address=parse_address(address).full_address)
        notify = self._notifier()
        events = self._orchestrator_factory(notify).stream(address, result)
        return self._sse(events, result)

    async def _sse(self, events: AsyncIterator[FetchEvent], result: SweepResult) -> AsyncIterator[str]:
        async for event in events:
            if event.source == COMPLETE_MARKER:
                self._record(result)
            yield sse_line(event)

    async def sweep(self, address: str) -> tuple[dict, bool, str]:
        parsed = parse_address(address)
        cache_key = f"avm:{normalize_address(parsed.full_address)}"
        cached = cache.get(cache_key)
        if cached:
            payload = json.loads(cached)
            return payload, True, weak_etag(cached.encode("utf-8"))

        notes: list[str] = []
        notify = self._notifier(notes)
        result = await self._orchestrator_factory(notify).run(parsed.full_address)
        FALLBACK_SWEEPS.inc()
        self._record(result)

        response = AvmFetchResponse(
            address=parsed.full_address,
            results=result.estimates,
            property_data=result.property_data.to_payload() if result.property_data else None,
            errors=[*result.errors, *(n for n in notes if n not in result.errors)],
            fetched_at=result.fetched_at,
        )
        payload = response.model_dump(mode="json", by_alias=True)
        body = json.dumps(payload, separators=(',', ':'))
        if result.estimates:
            cache.set(cache_key, body)
        return payload, False, weak_etag(body.encode("utf-8"))

def sweep_service() -> SweepService:
    return SweepService(history_store())
