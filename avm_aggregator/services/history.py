"""
Bounded, deduplicated record of past sweeps, newest first.

The whole list is rewritten on every change (temp file + rename), so a
reader never sees a half-written store. One process owns one store.
"""
import logging
import os
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from ..core.config import settings
from ..core.utils import normalize_address
from ..data.registry import match
from ..schemas import FetchStatus, HistoryEntry, SourceStatusView, ValuationEstimate
from .consolidator import consolidate

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50

_entries_adapter = TypeAdapter(list[HistoryEntry])

class HistoryStore:
    def __init__(self, path: str | Path, capacity: int = DEFAULT_CAPACITY):
        self.path = Path(path)
        self.capacity = max(1, capacity)
        self._entries: list[HistoryEntry] = self._load()

    def _load(self) -> list[HistoryEntry]:
        if not self.path.exists():
            return []
        try:
            return _entries_adapter.validate_json(self.path.read_bytes())[: self.capacity]
        except (OSError, ValidationError, ValueError) as exc:
            # an unreadable store starts over rather than taking the service down
            logger.warning("history store unreadable, starting empty: %s", exc)
            return []

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = _entries_adapter.dump_json(self._entries, by_alias=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".history-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, self.path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise

    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    def get(self, entry_id: str) -> HistoryEntry | None:
        return next((e for e in self._entries if e.id == entry_id), None)

    def add_entry(
        self,
        address: str,
        estimates: list[ValuationEstimate],
        property_data: dict[str, Any] | None = None,
    ) -> HistoryEntry | None:
        """
        Record a finished sweep. Failed sweeps (no estimates) are ignored.
        A prior entry for the same address, any casing, is replaced and the
        new one goes to the front.
        """
        if not estimates:
            return None

        entry = HistoryEntry(
            id=uuid.uuid4().hex,
            address=address.strip(),
            timestamp=datetime.now(timezone.utc),
            estimates=list(estimates),
            property_data=property_data,
            median_estimate=consolidate(e.estimate for e in estimates).median,
        )
        key = normalize_address(address)
        kept = [e for e in self._entries if normalize_address(e.address) != key]
        self._entries = [entry, *kept][: self.capacity]
        self._persist()
        logger.info("history entry saved", extra={"address": entry.address})
        return entry

    def clear(self) -> None:
        self._entries = []
        self._persist()

def load_entry(entry: HistoryEntry) -> dict[str, SourceStatusView]:
    """
    Rebuild the per-source status view for a stored sweep. Labels that no
    longer resolve to a registered source are skipped.
    """
    view: dict[str, SourceStatusView] = {}
    for est in entry.estimates:
        source = match(est.source)
        if source is None:
            continue
        view[source.id] = SourceStatusView(
            status=FetchStatus.FOUND, estimate=est.estimate, low=est.low, high=est.high, url=est.url,
        )
    return view

def time_ago(timestamp: datetime, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    seconds = (now - timestamp).total_seconds()
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)

    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days == 1:
        return "yesterday"
    if days < 7:
        return f"{days}d ago"
    local = timestamp.astimezone()
    return f"{local:%b} {local.day}, {local.year}"

_store: HistoryStore | None = None

def history_store() -> HistoryStore:
    """Process-wide store built from settings on first use."""
    global _store
    if _store is None:
        _store = HistoryStore(settings.HISTORY_PATH, settings.HISTORY_CAPACITY)
    return _store
