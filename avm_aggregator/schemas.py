from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

class FetchStatus(str, Enum):
    CHECKING = "checking"
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self is not FetchStatus.CHECKING

class FetchEvent(BaseModel):
    """One line of the progress stream."""
    model_config = ConfigDict(populate_by_name=True)

    source: str
    status: FetchStatus
    estimate: int | None = None
    low: int | None = None
    high: int | None = None
    url: str | None = None
    property_data: dict[str, Any] | None = Field(default=None, alias="propertyData")
    error: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

class ValuationEstimate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: str
    estimate: int
    low: int
    high: int
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="lastUpdated")
    url: str | None = None

    @model_validator(mode="after")
    def _range_brackets_estimate(self):
        if not (self.low <= self.estimate <= self.high):
            raise ValueError(f"range {self.low}-{self.high} does not contain estimate {self.estimate}")
        return self

class AvmRequest(BaseModel):
    address: str = ""

class AvmFetchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str
    results: list[ValuationEstimate]
    property_data: dict[str, Any] | None = Field(default=None, alias="propertyData")
    errors: list[str] = []
    fetched_at: datetime = Field(alias="fetchedAt")
    cached: bool = False

class ConsolidateRequest(BaseModel):
    estimates: list[int]

class ConsolidatedResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    best_estimate: int = Field(alias="bestEstimate")
    median: int

class HistoryEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    address: str
    timestamp: datetime
    estimates: list[ValuationEstimate]
    property_data: dict[str, Any] | None = Field(default=None, alias="propertyData")
    median_estimate: int = Field(alias="medianEstimate")

class SourceStatusView(BaseModel):
    status: FetchStatus
    estimate: int | None = None
    low: int | None = None
    high: int | None = None
    url: str | None = None

class HistoryEntryView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entry: HistoryEntry
    time_ago: str = Field(alias="timeAgo")
    sources: dict[str, SourceStatusView] = {}
