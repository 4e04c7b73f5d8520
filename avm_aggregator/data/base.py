from typing import Protocol, Optional, Any
from dataclasses import dataclass, field, fields
from enum import Enum

# ----- Data shapes (thin & explicit) -----

class SourceKind(str, Enum):
    API = "api"            # structured valuation service, fast
    BROWSER = "browser"    # rendered third-party page, slow and brittle

# camelCase wire names for PropertyData fields
_PROPERTY_WIRE_NAMES = {
    "sqft": "sqft",
    "beds": "beds",
    "baths": "baths",
    "year_built": "yearBuilt",
    "lot_size": "lotSize",
    "property_type": "propertyType",
    "last_sale_date": "lastSaleDate",
    "last_sale_price": "lastSalePrice",
}

@dataclass
class PropertyData:
    sqft: int = 0
    beds: float = 0
    baths: float = 0
    year_built: int = 0
    lot_size: int = 0
    property_type: str = ""
    last_sale_date: str = ""
    last_sale_price: int = 0

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    def to_payload(self) -> dict[str, Any]:
        return {wire: getattr(self, attr) for attr, wire in _PROPERTY_WIRE_NAMES.items()}

@dataclass
class FetchOutcome:
    """
    What every fetcher returns. `success` with no estimate is a url-only hit
    (page resolved, no number we could read).
    """
    success: bool
    estimate: Optional[int] = None
    low: Optional[int] = None
    high: Optional[int] = None
    property_data: Optional[PropertyData] = None
    url: Optional[str] = None
    error_reason: Optional[str] = None
    # failure that means "the source has nothing", not "the source broke"
    not_found: bool = False
    # user-facing side-channel messages ("CAPTCHA detected on Zillow")
    notices: list[str] = field(default_factory=list)

    @classmethod
    def found(cls, estimate: int, low: Optional[int] = None, high: Optional[int] = None, **kw) -> "FetchOutcome":
        return cls(success=True, estimate=estimate, low=low, high=high, **kw)

    @classmethod
    def url_only(cls, url: str) -> "FetchOutcome":
        return cls(success=True, url=url)

    @classmethod
    def missing(cls, reason: str = "No estimate available", url: Optional[str] = None) -> "FetchOutcome":
        return cls(success=False, not_found=True, error_reason=reason, url=url)

    @classmethod
    def failed(cls, reason: str, url: Optional[str] = None) -> "FetchOutcome":
        return cls(success=False, error_reason=reason, url=url)

# ----- Protocols (interfaces) -----

class SourceFetcher(Protocol):
    """
    One method for every source, API or browser. The orchestrator picks the
    execution policy from `source.kind`; nothing else branches on the concrete type.
    Implementations must not raise.
    """
    source: Any  # registry.Source

    async def fetch(self, address: str) -> FetchOutcome: ...
