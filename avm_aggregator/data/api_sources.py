import logging
from typing import Any
from urllib.parse import quote

import httpx

from .base import FetchOutcome, PropertyData, SourceFetcher
from .registry import Source, get_source
from ..core.config import settings
from ..core.utils import fnv1a_32, normalize_address, round_half_up, seeded_rand

logger = logging.getLogger(__name__)

def default_range(estimate: int) -> tuple[int, int]:
    """±5% band for sources that only publish a point estimate."""
    return round_half_up(estimate * 0.95), round_half_up(estimate * 1.05)

def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0

def parse_rentcast_value(body: Any) -> tuple[int, int, int, PropertyData | None] | None:
    """
    Pull (estimate, low, high, property) out of an /avm/value response.
    Returns None when the body carries no price. Raises ValueError on a body
    that is not the expected shape.
    """
    if not isinstance(body, dict):
        raise ValueError("AVM response is not a JSON object")

    price = _num(body.get("price"))
    low = _num(body.get("priceRangeLow"))
    high = _num(body.get("priceRangeHigh"))
    if not price and low and high:
        price = (low + high) / 2
    if price <= 0:
        return None

    estimate = round_half_up(price)
    d_low, d_high = default_range(estimate)
    low_i = round_half_up(low) if low else d_low
    high_i = round_half_up(high) if high else d_high
    # keep low <= estimate <= high even if the upstream range is skewed
    low_i, high_i = min(low_i, estimate), max(high_i, estimate)

    subject = body.get("subjectProperty") or {}
    if not isinstance(subject, dict):
        subject = {}
    prop = PropertyData(
        sqft=int(_num(subject.get("squareFootage"))),
        beds=_num(subject.get("bedrooms")),
        baths=_num(subject.get("bathrooms")),
        year_built=int(_num(subject.get("yearBuilt"))),
        lot_size=int(_num(subject.get("lotSize"))),
        property_type=subject.get("propertyType") or "",
        last_sale_date=subject.get("lastSaleDate") or "",
        last_sale_price=int(_num(subject.get("lastSalePrice"))),
    )
    return estimate, low_i, high_i, (None if prop.is_empty() else prop)

class RentCastFetcher(SourceFetcher):
    """
    Single GET against the RentCast AVM endpoint.
    Every failure mode comes back as a FetchOutcome; nothing escapes.
    """
    def __init__(self, api_key: str | None, base_url: str, timeout: float = 15.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.source: Source = get_source("rentcast")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport  # tests plug in httpx.MockTransport

    def app_url(self, address: str) -> str:
        return f"https://app.rentcast.io/app?address={quote(address)}"

    async def fetch(self, address: str) -> FetchOutcome:
        if not self.api_key:
            return FetchOutcome.failed("RentCast API key not configured")

        url = self.app_url(address)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.get(
                    f"{self.base_url}/avm/value",
                    params={"address": address},
                    headers={"Accept": "application/json", "X-Api-Key": self.api_key},
                )
            if r.status_code == 404:
                return FetchOutcome.missing("Property not found", url=url)
            r.raise_for_status()
            parsed = parse_rentcast_value(r.json())
        except httpx.TimeoutException:
            logger.warning("rentcast timed out", extra={"source": "rentcast"})
            return FetchOutcome.failed("Timed out")
        except httpx.HTTPStatusError as exc:
            logger.warning("rentcast http %s", exc.response.status_code, extra={"source": "rentcast"})
            return FetchOutcome.failed(f"HTTP {exc.response.status_code}")
        except httpx.HTTPError as exc:
            logger.warning("rentcast request failed: %s", exc, extra={"source": "rentcast"})
            return FetchOutcome.failed(f"Request failed: {exc.__class__.__name__}")
        except ValueError as exc:  # json.JSONDecodeError is a ValueError
            logger.warning("rentcast malformed body: %s", exc, extra={"source": "rentcast"})
            return FetchOutcome.failed("Malformed response")

        if parsed is None:
            return FetchOutcome.missing("No estimate in response", url=url)
        estimate, low, high, prop = parsed
        return FetchOutcome.found(estimate, low, high, property_data=prop, url=url)

class MockAvmFetcher(SourceFetcher):
    """
    Deterministic stand-in for the AVM API: same address → same numbers.
    Lets the whole sweep run locally with no keys.
    """
    def __init__(self):
        self.source: Source = get_source("rentcast")

    async def fetch(self, address: str) -> FetchOutcome:
        seed = fnv1a_32(normalize_address(address))
        r = seeded_rand(seed, 4)
        estimate = 250_000 + int(r[0] * 500_000)  # $250k–$750k
        spread = 0.04 + r[1] * 0.04
        prop = PropertyData(
            sqft=1000 + int(r[2] * 2500),
            beds=2 + int(r[3] * 4),
            baths=1 + int(r[1] * 3),
            year_built=1960 + int(r[2] * 60),
            lot_size=5000 + int(r[3] * 10000),
            property_type="Single Family",
        )
        return FetchOutcome.found(
            estimate,
            round_half_up(estimate * (1 - spread)),
            round_half_up(estimate * (1 + spread)),
            property_data=prop,
            url=f"https://app.rentcast.io/app?address={quote(address)}",
        )

def avm_api_fetcher() -> SourceFetcher:
    """
    Factory picks mock or RentCast based on env flags.
    """
    if settings.AVM_API_PROVIDER == "rentcast":
        return RentCastFetcher(settings.RENTCAST_API_KEY, settings.RENTCAST_BASE_URL,
                               timeout=settings.API_TIMEOUT_SECONDS)
    return MockAvmFetcher()
