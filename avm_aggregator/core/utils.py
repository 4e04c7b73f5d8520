import hashlib
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from .errors import InvalidAddressError

def normalize_address(addr: str) -> str:
    """
    Minimal normalization so cache keys, seeds and history dedupe agree:
    - trim whitespace
    - lowercase
    - collapse multiple spaces
    """
    return " ".join(addr.strip().lower().split())

@dataclass(frozen=True)
class ParsedAddress:
    street_number: str
    street_name: str
    city: str
    state: str
    zip_code: str
    full_address: str

_STREET_RE = re.compile(r"^(\d+)\s+(.+)$")
_STATE_ZIP_RE = re.compile(r"^([A-Z]{2})\s*(\d{5})?", re.IGNORECASE)

def parse_address(address: str | None) -> ParsedAddress:
    """
    Split "123 Main St, Tampa, FL 33601" into parts.
    Needs at least "street, city"; anything less is rejected up front.
    """
    clean = (address or "").strip()
    if not clean:
        raise InvalidAddressError("Address is required")

    parts = [p.strip() for p in clean.split(",")]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise InvalidAddressError(
            "Could not parse address. Use format: 123 Main St, City, ST 12345"
        )

    street = _STREET_RE.match(parts[0])
    street_number = street.group(1) if street else ""
    street_name = street.group(2) if street else parts[0]

    state, zip_code = "", ""
    if len(parts) >= 3:
        m = _STATE_ZIP_RE.match(parts[2])
        if m:
            state = m.group(1).upper()
            zip_code = m.group(2) or ""
        else:
            state = parts[2]
    if len(parts) >= 4 and re.match(r"^\d{5}", parts[3]):
        zip_code = parts[3][:5]

    return ParsedAddress(
        street_number=street_number,
        street_name=street_name,
        city=parts[1],
        state=state,
        zip_code=zip_code,
        full_address=clean,
    )

def slugify(text: str) -> str:
    """'779 Hibiscus Dr' -> '779-hibiscus-dr'"""
    s = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return s.strip("-")

def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives, the way dollar amounts are expected to round."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def fnv1a_32(s: str) -> int:
    """Deterministic, fast hash for seed generation."""
    h = 0x811c9dc5
    for c in s.encode("utf-8"):
        h ^= c
        h = (h * 0x01000193) & 0xFFFFFFFF
    return h

def seeded_rand(seed: int, n: int = 1) -> list[float]:
    """
    Stateless pseudo-random generator (Mulberry32-like) so
    same seed → same outputs without storing PRNG state.
    """
    out = []
    t = (seed + 0x6D2B79F5) & 0xFFFFFFFF
    for _ in range(n):
        t = (t ^ (t >> 15)) * (t | 1) & 0xFFFFFFFF
        t ^= t + ((t ^ (t >> 7)) * (t | 61) & 0xFFFFFFFF)
        r = ((t ^ (t >> 14)) & 0xFFFFFFFF) / 4294967296.0
        out.append(r)
    return out

def weak_etag(payload_bytes: bytes) -> str:
    """Weak ETag for client-side conditional requests."""
    h = hashlib.sha256(payload_bytes).hexdigest()[:24]
    return f'W/"{h}"'
