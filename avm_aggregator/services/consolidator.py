"""
Reduce per-source estimates to one number.

Median for small samples; above four samples, the lower of the median and a
12.5%-per-tail trimmed mean. Taking the lower of the two always leans toward
the buyer. That bias is existing behaviour and is kept as-is.
"""
from typing import Iterable

from ..core.errors import NoEstimatesError
from ..core.utils import round_half_up
from ..schemas import ConsolidatedResult

TRIM_FRACTION = 0.125
MIN_SAMPLES_FOR_TRIM = 5

def median(values: Iterable[int]) -> int:
    ordered = sorted(values)
    if not ordered:
        raise NoEstimatesError()
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return round_half_up((ordered[mid - 1] + ordered[mid]) / 2)
    return ordered[mid]

def trimmed_mean(values: Iterable[int], fraction: float = TRIM_FRACTION) -> int:
    ordered = sorted(values)
    trim = max(1, int(len(ordered) * fraction))
    kept = ordered[trim:len(ordered) - trim]
    if not kept:
        raise NoEstimatesError("Too few estimates to trim")
    return round_half_up(sum(kept) / len(kept))

def consolidate(estimates: Iterable[int]) -> ConsolidatedResult:
    values = sorted(estimates)
    if not values:
        raise NoEstimatesError()

    mid = median(values)
    if len(values) < MIN_SAMPLES_FOR_TRIM:
        return ConsolidatedResult(best_estimate=mid, median=mid)
    return ConsolidatedResult(best_estimate=min(mid, trimmed_mean(values)), median=mid)
