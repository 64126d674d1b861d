"""
apps/services/sourcing/price_anomaly.py

Flags suspiciously cheap listings (accessories, parts, bait prices).

Candidates are only flagged, never removed.
"""
import logging

from apps.services.sourcing.models import Candidate

logger = logging.getLogger(__name__)

DEFAULT_ANOMALY_THRESHOLD = 0.30
MIN_CANDIDATES = 3


def median_price(prices: list[float]) -> float:
    """Element at index n // 2 of the sorted prices (upper-middle for even counts)."""
    ordered = sorted(prices)
    return ordered[len(ordered) // 2]


def flag_price_anomalies(
    candidates: list[Candidate],
    threshold: float = DEFAULT_ANOMALY_THRESHOLD,
) -> list[Candidate]:
    """
    Mark candidates priced below median * threshold.

    Needs at least MIN_CANDIDATES priced candidates; returns the same list.
    """
    if len(candidates) < MIN_CANDIDATES:
        return candidates

    median = median_price([c.price for c in candidates])
    if median <= 0:
        return candidates
    cutoff = median * threshold

    flagged = 0
    for candidate in candidates:
        if candidate.price < cutoff:
            percent = round(candidate.price / median * 100)
            candidate.price_anomaly = True
            candidate.anomaly_reason = f"Price is {percent}% of median ({median:.2f})"
            flagged += 1

    if flagged:
        logger.info(
            f"[Anomaly] {flagged}/{len(candidates)} candidates below {threshold:.0%} of median {median:.2f}"
        )
    return candidates
