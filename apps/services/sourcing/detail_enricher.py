"""
apps/services/sourcing/detail_enricher.py

Fetches listing details for the cheapest candidates.

Sequential: one page per job, with a scheduler delay between
fetches. A failed fetch degrades that candidate only (title-only fingerprint,
no shipping); PortalBlocked is job-fatal and propagates.
"""
import logging
from typing import Any, Optional

from libs.core.exceptions import PortalBlocked
from apps.services.sourcing.models import Candidate
from apps.services.sourcing.scheduler import RequestScheduler
from apps.services.sourcing.scraper import MarketplaceScraper, Page

logger = logging.getLogger(__name__)

DEFAULT_ENRICH_LIMIT = 10


def normalize_attributes(raw: Any) -> dict[str, Any]:
    """Accept {name: value} or [{"name": .., "value": ..}] attribute shapes."""
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, list):
        attributes = {}
        for entry in raw:
            if isinstance(entry, dict) and entry.get("name"):
                attributes[str(entry["name"])] = entry.get("value")
        return attributes
    return {}


def apply_details(candidate: Candidate, details: dict[str, Any]) -> None:
    """Copy fetched details onto the candidate and rebuild its fingerprint."""
    try:
        candidate.shipping_cost = float(details.get("shipping_cost") or 0.0)
    except (TypeError, ValueError):
        candidate.shipping_cost = 0.0
    candidate.attributes = normalize_attributes(details.get("attributes"))
    candidate.description = str(details.get("description") or "")
    seller = details.get("seller")
    if isinstance(seller, dict):
        seller = seller.get("name")
    candidate.seller = str(seller) if seller else None
    for key in ("gtin", "mpn", "brand", "model"):
        if details.get(key):
            setattr(candidate, key, str(details[key]))
    if details.get("condition"):
        candidate.condition = str(details["condition"]).lower()
    candidate.set_fingerprint()


def degrade(candidate: Candidate) -> None:
    """Fallback when details are unavailable."""
    candidate.shipping_cost = 0.0
    candidate.set_fingerprint(include_description=False)


async def enrich_candidates(
    page: Page,
    scraper: MarketplaceScraper,
    candidates: list[Candidate],
    region: str,
    scheduler: Optional[RequestScheduler] = None,
    limit: int = DEFAULT_ENRICH_LIMIT,
    item_id: str = "",
) -> list[Candidate]:
    """
    Enrich the `limit` cheapest candidates.

    Returns:
        The enriched candidates, sorted by price; the rest are dropped

    Raises:
        PortalBlocked: The marketplace blocked a detail fetch
    """
    scheduler = scheduler or RequestScheduler(name="details")
    selected = sorted(candidates, key=lambda c: c.price)[:limit]

    for candidate in selected:
        await scheduler.wait(candidate.link)
        try:
            details = await scraper.fetch_details(page, candidate.link, region)
        except PortalBlocked:
            scheduler.report_block()
            logger.error(f"[Enricher] [Item {item_id}] Portal blocked at {candidate.link}")
            raise
        except Exception as e:
            logger.warning(f"[Enricher] [Item {item_id}] Error getting details for {candidate.link}: {e}")
            degrade(candidate)
            continue

        apply_details(candidate, details or {})

    logger.info(f"[Enricher] [Item {item_id}] Enriched {len(selected)}/{len(candidates)} candidates")
    return selected
