"""
apps/services/sourcing/search_collector.py

Runs planned queries against the marketplace and deduplicates results.

- Results without a positive price are discarded
- Deduplicated by link; first seen wins, discovery order preserved
- PortalBlocked aborts the remaining searches and propagates
- Any other per-query failure is logged and skipped
"""
import logging
import re
from typing import Any, Optional

from libs.core.exceptions import PortalBlocked
from apps.services.sourcing.models import Candidate, Strategy, StrategyType
from apps.services.sourcing.scheduler import RequestScheduler
from apps.services.sourcing.scraper import MarketplaceScraper, Page

logger = logging.getLogger(__name__)

MAX_STRATEGIES = 2

NOT_NEW_CONDITIONS = {"used", "refurbished", "usado", "recondicionado", "seminovo"}

# Separators that can only be digit grouping: "1.299", "1,299,000"
_THOUSANDS_ONLY = {
    ".": re.compile(r"^\d{1,3}(\.\d{3})+$"),
    ",": re.compile(r"^\d{1,3}(,\d{3}){2,}$"),
}


def _normalize_price_label(label: str) -> str:
    text = re.sub(r"[^\d.,]", "", label)
    if "," in text and "." in text:
        # Rightmost separator is the decimal one
        thousands = "." if text.rfind(",") > text.rfind(".") else ","
        return text.replace(thousands, "").replace(",", ".")
    for sep in (".", ","):
        if sep in text and _THOUSANDS_ONLY[sep].match(text):
            return text.replace(sep, "")
    # pt-BR: a lone comma is the decimal
    return text.replace(",", ".")


def parse_price(value: Any) -> Optional[float]:
    """Positive price from a number or a price label ("R$ 1.299,90"); else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = _normalize_price_label(value)
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


def to_candidate(result: dict[str, Any], source: str = "marketplace") -> Optional[Candidate]:
    """Convert a raw search result; None when it lacks a link or a positive price."""
    link = result.get("link")
    price = parse_price(result.get("price"))
    if not link or price is None:
        return None
    condition = result.get("condition")
    return Candidate(
        title=str(result.get("title") or "").strip(),
        link=str(link),
        price=price,
        condition=str(condition).lower() if condition else None,
        source=source,
    )


class SearchCollector:
    """Collects unique, priced candidates for one job."""

    def __init__(
        self,
        scraper: MarketplaceScraper,
        scheduler: Optional[RequestScheduler] = None,
        require_new: bool = True,
        item_id: str = "",
    ):
        self.scraper = scraper
        self.scheduler = scheduler or RequestScheduler(name="search")
        self.require_new = require_new
        self.item_id = item_id
        self._seen: set[str] = set()
        self.candidates: list[Candidate] = []

    async def collect(self, page: Page, strategies: list[Strategy]) -> list[Candidate]:
        """
        Search every strategy (at most two) and return unique candidates.

        Raises:
            PortalBlocked: The marketplace blocked the scraper
        """
        for strategy in strategies[:MAX_STRATEGIES]:
            added = await self._search(page, strategy.query)

            if added == 0 and strategy.type == StrategyType.ANCHORED and strategy.relaxed_query:
                logger.info(
                    f"[Collector] [Item {self.item_id}] Anchored search '{strategy.query}' found nothing, "
                    f"relaxing to '{strategy.relaxed_query}'"
                )
                await self._search(page, strategy.relaxed_query)

        logger.info(f"[Collector] [Item {self.item_id}] {len(self.candidates)} unique candidates")
        return self.candidates

    async def _search(self, page: Page, query: str) -> int:
        """Run one query; returns the number of new candidates added."""
        await self.scheduler.wait(query)
        logger.info(f"[Collector] [Item {self.item_id}] Searching marketplace: '{query}'")

        try:
            results = await self.scraper.search(page, query)
        except PortalBlocked:
            self.scheduler.report_block()
            logger.error(f"[Collector] [Item {self.item_id}] Portal blocked during '{query}'")
            raise
        except Exception as e:
            logger.warning(f"[Collector] [Item {self.item_id}] Search error for '{query}': {e}")
            return 0

        self.scheduler.report_success()
        return self._add_results(results or [])

    def _add_results(self, results: list[dict[str, Any]]) -> int:
        added = 0
        for result in results:
            candidate = to_candidate(result)
            if candidate is None:
                continue
            if self.require_new and candidate.condition in NOT_NEW_CONDITIONS:
                logger.debug(f"[Collector] Skipping {candidate.condition} listing: {candidate.title[:60]}")
                continue
            if candidate.link in self._seen:
                continue
            self._seen.add(candidate.link)
            self.candidates.append(candidate)
            added += 1
        return added
