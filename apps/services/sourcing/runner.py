"""
apps/services/sourcing/runner.py

Batch entry point: launch one browser, run every item through the
marketplace -> open-web coordinator, close the browser.

Usage:
    results = await source_items(items, marketplace_scraper, open_web_scraper)
"""
import logging
import time
from typing import Optional

from libs.core.config import Settings, SettingsStore, get_settings
from libs.core.logging_config import setup_logging
from libs.llm.router import ModelRouter
from apps.services.sourcing.browser import launch_browser
from apps.services.sourcing.fallback_coordinator import create_coordinator, run_batch
from apps.services.sourcing.models import Item, PipelineResult, SourcingJob
from apps.services.sourcing.scraper import MarketplaceScraper, OpenWebScraper

logger = logging.getLogger(__name__)


async def source_items(
    items: list[Item],
    marketplace_scraper: MarketplaceScraper,
    open_web_scraper: OpenWebScraper,
    store: Optional[SettingsStore] = None,
    settings: Optional[Settings] = None,
    llm: Optional[ModelRouter] = None,
    headless: Optional[bool] = None,
) -> list[PipelineResult]:
    """
    Source every item, in input order.

    Args:
        items: Items to quote
        marketplace_scraper: Primary pipeline's scraper
        open_web_scraper: Secondary pipeline's scraper
        store: Admin-editable settings (role models and keys)
        settings: Settings override
        llm: Router override
        headless: Browser visibility (PLAYWRIGHT_HEADLESS when None)

    Returns:
        One PipelineResult per item
    """
    settings = settings or get_settings()
    setup_logging(level=settings.log_level)

    coordinator = create_coordinator(
        marketplace_scraper,
        open_web_scraper,
        llm=llm,
        store=store,
        settings=settings,
    )

    started = time.monotonic()
    async with launch_browser(headless=headless) as browser:
        jobs = [SourcingJob(item=item, browser=browser) for item in items]
        results = await run_batch(jobs, coordinator, settings.sourcing.max_concurrent_jobs)

    found = sum(1 for r in results if r.winner is not None)
    logger.info(
        f"[Runner] {found}/{len(results)} items with an offer "
        f"({time.monotonic() - started:.1f}s)"
    )
    return results
