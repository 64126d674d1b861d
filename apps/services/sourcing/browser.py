"""
apps/services/sourcing/browser.py

Browser and page lifecycle for sourcing jobs.

One browser is shared by every job in a batch; each job (and each open-web
round) owns exactly one page, acquired through page_session() and closed on
every exit path.
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import async_playwright, Browser as PlaywrightBrowser

from libs.core.exceptions import PageAcquisitionError
from apps.services.sourcing.scraper import Browser, Page

logger = logging.getLogger(__name__)


@asynccontextmanager
async def page_session(browser: Browser, owner: str = "") -> AsyncIterator[Page]:
    """
    Open a page for the duration of the block.

    Raises:
        PageAcquisitionError: The browser could not open a page
    """
    try:
        page = await browser.new_page()
    except Exception as e:
        raise PageAcquisitionError(
            f"Could not open page: {e}", context={"owner": owner}
        ) from e

    logger.debug(f"[Browser] Page opened ({owner})")
    try:
        yield page
    finally:
        try:
            await page.close()
            logger.debug(f"[Browser] Page closed ({owner})")
        except Exception as e:
            # Page may already be gone with a crashed browser
            logger.warning(f"[Browser] Failed to close page ({owner}): {e}")


@asynccontextmanager
async def launch_browser(headless: Optional[bool] = None) -> AsyncIterator[PlaywrightBrowser]:
    """
    Launch a Chromium instance for a batch run.

    PLAYWRIGHT_HEADLESS=false gives a visible browser (requires X server).
    """
    if headless is None:
        headless = os.getenv("PLAYWRIGHT_HEADLESS", "true").lower() not in ("false", "0", "no")

    launch_args = [
        "--no-sandbox",
        "--disable-blink-features=AutomationControlled",
    ]

    playwright = await async_playwright().start()
    browser = None
    try:
        logger.info(f"[Browser] Launching chromium: headless={headless}")
        browser = await playwright.chromium.launch(headless=headless, args=launch_args)
        yield browser
    finally:
        if browser is not None:
            await browser.close()
        await playwright.stop()
        logger.info("[Browser] Browser stopped")
