"""
apps/services/sourcing/scraper.py

Interfaces of the external collaborators the pipeline drives.

Browser automation and HTML parsing live behind these protocols; the pipeline
only sees plain dicts.

MarketplaceScraper.search(page, query) -> list of
    {"title": str, "price": float, "link": str, "condition": str | None}
    May raise PortalBlocked.

MarketplaceScraper.fetch_details(page, link, region) ->
    {"shipping_cost": float, "attributes": dict, "description": str,
     "seller": str, "gtin"?, "mpn"?, "brand"?, "model"?, "condition"?}
    May raise DetailFetchError or PortalBlocked.

OpenWebScraper.scrape(page, link) -> {"description"?, "text"?, "price"?}
"""

from typing import Any, Protocol


class Page(Protocol):
    async def close(self) -> None:
        ...


class Browser(Protocol):
    async def new_page(self) -> Page:
        ...


class MarketplaceScraper(Protocol):
    async def search(self, page: Page, query: str) -> list[dict[str, Any]]:
        ...

    async def fetch_details(self, page: Page, link: str, region: str) -> dict[str, Any]:
        ...


class OpenWebScraper(Protocol):
    async def scrape(self, page: Page, link: str) -> dict[str, Any]:
        ...
