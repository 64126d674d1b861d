import pytest

from conftest import FakeBrowser, FakeLLM, FakeMarketplaceScraper, FakeOpenWebScraper
from apps.services.sourcing import browser as browser_module
from apps.services.sourcing import runner
from apps.services.sourcing.browser import page_session
from apps.services.sourcing.models import Item


class FakePlaywright:
    def __init__(self, browser):
        self.chromium = self
        self.browser = browser
        self.launch_kwargs = None
        self.stopped = False

    async def launch(self, **kwargs):
        self.launch_kwargs = kwargs
        return self.browser

    async def stop(self):
        self.stopped = True


class FakeLauncher:
    def __init__(self, playwright):
        self.playwright = playwright

    async def start(self):
        return self.playwright


class ClosableBrowser(FakeBrowser):
    closed = False

    async def close(self):
        self.closed = True


@pytest.fixture
def playwright(monkeypatch):
    fake = FakePlaywright(ClosableBrowser())
    monkeypatch.setattr(browser_module, "async_playwright", lambda: FakeLauncher(fake))
    monkeypatch.setattr(runner, "setup_logging", lambda **kwargs: None)
    return fake


@pytest.mark.asyncio
async def test_source_items_runs_every_item_and_closes_browser(playwright, settings):
    items = [Item(id="1", description="Caneta azul"), Item(id="2", description="Papel A4")]
    llm = FakeLLM({"analysis": ["{}"], "open_web": [""]})

    results = await runner.source_items(
        items, FakeMarketplaceScraper(), FakeOpenWebScraper(), settings=settings, llm=llm, headless=True
    )

    assert [r.item_id for r in results] == ["1", "2"]
    assert all(r.winner_index == -1 for r in results)
    assert playwright.launch_kwargs["headless"] is True
    assert playwright.browser.closed
    assert playwright.stopped
    assert playwright.browser.all_closed


@pytest.mark.asyncio
async def test_page_session_survives_close_failure():
    class BrokenPage:
        async def close(self):
            raise RuntimeError("target closed")

    class Browser:
        async def new_page(self):
            return BrokenPage()

    async with page_session(Browser(), owner="test") as page:
        assert isinstance(page, BrokenPage)
