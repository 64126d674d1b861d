# conftest.py
# Ensure the repository root is on sys.path so pytest can import the namespace
# packages (apps.services.sourcing, libs.core, libs.llm) consistently, and
# provide in-memory fakes for the pipeline's external collaborators.

import sys
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pytest

# conftest is at: apps/tests/conftest.py
# Walk up two levels to reach the repository root.
ROOT = Path(__file__).resolve().parents[2]
ROOT_STR = str(ROOT)

if ROOT_STR not in sys.path:
    # Insert at front so repo root takes precedence during imports
    sys.path.insert(0, ROOT_STR)

from libs.core.config import Settings  # noqa: E402
from libs.core.exceptions import ProviderUnavailable  # noqa: E402
from libs.llm.client import GenerationResponse  # noqa: E402
from apps.services.sourcing.scheduler import NoDelay, RequestScheduler  # noqa: E402


class FakePage:
    def __init__(self, number: int):
        self.number = number
        self.closed = False

    async def close(self):
        self.closed = True


class FakeBrowser:
    """Hands out FakePages and remembers them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.pages: list[FakePage] = []

    async def new_page(self):
        if self.fail:
            raise RuntimeError("browser crashed")
        page = FakePage(len(self.pages))
        self.pages.append(page)
        return page

    @property
    def all_closed(self) -> bool:
        return all(p.closed for p in self.pages)


class FakeMarketplaceScraper:
    """
    Scripted marketplace.

    search_results: query -> list of result dicts, or an Exception to raise
    details: link -> details dict, or an Exception to raise
    """

    def __init__(
        self,
        search_results: Optional[dict[str, Any]] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.search_results = search_results or {}
        self.details = details or {}
        self.queries: list[str] = []
        self.detail_links: list[str] = []

    async def search(self, page, query: str):
        self.queries.append(query)
        result = self.search_results.get(query, [])
        if isinstance(result, Exception):
            raise result
        return [dict(r) for r in result]

    async def fetch_details(self, page, link: str, region: str):
        self.detail_links.append(link)
        result = self.details.get(link, {"shipping_cost": 0.0})
        if isinstance(result, Exception):
            raise result
        return dict(result)


class FakeOpenWebScraper:
    def __init__(self, pages: Optional[dict[str, Any]] = None):
        self.pages = pages or {}
        self.visited: list[str] = []

    async def scrape(self, page, link: str):
        self.visited.append(link)
        result = self.pages.get(link, {})
        if isinstance(result, Exception):
            raise result
        return dict(result)


Scripted = Union[str, Exception, Callable[[list[dict[str, str]]], str]]


class FakeLLM:
    """
    Scripted stand-in for ModelRouter.complete(role, messages).

    responses: role -> list of outputs consumed in order (the last one
    repeats). Output may be a string, an Exception to raise, or a callable
    receiving the messages. Unscripted roles raise ProviderUnavailable.
    """

    def __init__(self, responses: Optional[dict[str, list[Scripted]]] = None):
        self.responses = {role: list(outputs) for role, outputs in (responses or {}).items()}
        self.calls: list[tuple[str, list[dict[str, str]]]] = []

    def calls_for(self, role: str) -> list[list[dict[str, str]]]:
        return [messages for r, messages in self.calls if r == role]

    async def complete(self, role: str, messages: list[dict[str, str]]) -> GenerationResponse:
        self.calls.append((role, [dict(m) for m in messages]))
        outputs = self.responses.get(role)
        if not outputs:
            raise ProviderUnavailable(f"No scripted response for {role}", provider="fake")
        output = outputs.pop(0) if len(outputs) > 1 else outputs[0]
        if isinstance(output, Exception):
            raise output
        if callable(output):
            output = output(messages)
        return GenerationResponse(content=output, model="fake-model", provider="fake")


@pytest.fixture
def settings() -> Settings:
    """Settings with scheduler delays disabled."""
    base = Settings()
    sourcing = base.sourcing.model_copy(update={"search_delay_s": 0.0, "detail_delay_s": 0.0})
    return base.model_copy(update={"sourcing": sourcing})


@pytest.fixture
def no_delay() -> RequestScheduler:
    return RequestScheduler(NoDelay(), name="test")


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()
