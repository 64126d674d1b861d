import pytest

from conftest import FakeMarketplaceScraper, FakePage
from libs.core.exceptions import PortalBlocked
from apps.services.sourcing.models import Strategy, StrategyType
from apps.services.sourcing.search_collector import SearchCollector, parse_price


def _generic(query: str) -> Strategy:
    return Strategy(type=StrategyType.GENERIC, query=query)


RESULTS = [
    {"title": "Furadeira A", "price": 120.0, "link": "https://m.example/a"},
    {"title": "Furadeira B", "price": 99.9, "link": "https://m.example/b"},
    {"title": "Sem preço", "price": None, "link": "https://m.example/c"},
    {"title": "Preço zero", "price": 0, "link": "https://m.example/d"},
]


@pytest.mark.asyncio
async def test_repeated_query_is_deduplicated(no_delay):
    scraper = FakeMarketplaceScraper({"furadeira": RESULTS})
    collector = SearchCollector(scraper, no_delay)

    candidates = await collector.collect(FakePage(0), [_generic("furadeira"), _generic("furadeira")])

    assert scraper.queries == ["furadeira", "furadeira"]
    assert [c.link for c in candidates] == ["https://m.example/a", "https://m.example/b"]


@pytest.mark.asyncio
async def test_first_seen_wins_and_order_is_preserved(no_delay):
    scraper = FakeMarketplaceScraper({
        "q1": [{"title": "First", "price": 10, "link": "https://m.example/x"}],
        "q2": [
            {"title": "Second copy", "price": 8, "link": "https://m.example/x"},
            {"title": "Other", "price": 9, "link": "https://m.example/y"},
        ],
    })
    candidates = await SearchCollector(scraper, no_delay).collect(FakePage(0), [_generic("q1"), _generic("q2")])

    assert [c.title for c in candidates] == ["First", "Other"]


@pytest.mark.asyncio
async def test_only_first_two_strategies_run(no_delay):
    scraper = FakeMarketplaceScraper()
    await SearchCollector(scraper, no_delay).collect(
        FakePage(0), [_generic("q1"), _generic("q2"), _generic("q3")]
    )
    assert scraper.queries == ["q1", "q2"]


@pytest.mark.asyncio
async def test_portal_blocked_aborts_remaining_searches(no_delay):
    scraper = FakeMarketplaceScraper({"q1": PortalBlocked("https://m.example/search")})
    collector = SearchCollector(scraper, no_delay)

    with pytest.raises(PortalBlocked):
        await collector.collect(FakePage(0), [_generic("q1"), _generic("q2")])

    assert scraper.queries == ["q1"]
    assert no_delay.current_delay == 0.0


@pytest.mark.asyncio
async def test_other_search_errors_are_skipped(no_delay):
    scraper = FakeMarketplaceScraper({
        "q1": TimeoutError("navigation timeout"),
        "q2": [{"title": "Ok", "price": 50, "link": "https://m.example/ok"}],
    })
    candidates = await SearchCollector(scraper, no_delay).collect(FakePage(0), [_generic("q1"), _generic("q2")])

    assert [c.title for c in candidates] == ["Ok"]


@pytest.mark.asyncio
async def test_anchored_search_relaxes_once_when_empty(no_delay):
    scraper = FakeMarketplaceScraper({
        "Furadeira 500W": [],
        "Furadeira": [{"title": "Furadeira 500W Bosch", "price": 200, "link": "https://m.example/f"}],
    })
    strategy = Strategy(
        type=StrategyType.ANCHORED,
        query="Furadeira 500W",
        anchor="500W",
        relaxed_query="Furadeira",
    )
    candidates = await SearchCollector(scraper, no_delay).collect(FakePage(0), [strategy])

    assert scraper.queries == ["Furadeira 500W", "Furadeira"]
    assert len(candidates) == 1


@pytest.mark.asyncio
async def test_anchored_search_with_results_does_not_relax(no_delay):
    scraper = FakeMarketplaceScraper({
        "Furadeira 500W": [{"title": "Furadeira 500W", "price": 200, "link": "https://m.example/f"}],
    })
    strategy = Strategy(type=StrategyType.ANCHORED, query="Furadeira 500W", relaxed_query="Furadeira")
    await SearchCollector(scraper, no_delay).collect(FakePage(0), [strategy])

    assert scraper.queries == ["Furadeira 500W"]


@pytest.mark.asyncio
async def test_used_listings_are_dropped_when_new_required(no_delay):
    results = [
        {"title": "Novo", "price": 100, "link": "https://m.example/n", "condition": "new"},
        {"title": "Usado", "price": 60, "link": "https://m.example/u", "condition": "Used"},
        {"title": "Recondicionado", "price": 70, "link": "https://m.example/r", "condition": "refurbished"},
    ]
    strict = await SearchCollector(FakeMarketplaceScraper({"q": results}), no_delay).collect(
        FakePage(0), [_generic("q")]
    )
    lenient = await SearchCollector(FakeMarketplaceScraper({"q": results}), no_delay, require_new=False).collect(
        FakePage(0), [_generic("q")]
    )

    assert [c.title for c in strict] == ["Novo"]
    assert len(lenient) == 3


def test_parse_price_labels():
    assert parse_price(99.9) == 99.9
    assert parse_price("R$ 1.299,90") == 1299.90
    assert parse_price("149.50") == 149.50
    assert parse_price("R$ 1.299") == 1299.0
    assert parse_price("R$ 12.500.000") == 12500000.0
    assert parse_price("US$ 1,299.90") == 1299.90
    assert parse_price("1,250,000") == 1250000.0
    assert parse_price("R$ 89,90") == 89.90
    assert parse_price("sob consulta") is None
    assert parse_price(0) is None
    assert parse_price(True) is None
