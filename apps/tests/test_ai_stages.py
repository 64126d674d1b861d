import json

import pytest

from conftest import FakeLLM
from libs.core.exceptions import ProviderUnavailable, TemplateMissing
from apps.services.sourcing import selector, title_filter, validator
from apps.services.sourcing.ambiguity_resolver import resolve_ambiguities
from apps.services.sourcing.models import Candidate, ItemAnalysis
from apps.services.sourcing.selector import fallback_selection, select_best
from apps.services.sourcing.title_filter import filter_titles
from apps.services.sourcing.validator import validate_candidates


def _candidates(n: int) -> list[Candidate]:
    return [
        Candidate(title=f"Furadeira {i}", link=f"https://m.example/{i}", price=100.0 + i, description="d" * 900)
        for i in range(n)
    ]


def _raise_missing(name, *args, **kwargs):
    raise TemplateMissing(name)


# =============================================================================
# Validator
# =============================================================================


@pytest.mark.asyncio
async def test_validator_missing_entries_fail_closed():
    llm = FakeLLM({"validation": [json.dumps([
        {"index": 0, "status": "Compatible", "technical_score": 10, "reasoning": "all specs"},
        {"index": 2, "status": "Missing info", "risk_score": 5, "reasoning": "voltage not informed"},
    ])]})
    candidates = _candidates(3)

    await validate_candidates("Furadeira 500W", candidates, llm)

    assert [c.risk_score for c in candidates] == [0, 10, 5]
    assert candidates[1].ai_status == "Erro"
    assert candidates[0].technical_score == 10


@pytest.mark.asyncio
async def test_validator_batches_and_truncates_descriptions():
    def answer(messages):
        payload = json.loads(messages[0]["content"].split("Input:\n\n", 1)[1].split("\n\nReturn ONLY", 1)[0])
        assert all(len(c["description"]) == 500 for c in payload["candidates"])
        return json.dumps([{"index": c["index"], "risk_score": 2} for c in payload["candidates"]])

    llm = FakeLLM({"validation": [answer]})
    candidates = _candidates(7)

    await validate_candidates("Furadeira 500W", candidates, llm, batch_size=5)

    assert len(llm.calls_for("validation")) == 2
    assert all(c.risk_score == 2 for c in candidates)


@pytest.mark.asyncio
@pytest.mark.parametrize("output", [
    "I could not evaluate these products.",
    '{"index": 0, "risk_score": 1}',
    "",
])
async def test_validator_unusable_output_rejects_batch(output):
    llm = FakeLLM({"validation": [output]})
    candidates = _candidates(2)

    await validate_candidates("Furadeira 500W", candidates, llm)

    assert [c.risk_score for c in candidates] == [10, 10]


@pytest.mark.asyncio
async def test_validator_provider_error_rejects_batch():
    llm = FakeLLM({"validation": [ProviderUnavailable("HTTP 500", provider="deepseek", status_code=500)]})
    candidates = _candidates(2)

    await validate_candidates("Furadeira 500W", candidates, llm)

    assert [c.risk_score for c in candidates] == [10, 10]


@pytest.mark.asyncio
async def test_validator_template_missing_rejects_batch(monkeypatch):
    monkeypatch.setattr(validator, "load_template", _raise_missing)
    llm = FakeLLM({"validation": ["[]"]})
    candidates = _candidates(2)

    await validate_candidates("Furadeira 500W", candidates, llm)

    assert [c.risk_score for c in candidates] == [10, 10]
    assert llm.calls == []


def test_kill_words_reject_before_validation():
    used = Candidate(title="Furadeira Bosch", link="https://m.example/u", price=80.0, description="Peça RECONDICIONADA")
    used.set_fingerprint()
    new = Candidate(title="Furadeira Bosch", link="https://m.example/n", price=90.0, description="Nova na caixa")
    new.set_fingerprint()
    unenriched = Candidate(title="Furadeira com defeito", link="https://m.example/d", price=40.0)

    remaining = validator.reject_kill_words([used, new, unenriched], ["recondicionada", "  ", "Defeito"])

    assert remaining == [new]
    assert used.risk_score == 10
    assert used.ai_status == "Rejected"
    assert used.reasoning == "Kill-word match: recondicionada"
    assert unenriched.reasoning == "Kill-word match: Defeito"
    assert not used.is_viable
    assert new.risk_score is None


def test_kill_words_empty_list_keeps_everything():
    candidates = _candidates(3)
    assert validator.reject_kill_words(candidates, []) == candidates
    assert all(c.risk_score is None for c in candidates)


def test_item_spec_text_appends_required_specs():
    analysis = ItemAnalysis.generic("Furadeira 500W")
    assert validator.item_spec_text("Furadeira 500W", analysis) == "Furadeira 500W"
    analysis.required_specs = ["500W", "220V"]
    assert validator.item_spec_text("Furadeira 500W", analysis) == "Furadeira 500W\nCritical specs: 500W; 220V"


# =============================================================================
# Ambiguity resolver
# =============================================================================


@pytest.mark.asyncio
async def test_resolver_updates_unknown_candidates_only():
    llm = FakeLLM({"verification": ['```json\n{"confirmed": true, "risk_score": 0, "reasoning": "ok"}\n```']})
    unknown, confident = _candidates(2)
    unknown.risk_score, unknown.reasoning = 5, "voltage not informed"
    confident.risk_score, confident.reasoning = 3, "fine"

    await resolve_ambiguities("Furadeira 500W", [unknown, confident], llm)

    assert unknown.risk_score == 0
    assert unknown.reasoning == "(Verified) ok"
    assert confident.risk_score == 3
    assert len(llm.calls_for("verification")) == 1
    assert "voltage not informed" in llm.calls_for("verification")[0][1]["content"]


@pytest.mark.asyncio
@pytest.mark.parametrize("script", [
    ["Sorry, I could not find this product."],
    ['{"confirmed": false}'],
    [ProviderUnavailable("timeout", provider="perplexity")],
])
async def test_resolver_leaves_candidate_unchanged(script):
    llm = FakeLLM({"verification": script})
    candidate = _candidates(1)[0]
    candidate.risk_score, candidate.reasoning = 5, "voltage not informed"

    await resolve_ambiguities("Furadeira 500W", [candidate], llm)

    assert candidate.risk_score == 5
    assert candidate.reasoning == "voltage not informed"


@pytest.mark.asyncio
async def test_resolver_clamps_risk():
    llm = FakeLLM({"verification": ['{"risk_score": 40, "reasoning": "used item"}']})
    candidate = _candidates(1)[0]
    candidate.risk_score = 5

    await resolve_ambiguities("Furadeira 500W", [candidate], llm)

    assert candidate.risk_score == 10


# =============================================================================
# Selector
# =============================================================================


def _viable() -> list[Candidate]:
    a = Candidate(title="A", link="https://m.example/a", price=100.0)
    b = Candidate(title="B", link="https://m.example/b", price=90.0)
    c = Candidate(title="C", link="https://m.example/c", price=80.0)
    a.risk_score, b.risk_score, c.risk_score = 1, 1, 3
    return [a, b, c]


def test_fallback_picks_lowest_risk_then_price():
    result = fallback_selection(_viable())
    assert result.winner_index == 1
    assert result.used_fallback is True


@pytest.mark.asyncio
async def test_selector_uses_model_choice():
    llm = FakeLLM({"selection": ['{"winner_index": 2, "reasoning": "cheapest acceptable"}']})

    result = await select_best("Furadeira", _viable(), llm, max_price=150.0, quantity=2)

    assert result.winner_index == 2
    assert result.reasoning == "cheapest acceptable"
    assert result.used_fallback is False
    prompt = llm.calls_for("selection")[0][0]["content"]
    assert "150.00" in prompt


@pytest.mark.asyncio
@pytest.mark.parametrize("script", [
    ['{"winner_index": 7}'],
    ['{"winner_index": "1"}'],
    ['{"reasoning": "no index"}'],
    ["B is the best"],
    [ProviderUnavailable("HTTP 429", provider="deepseek", status_code=429)],
])
async def test_selector_falls_back(script):
    llm = FakeLLM({"selection": script})

    result = await select_best("Furadeira", _viable(), llm)

    assert result.winner_index == 1
    assert result.used_fallback is True


@pytest.mark.asyncio
async def test_selector_template_missing_falls_back(monkeypatch):
    monkeypatch.setattr(selector, "load_template", _raise_missing)

    result = await select_best("Furadeira", _viable(), FakeLLM())

    assert result.winner_index == 1
    assert result.used_fallback is True


@pytest.mark.asyncio
async def test_selector_empty_viable_set():
    assert await select_best("Furadeira", [], FakeLLM()) is None


# =============================================================================
# Title filter
# =============================================================================


@pytest.mark.asyncio
async def test_title_filter_keeps_selected_in_order():
    llm = FakeLLM({"title_filter": ['{"selected_indices": [2, 0], "reasoning": "drills only"}']})
    candidates = _candidates(3)

    kept = await filter_titles("Furadeira 500W", candidates, llm)

    assert kept == [candidates[0], candidates[2]]


@pytest.mark.asyncio
@pytest.mark.parametrize("script", [
    ["not json"],
    ['{"reasoning": "no indices"}'],
    [ProviderUnavailable("HTTP 503", provider="deepseek", status_code=503)],
])
async def test_title_filter_passes_everything_on_failure(script):
    candidates = _candidates(3)

    kept = await filter_titles("Furadeira 500W", candidates, FakeLLM({"title_filter": script}))

    assert kept == candidates


@pytest.mark.asyncio
async def test_title_filter_template_missing_passes_everything(monkeypatch):
    monkeypatch.setattr(title_filter, "load_template", _raise_missing)
    candidates = _candidates(2)

    assert await filter_titles("Furadeira 500W", candidates, FakeLLM()) == candidates
