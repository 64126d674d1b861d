import pytest

from libs.core.exceptions import MalformedResponse
from libs.llm.response_parser import parse_json


def test_fenced_block_wins():
    raw = 'Here you go:\n```json\n{"winner_index": 1}\n```\nAnything else?'
    result = parse_json(raw, expect=dict)
    assert result.ok
    assert result.data == {"winner_index": 1}
    assert result.strategy_used == "fenced"


def test_think_block_is_ignored():
    raw = '<think>maybe [0] or {"x": 1}</think>\n[{"index": 0, "risk_score": 2}]'
    result = parse_json(raw, expect=list)
    assert result.data == [{"index": 0, "risk_score": 2}]


def test_array_found_inside_prose():
    raw = 'Verdicts follow. [{"index": 0, "risk_score": 4}] Hope this helps.'
    result = parse_json(raw, expect=list)
    assert result.ok
    assert result.strategy_used == "array_span"


def test_light_repairs():
    raw = "{'selected_indices': [0, 2,], 'confirmed': True, 'model': None}"
    result = parse_json(raw, expect=dict)
    assert result.ok
    assert result.data == {"selected_indices": [0, 2], "confirmed": True, "model": None}
    assert "JSON required repair" in result.warnings


def test_wrong_type_is_a_failure():
    result = parse_json('{"index": 0}', expect=list, default=[])
    assert not result.ok
    assert result.data == []


@pytest.mark.parametrize("raw", [None, "", "   ", "no json here"])
def test_unusable_output_returns_default(raw):
    result = parse_json(raw, default={"fallback": True})
    assert not result.ok
    assert result.data == {"fallback": True}
    assert result.strategy_used == "default"


def test_unwrap_raises_malformed_response():
    with pytest.raises(MalformedResponse):
        parse_json("nothing", expect=dict).unwrap()
    assert parse_json('{"a": 1}').unwrap() == {"a": 1}
