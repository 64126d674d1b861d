"""
apps/services/sourcing/selector.py

Final winner choice among viable candidates (risk < 10).

The selection model sees compact summaries and returns winner_index. When it
cannot be used (template, provider, parse, index out of range) a
deterministic fallback picks the lowest (risk, total_price).
"""
import json
import logging
from typing import Any, Optional

from libs.core.exceptions import SourcingError, TemplateMissing
from libs.llm.response_parser import parse_json
from apps.services.sourcing.models import MAX_RISK, Candidate, SelectionResult
from apps.services.sourcing.prompts import load_template, render_template

logger = logging.getLogger(__name__)


def summarize(candidates: list[Candidate]) -> list[dict[str, Any]]:
    return [
        {
            "index": i,
            "title": c.title,
            "total_price": round(c.total_price, 2),
            "condition": c.condition,
            "ai_status": c.ai_status,
            "ai_risk": c.risk_score,
            "brand_model": c.brand_model,
            "price_anomaly": c.price_anomaly,
        }
        for i, c in enumerate(candidates)
    ]


def fallback_selection(candidates: list[Candidate], reason: str = "") -> SelectionResult:
    """Stable sort by (risk asc, total_price asc); pick the first."""
    ranked = sorted(
        range(len(candidates)),
        key=lambda i: (
            candidates[i].risk_score if candidates[i].risk_score is not None else MAX_RISK,
            candidates[i].total_price,
        ),
    )
    reasoning = "Fallback logic: Lowest risk & price."
    if reason:
        reasoning = f"{reasoning} ({reason})"
    return SelectionResult(winner_index=ranked[0], reasoning=reasoning, used_fallback=True)


async def select_best(
    description: str,
    viable: list[Candidate],
    llm,
    max_price: Optional[float] = None,
    quantity: int = 1,
    item_id: str = "",
) -> Optional[SelectionResult]:
    """
    Choose the winner among viable candidates.

    Returns:
        SelectionResult with winner_index relative to `viable`, or None when
        `viable` is empty
    """
    if not viable:
        return None

    try:
        template = load_template("final_selection")
    except TemplateMissing:
        return fallback_selection(viable, "template error")

    prompt = render_template(template, {
        "ITEM_DESCRIPTION": description,
        "MAX_PRICE": f"{max_price:.2f}" if max_price else "Not informed",
        "QUANTITY": quantity,
        "CANDIDATES_JSON": json.dumps(summarize(viable), ensure_ascii=False, indent=2),
    })

    try:
        response = await llm.complete("selection", [{"role": "user", "content": prompt}])
    except SourcingError as e:
        logger.warning(f"[Selector] [Item {item_id}] Provider unavailable: {e.message}")
        return fallback_selection(viable, "provider error")

    parsed = parse_json(response.content, expect=dict)
    if not parsed.ok:
        return fallback_selection(viable, "parse error")

    winner_index = parsed.data.get("winner_index")
    if isinstance(winner_index, bool) or not isinstance(winner_index, int) or not 0 <= winner_index < len(viable):
        logger.warning(f"[Selector] [Item {item_id}] Invalid winner_index {winner_index!r}")
        return fallback_selection(viable, "invalid index")

    reasoning = parsed.data.get("reasoning") or response.reasoning or ""
    return SelectionResult(winner_index=winner_index, reasoning=str(reasoning))
