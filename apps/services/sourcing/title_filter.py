"""
apps/services/sourcing/title_filter.py

Cheap title screening before the expensive detail fetches.

The model sees only "[index] title - price" lines and returns the indices
worth enriching. On template, provider or parse failure every candidate
passes through.
"""
import logging
from typing import Optional

from libs.core.exceptions import ProviderUnavailable, TemplateMissing
from libs.llm.response_parser import parse_json
from apps.services.sourcing.models import Candidate, JobTrace
from apps.services.sourcing.prompts import load_template, render_template

logger = logging.getLogger(__name__)


def format_candidates_list(candidates: list[Candidate]) -> str:
    lines = []
    for i, c in enumerate(candidates):
        flag = " [PRICE ANOMALY]" if c.price_anomaly else ""
        lines.append(f"[{i}] {c.title} - {c.price:.2f}{flag}")
    return "\n".join(lines)


async def filter_titles(
    required_specs: str,
    candidates: list[Candidate],
    llm,
    trace: Optional[JobTrace] = None,
    item_id: str = "",
) -> list[Candidate]:
    """
    Keep the candidates whose titles plausibly match the item.

    Returns:
        Subset of `candidates` in their original order
    """
    if not candidates:
        return candidates

    try:
        template = load_template("title_filtering")
    except TemplateMissing:
        return candidates

    prompt = render_template(template, {
        "REQUIRED_SPECS": required_specs,
        "CANDIDATES_LIST": format_candidates_list(candidates),
    })

    try:
        response = await llm.complete("title_filter", [{"role": "user", "content": prompt}])
    except ProviderUnavailable as e:
        logger.warning(f"[TitleFilter] [Item {item_id}] Provider unavailable, keeping all: {e.message}")
        return candidates

    parsed = parse_json(response.content, expect=dict)
    indices = parsed.data.get("selected_indices") if parsed.ok else None
    if not isinstance(indices, list):
        logger.warning(f"[TitleFilter] [Item {item_id}] No usable selection, keeping all")
        return candidates

    selected = {i for i in indices if isinstance(i, int) and not isinstance(i, bool)}
    kept = [c for i, c in enumerate(candidates) if i in selected]

    reasoning = parsed.data.get("reasoning") or response.reasoning or "Filtered by AI"
    logger.info(f"[TitleFilter] [Item {item_id}] Kept {len(kept)}/{len(candidates)} candidates")
    if trace:
        trace.thought("filter", {"selected_indices": sorted(selected), "reasoning": reasoning})
    return kept
