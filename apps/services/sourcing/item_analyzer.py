"""
apps/services/sourcing/item_analyzer.py

Discovery: understand the item before searching.

Asks the analysis model for the commercial name, the anchor spec and (when it
is certain) the exact model that satisfies the tender. Any failure yields a
generic analysis so the pipeline can still search on the raw description.
"""
import logging
from typing import Any, Optional

from libs.core.exceptions import MalformedResponse, ProviderUnavailable, TemplateMissing
from libs.llm.response_parser import parse_json
from apps.services.sourcing.models import AnalysisStrategy, Item, ItemAnalysis, JobTrace
from apps.services.sourcing.prompts import load_template, render_template

logger = logging.getLogger(__name__)

MAX_COMMERCIAL_NAME_WORDS = 7

# Placeholder values models return instead of null
_NON_MODELS = {"", "n/a", "na", "none", "null", "unknown", "generic", "generico", "genérico"}


def _clean_terms(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _clean_optional(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().strip('"').strip()
    if text.lower() in _NON_MODELS:
        return None
    return text


def analysis_from_payload(description: str, payload: dict[str, Any]) -> ItemAnalysis:
    """Normalize a discovery JSON object into an ItemAnalysis."""
    try:
        strategy = AnalysisStrategy(str(payload.get("strategy", "")).upper())
    except ValueError:
        strategy = AnalysisStrategy.GENERIC_OPTIMIZED

    commercial_name = _clean_optional(payload.get("commercial_name"))
    if commercial_name:
        commercial_name = " ".join(commercial_name.split()[:MAX_COMMERCIAL_NAME_WORDS])
    else:
        commercial_name = description[:50].strip()

    detected_model = _clean_optional(payload.get("detected_model"))
    if strategy == AnalysisStrategy.GENERIC_OPTIMIZED:
        detected_model = None

    search_terms = _clean_terms(payload.get("search_terms")) or [description]

    return ItemAnalysis(
        strategy=strategy,
        commercial_name=commercial_name,
        anchor=_clean_optional(payload.get("anchor")),
        detected_model=detected_model,
        search_terms=search_terms,
        negative_terms=_clean_terms(payload.get("negative_terms")),
        required_specs=_clean_terms(payload.get("required_specs")),
    )


async def analyze_item(item: Item, llm, trace: Optional[JobTrace] = None) -> ItemAnalysis:
    """
    Run discovery for an item.

    Args:
        item: Item being quoted
        llm: Router exposing complete(role, messages)
        trace: Optional job trace

    Returns:
        ItemAnalysis (generic fallback on any failure)
    """
    fallback = ItemAnalysis.generic(item.description)

    try:
        template = load_template("item_analysis")
    except TemplateMissing:
        return fallback

    prompt = render_template(template, {"DESCRIPTION": item.description})

    try:
        response = await llm.complete("analysis", [{"role": "user", "content": prompt}])
    except ProviderUnavailable as e:
        logger.warning(f"[Analyzer] [Item {item.id}] Discovery unavailable: {e.message}")
        return fallback

    try:
        payload = parse_json(response.content, expect=dict).unwrap()
    except MalformedResponse:
        logger.warning(f"[Analyzer] [Item {item.id}] Unparsable discovery output, using generic analysis")
        return fallback

    analysis = analysis_from_payload(item.description, payload)
    logger.info(
        f"[Analyzer] [Item {item.id}] strategy={analysis.strategy.value} "
        f"name='{analysis.commercial_name}' anchor={analysis.anchor} model={analysis.detected_model}"
    )
    if trace:
        trace.thought("discovery", {
            "strategy": analysis.strategy.value,
            "commercial_name": analysis.commercial_name,
            "anchor": analysis.anchor,
            "detected_model": analysis.detected_model,
        })
    return analysis
