"""
apps/services/sourcing/strategy_planner.py

"Anchor & lock" query planning.

Three mutually exclusive modes, evaluated in order:
1. detected-model: discovery resolved an exact model -> search the model alone
2. anchored: no model, but a restrictive spec (anchor) -> "name + anchor",
   with the bare commercial name kept as the relaxed query
3. generic: neither -> up to two raw variants, no false-positive protection
"""
import logging
from typing import Optional

from apps.services.sourcing.models import ItemAnalysis, Strategy, StrategyType
from apps.services.sourcing.query_sanitizer import DEFAULT_MAX_QUERY_LENGTH, sanitize_query

logger = logging.getLogger(__name__)

MAX_GENERIC_VARIANTS = 2


def plan_strategies(
    description: str,
    analysis: Optional[ItemAnalysis] = None,
    max_length: int = DEFAULT_MAX_QUERY_LENGTH,
) -> list[Strategy]:
    """
    Build the ordered strategies for an item.

    Every query passes through sanitize_query().
    """
    analysis = analysis or ItemAnalysis.generic(description)
    name = analysis.commercial_name

    if analysis.detected_model:
        query = sanitize_query(analysis.detected_model, max_length=max_length)
        logger.info(f"[Planner] Mode: detected-model -> '{query}'")
        return [Strategy(type=StrategyType.DETECTED_MODEL, query=query)]

    if analysis.anchor and name:
        query = sanitize_query(f"{name} {analysis.anchor}", known_term=name, max_length=max_length)
        relaxed = sanitize_query(name, max_length=max_length)
        logger.info(f"[Planner] Mode: anchored -> '{query}' (relaxed: '{relaxed}')")
        return [Strategy(
            type=StrategyType.ANCHORED,
            query=query,
            anchor=analysis.anchor,
            relaxed_query=relaxed if relaxed != query else None,
        )]

    strategies: list[Strategy] = []
    seen: set[str] = set()
    for term in analysis.search_terms or [description]:
        query = sanitize_query(term, known_term=name, max_length=max_length)
        if not query or query in seen:
            continue
        seen.add(query)
        strategies.append(Strategy(type=StrategyType.GENERIC, query=query))
        if len(strategies) == MAX_GENERIC_VARIANTS:
            break

    if not strategies:
        strategies.append(Strategy(
            type=StrategyType.GENERIC,
            query=sanitize_query(description, known_term=name, max_length=max_length),
        ))

    logger.info(f"[Planner] Mode: generic -> {[s.query for s in strategies]}")
    return strategies
