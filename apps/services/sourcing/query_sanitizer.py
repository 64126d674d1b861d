"""
apps/services/sourcing/query_sanitizer.py

Keeps marketplace queries short.

Marketplace search degrades badly when a whole tender description is dumped
into the search box; queries are capped at a configurable length.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUERY_LENGTH = 60


def sanitize_query(
    query: str,
    known_term: Optional[str] = None,
    max_length: int = DEFAULT_MAX_QUERY_LENGTH,
) -> str:
    """
    Cap a query at `max_length` characters.

    Order of preference for an oversized query:
    1. the known short marketplace term, if it fits
    2. as many whole leading words as fit
    3. hard truncation

    Never returns empty for non-empty input.
    """
    if not query or not query.strip():
        return ""

    sanitized = query.strip()
    if len(sanitized) <= max_length:
        return sanitized

    original_length = len(sanitized)

    if known_term and known_term.strip() and len(known_term.strip()) <= max_length:
        term = known_term.strip()
        logger.info(
            f"[Sanitizer] Query sanitized: {original_length} chars -> {len(term)} chars (using marketplace term)"
        )
        return term

    words = sanitized.split()
    kept = ""
    for word in words:
        candidate = f"{kept} {word}".strip()
        if len(candidate) > max_length:
            break
        kept = candidate

    if not kept:
        kept = sanitized[:max_length].strip()

    logger.info(f"[Sanitizer] Query sanitized: {original_length} chars -> {len(kept)} chars")
    return kept
