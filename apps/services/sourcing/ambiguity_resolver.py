"""
apps/services/sourcing/ambiguity_resolver.py

Search-backed verification of candidates the validator could not decide.

Risk 5 is the validator's "information missing" verdict. Those candidates
are sent to a search-capable model with the gap named in their reasoning; a
usable answer replaces the risk and prefixes the reasoning with "(Verified)".
Any failure leaves the candidate unchanged.
"""
import logging
from typing import Optional

from libs.core.exceptions import SourcingError, TemplateMissing
from libs.llm.response_parser import parse_json
from apps.services.sourcing.models import UNKNOWN_RISK, Candidate, JobTrace, as_number, clamp_risk
from apps.services.sourcing.prompts import load_template, render_template

logger = logging.getLogger(__name__)

VERIFIER_SYSTEM_PROMPT = "You are a technical product verifier. You answer with JSON only."


def is_ambiguous(candidate: Candidate) -> bool:
    return candidate.risk_score is not None and candidate.risk_score == UNKNOWN_RISK


async def resolve_candidate(
    required_specs: str,
    candidate: Candidate,
    llm,
    item_id: str = "",
) -> Optional[dict]:
    """
    Verify one ambiguous candidate in place.

    Returns:
        The parsed verification payload when it was applied, else None
    """
    try:
        template = load_template("ambiguity_verification")
    except TemplateMissing:
        return None

    prompt = render_template(template, {
        "PRODUCT_TITLE": candidate.title,
        "PRODUCT_LINK": candidate.link,
        "GAP": candidate.reasoning or ", ".join(candidate.data_gaps) or "unspecified",
        "REQUIRED_SPECS": required_specs,
    })
    messages = [
        {"role": "system", "content": VERIFIER_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]

    try:
        response = await llm.complete("verification", messages)
    except SourcingError as e:
        logger.warning(f"[Resolver] [Item {item_id}] Verification unavailable: {e.message}")
        return None

    parsed = parse_json(response.content, expect=dict)
    if not parsed.ok or as_number(parsed.data.get("risk_score")) is None:
        logger.info(f"[Resolver] [Item {item_id}] Unusable verification for {candidate.link}")
        return None

    verification = parsed.data
    candidate.risk_score = clamp_risk(verification["risk_score"])
    candidate.reasoning = f"(Verified) {verification.get('reasoning') or ''}".rstrip()
    logger.info(f"[Resolver] [Item {item_id}] New risk {candidate.risk_score} for {candidate.title[:60]}")
    return verification


async def resolve_ambiguities(
    required_specs: str,
    candidates: list[Candidate],
    llm,
    trace: Optional[JobTrace] = None,
    item_id: str = "",
) -> list[Candidate]:
    """Verify every risk-5 candidate; returns the same list."""
    ambiguous = [c for c in candidates if is_ambiguous(c)]
    if not ambiguous:
        return candidates

    logger.info(f"[Resolver] [Item {item_id}] Verifying {len(ambiguous)} uncertain candidates")
    for candidate in ambiguous:
        verification = await resolve_candidate(required_specs, candidate, llm, item_id)
        if verification is not None and trace:
            trace.thought("verification", verification)

    return candidates
