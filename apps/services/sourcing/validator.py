"""
apps/services/sourcing/validator.py

AI risk validation of enriched candidates.

Candidates are sent in batches; the model answers a JSON array of verdicts
keyed by batch-local index. Fails closed: anything that prevents a verdict
(template, provider, malformed output, missing entry) yields risk 10.
Never raises to the caller.
"""
import json
import logging
import unicodedata
from typing import Any, Optional

from libs.core.exceptions import SourcingError, TemplateMissing
from libs.llm.response_parser import parse_json
from apps.services.sourcing.models import MAX_RISK, Candidate, ItemAnalysis, JobTrace, ValidationVerdict
from apps.services.sourcing.prompts import load_template, render_template

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_DESCRIPTION_CHARS = 500


def build_batch_payload(
    item_spec: str,
    batch: list[Candidate],
    description_chars: int = DEFAULT_DESCRIPTION_CHARS,
) -> dict[str, Any]:
    return {
        "item_spec": item_spec,
        "candidates": [
            {
                "index": j,
                "title": c.title,
                "attributes": c.attributes,
                "condition": c.condition,
                "description": (c.description or "")[:description_chars],
            }
            for j, c in enumerate(batch)
        ],
    }


def verdicts_from_output(raw: Optional[str], batch_size: int) -> list[ValidationVerdict]:
    """Map provider output to one verdict per batch position (fail-closed)."""
    parsed = parse_json(raw, expect=list, default=[])
    if not parsed.ok:
        return [ValidationVerdict.failed(j, "AI Error: Invalid JSON response") for j in range(batch_size)]

    by_index: dict[int, dict[str, Any]] = {}
    for entry in parsed.data:
        if not isinstance(entry, dict):
            continue
        index = entry.get("index")
        if isinstance(index, int) and not isinstance(index, bool) and index not in by_index:
            by_index[index] = entry

    verdicts = []
    for j in range(batch_size):
        entry = by_index.get(j)
        if entry is None:
            verdicts.append(ValidationVerdict.failed(j, "No verdict returned for candidate"))
        else:
            verdicts.append(ValidationVerdict.from_payload(j, entry))
    return verdicts


async def validate_batch(
    item_spec: str,
    batch: list[Candidate],
    llm,
    description_chars: int = DEFAULT_DESCRIPTION_CHARS,
    item_id: str = "",
) -> list[ValidationVerdict]:
    """Validate one batch; always returns len(batch) verdicts."""
    if not batch:
        return []

    try:
        template = load_template("batch_validation")
    except TemplateMissing:
        return [ValidationVerdict.failed(j, "Template error") for j in range(len(batch))]

    payload = build_batch_payload(item_spec, batch, description_chars)
    prompt = render_template(template, {
        "INPUT_JSON": json.dumps(payload, ensure_ascii=False, indent=2),
    })

    try:
        response = await llm.complete("validation", [{"role": "user", "content": prompt}])
    except SourcingError as e:
        logger.warning(f"[Validator] [Item {item_id}] Batch failed closed: {e.message}")
        return [ValidationVerdict.failed(j, f"Provider error: {e.message}") for j in range(len(batch))]

    return verdicts_from_output(response.content, len(batch))


def item_spec_text(description: str, analysis: Optional[ItemAnalysis] = None) -> str:
    """Item description plus the critical specs discovery extracted."""
    if analysis is None or not analysis.required_specs:
        return description
    return f"{description}\nCritical specs: {'; '.join(analysis.required_specs)}"


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def reject_kill_words(
    candidates: list[Candidate],
    negative_terms: list[str],
    trace: Optional[JobTrace] = None,
    item_id: str = "",
) -> list[Candidate]:
    """
    Reject candidates whose fingerprint contains a negative term.

    Matching is case and accent insensitive. Rejected candidates get risk 10
    in place and stay in the caller's list.

    Returns:
        The candidates that still need validation, in order
    """
    terms = [(term, _fold(term.strip())) for term in negative_terms if term and term.strip()]
    if not terms:
        return list(candidates)

    remaining = []
    for candidate in candidates:
        haystack = _fold(candidate.normalized_fingerprint or candidate.title)
        hit = next((term for term, folded in terms if folded in haystack), None)
        if hit is None:
            remaining.append(candidate)
            continue

        candidate.risk_score = MAX_RISK
        candidate.ai_status = "Rejected"
        candidate.reasoning = f"Kill-word match: {hit}"
        logger.info(f"[Validator] [Item {item_id}] Kill-word '{hit}': {candidate.title[:60]}")
        if trace:
            trace.thought("validation", {
                "title": candidate.title,
                "risk": candidate.risk_score,
                "reasoning": candidate.reasoning,
            })

    return remaining


async def validate_candidates(
    item_spec: str,
    candidates: list[Candidate],
    llm,
    batch_size: int = DEFAULT_BATCH_SIZE,
    description_chars: int = DEFAULT_DESCRIPTION_CHARS,
    trace: Optional[JobTrace] = None,
    item_id: str = "",
) -> list[Candidate]:
    """
    Validate candidates in batches, applying verdicts in place.

    Returns:
        The same candidates, each with risk_score in [0, 10]
    """
    for start in range(0, len(candidates), batch_size):
        batch = candidates[start:start + batch_size]
        logger.info(
            f"[Validator] [Item {item_id}] Validating batch {start + 1}-{start + len(batch)}"
        )
        verdicts = await validate_batch(item_spec, batch, llm, description_chars, item_id)

        for candidate, verdict in zip(batch, verdicts):
            candidate.apply_verdict(verdict)
            logger.debug(f"[Validator] [Item {item_id}] Risk {candidate.risk_score}: {candidate.title[:60]}")
            if trace:
                trace.thought("validation", {
                    "title": candidate.title,
                    "risk": candidate.risk_score,
                    "reasoning": candidate.reasoning,
                })

    return candidates


async def validate_one(
    item_spec: str,
    candidate: Candidate,
    llm,
    description_chars: int = DEFAULT_DESCRIPTION_CHARS,
    item_id: str = "",
) -> Candidate:
    """Validate a single candidate (batch of one)."""
    verdicts = await validate_batch(item_spec, [candidate], llm, description_chars, item_id)
    candidate.apply_verdict(verdicts[0])
    return candidate
