"""
apps/services/sourcing/models.py

Data model for the sourcing pipeline.

An Item is the procurement line being quoted. Candidates are marketplace (or
open-web) listings collected for it; they are mutated in place as they move
through anomaly flagging, enrichment, validation and ambiguity resolution.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

MIN_RISK = 0
MAX_RISK = 10
# Validator's "information missing" verdict; routed to the AmbiguityResolver
UNKNOWN_RISK = 5


def as_number(value: Any) -> Optional[float]:
    """Parse a provider-supplied score; None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return number


def clamp_risk(value: Any, default: float = MAX_RISK) -> float:
    """Coerce a provider-supplied score into [0, 10]; unusable values become `default`."""
    number = as_number(value)
    if number is None:
        return default
    clamped = max(MIN_RISK, min(MAX_RISK, number))
    return int(clamped) if clamped == int(clamped) else clamped


def normalize_fingerprint(text: str) -> str:
    """Lower-case and collapse whitespace."""
    return re.sub(r"\s+", " ", text or "").strip().lower()


@dataclass(frozen=True)
class Item:
    """Procurement item being quoted. Immutable for the job's lifetime."""

    id: str
    description: str
    max_price: Optional[float] = None
    quantity: int = 1
    region: Optional[str] = None


class AnalysisStrategy(str, Enum):
    """Discovery verdict on how specific the item is."""

    SPECIFIC_BRAND = "SPECIFIC_BRAND"
    GENERIC_OPTIMIZED = "GENERIC_OPTIMIZED"


@dataclass
class ItemAnalysis:
    """What discovery learned about an item before searching."""

    strategy: AnalysisStrategy
    commercial_name: str
    anchor: Optional[str] = None
    detected_model: Optional[str] = None
    search_terms: list[str] = field(default_factory=list)
    negative_terms: list[str] = field(default_factory=list)
    required_specs: list[str] = field(default_factory=list)

    @classmethod
    def generic(cls, description: str) -> "ItemAnalysis":
        """Analysis used when discovery is unavailable."""
        return cls(
            strategy=AnalysisStrategy.GENERIC_OPTIMIZED,
            commercial_name=description[:50].strip(),
            search_terms=[description],
        )


class StrategyType(str, Enum):
    """Search strategy modes, in order of precedence."""

    DETECTED_MODEL = "detected-model"
    ANCHORED = "anchored"
    GENERIC = "generic"


@dataclass(frozen=True)
class Strategy:
    """A single planned marketplace query."""

    type: StrategyType
    query: str
    anchor: Optional[str] = None
    relaxed_query: Optional[str] = None


@dataclass
class Candidate:
    """
    A marketplace or open-web listing under evaluation.

    total_price is derived from price + shipping_cost, so it can never go stale
    after enrichment mutates shipping.
    """

    title: str
    link: str
    price: float
    shipping_cost: float = 0.0
    attributes: dict[str, Any] = field(default_factory=dict)
    seller: Optional[str] = None
    description: str = ""
    raw_fingerprint: str = ""
    normalized_fingerprint: str = ""
    condition: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    gtin: Optional[str] = None
    mpn: Optional[str] = None
    price_anomaly: bool = False
    anomaly_reason: Optional[str] = None
    risk_score: Optional[float] = None
    technical_score: Optional[float] = None
    ai_status: Optional[str] = None
    reasoning: Optional[str] = None
    brand_model: Optional[str] = None
    brand_mismatch: bool = False
    dimension_mismatch: bool = False
    data_gaps: list[str] = field(default_factory=list)
    source: str = "marketplace"

    @property
    def total_price(self) -> float:
        return (self.price or 0.0) + (self.shipping_cost or 0.0)

    @property
    def is_viable(self) -> bool:
        """Eligible to win: validated and not rejected."""
        return self.risk_score is not None and self.risk_score < MAX_RISK

    def set_fingerprint(self, include_description: bool = True) -> None:
        """Build raw/normalized fingerprint from title (+ description)."""
        raw = self.title
        if include_description and self.description:
            raw = f"{self.title}\n{self.description}"
        self.raw_fingerprint = raw
        self.normalized_fingerprint = normalize_fingerprint(raw)

    def apply_verdict(self, verdict: "ValidationVerdict") -> None:
        """Copy a validator verdict onto the candidate."""
        self.risk_score = verdict.risk_score
        self.technical_score = verdict.technical_score
        self.ai_status = verdict.status
        self.reasoning = verdict.reasoning
        self.brand_mismatch = verdict.brand_mismatch
        self.dimension_mismatch = verdict.dimension_mismatch
        self.data_gaps = list(verdict.data_gaps)
        if verdict.brand_model:
            self.brand_model = verdict.brand_model

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "link": self.link,
            "price": self.price,
            "shipping_cost": self.shipping_cost,
            "total_price": self.total_price,
            "seller": self.seller,
            "condition": self.condition,
            "brand_model": self.brand_model,
            "price_anomaly": self.price_anomaly,
            "anomaly_reason": self.anomaly_reason,
            "risk_score": self.risk_score,
            "technical_score": self.technical_score,
            "ai_status": self.ai_status,
            "reasoning": self.reasoning,
            "source": self.source,
        }


@dataclass
class ValidationVerdict:
    """One validator verdict, keyed by batch-local index."""

    index: int
    status: str
    risk_score: float
    reasoning: str = ""
    technical_score: Optional[float] = None
    brand_mismatch: bool = False
    dimension_mismatch: bool = False
    data_gaps: list[str] = field(default_factory=list)
    brand_model: Optional[str] = None

    @classmethod
    def failed(cls, index: int, reasoning: str = "Validation failed") -> "ValidationVerdict":
        """Fail-closed verdict."""
        return cls(index=index, status="Erro", risk_score=MAX_RISK, reasoning=reasoning)

    @classmethod
    def from_payload(cls, index: int, payload: dict[str, Any]) -> "ValidationVerdict":
        """
        Build a verdict from a provider JSON object.

        technical_score (0=bad, 10=perfect) wins over risk_score and is inverted.
        """
        technical = as_number(payload.get("technical_score"))
        if technical is not None:
            technical_score = clamp_risk(technical)
            risk = clamp_risk(MAX_RISK - technical_score)
        else:
            technical_score = None
            risk = clamp_risk(payload.get("risk_score"))

        gaps = payload.get("data_gaps") or []
        if isinstance(gaps, str):
            gaps = [gaps]

        return cls(
            index=index,
            status=str(payload.get("status") or "Unknown"),
            risk_score=risk,
            reasoning=str(payload.get("reasoning") or ""),
            technical_score=technical_score,
            brand_mismatch=bool(payload.get("is_brand_mismatch", False)),
            dimension_mismatch=bool(payload.get("is_dimension_mismatch", False)),
            data_gaps=[str(g) for g in gaps],
            brand_model=payload.get("brand_model"),
        )


@dataclass
class SelectionResult:
    """Selector output; winner_index is relative to the viable set."""

    winner_index: int
    reasoning: str
    used_fallback: bool = False


@dataclass
class PipelineResult:
    """Outcome of one pipeline run for one item."""

    item_id: str
    description: str
    target_price: Optional[float]
    quantity: int
    candidates: list[Candidate] = field(default_factory=list)
    winner_index: int = -1
    strategy: Optional[str] = None

    @property
    def winner(self) -> Optional[Candidate]:
        if 0 <= self.winner_index < len(self.candidates):
            return self.candidates[self.winner_index]
        return None

    @classmethod
    def empty(cls, item: Item, strategy: Optional[str] = None) -> "PipelineResult":
        """No offer: empty candidates, winner -1."""
        return cls(
            item_id=item.id,
            description=item.description,
            target_price=item.max_price,
            quantity=item.quantity,
            strategy=strategy,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.item_id,
            "description": self.description,
            "target_price": self.target_price,
            "quantity": self.quantity,
            "offers": [c.to_dict() for c in self.candidates],
            "winner_index": self.winner_index,
            "strategy": self.strategy,
        }


@dataclass
class SourcingJob:
    """One unit of work: an item and the shared browser its page comes from."""

    item: Item
    browser: Any


@dataclass
class TraceEntry:
    stage: str
    payload: Any
    timestamp: float = field(default_factory=time.time)


@dataclass
class JobTrace:
    """Structured per-job "thoughts" for the harness (filter, validation, selection...)."""

    item_id: str
    entries: list[TraceEntry] = field(default_factory=list)

    def thought(self, stage: str, payload: Any) -> None:
        self.entries.append(TraceEntry(stage=stage, payload=payload))
        logger.debug(f"[Trace] [Item {self.item_id}] {stage}: {payload}")

    def stages(self) -> list[str]:
        return [e.stage for e in self.entries]
