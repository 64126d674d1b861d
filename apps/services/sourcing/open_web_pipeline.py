"""
apps/services/sourcing/open_web_pipeline.py

Secondary pipeline: search-capable model hunts direct product links on the
open web, with a validator feedback loop.

Each round:
1. ask the model (full message history) for a JSON array of offers
2. scrape each link on a fresh page (released when the round ends)
3. validate each offer on its own; risk < accept_below is accepted
4. accepted offers end the loop; otherwise rejection reasons go back to the
   model as the next user message

Bounded by max_attempts rounds. An empty answer ends the loop early.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from libs.core.config import Settings, get_settings
from libs.core.exceptions import SourcingError, TemplateMissing
from libs.core.logging_config import log_job_end, log_job_start
from libs.llm.response_parser import parse_json
from apps.services.sourcing.browser import page_session
from apps.services.sourcing.models import Candidate, Item, JobTrace, PipelineResult, SourcingJob
from apps.services.sourcing.prompts import load_template, render_template
from apps.services.sourcing.scraper import OpenWebScraper, Page
from apps.services.sourcing.search_collector import parse_price
from apps.services.sourcing.selector import select_best
from apps.services.sourcing.validator import validate_one

logger = logging.getLogger(__name__)

STRATEGY_TAG = "open-web"

SHOPPING_SYSTEM_PROMPT = (
    "You are a helpful shopping assistant. You MUST provide DIRECT PRODUCT LINKS. "
    "Search thoroughly. Return ONLY JSON."
)

NO_CANDIDATES_MESSAGE = (
    "You did not return any valid candidates in the JSON format. "
    "Try again, finding similar products."
)


@dataclass
class OpenWebSearchState:
    """Bounded retry loop state."""

    max_attempts: int
    round: int = 0
    messages: list[dict[str, str]] = field(default_factory=list)
    accepted: list[Candidate] = field(default_factory=list)
    rejection_reasons: list[str] = field(default_factory=list)
    seen_links: set[str] = field(default_factory=set)
    finished: bool = False

    @property
    def can_continue(self) -> bool:
        return not self.finished and not self.accepted and self.round < self.max_attempts

    def start_round(self) -> int:
        self.round += 1
        self.rejection_reasons = []
        return self.round

    def add_feedback(self, message: str) -> None:
        self.messages.append({"role": "user", "content": message})


def offer_to_candidate(offer: dict[str, Any]) -> Optional[Candidate]:
    link = offer.get("link")
    if not link:
        return None
    return Candidate(
        title=str(offer.get("title") or "").strip(),
        link=str(link),
        price=parse_price(offer.get("price")) or 0.0,
        source=str(offer.get("source") or STRATEGY_TAG),
    )


class OpenWebPipeline:
    """Open-web search with validator feedback."""

    name = "open-web"

    def __init__(
        self,
        scraper: OpenWebScraper,
        llm,
        settings: Optional[Settings] = None,
    ):
        self.scraper = scraper
        self.llm = llm
        self.settings = settings or get_settings()

    def _initial_messages(self, item: Item, template: str) -> list[dict[str, str]]:
        prompt = render_template(template, {
            "DESCRIPTION": item.description,
            "MAX_PRICE": f"{item.max_price:.2f}" if item.max_price else "not informed",
        })
        return [
            {"role": "system", "content": SHOPPING_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    async def run(self, job: SourcingJob, trace: Optional[JobTrace] = None) -> PipelineResult:
        item = job.item
        trace = trace or JobTrace(item_id=item.id)
        tuning = self.settings.sourcing
        started = time.monotonic()
        log_job_start(logger, item.id, item.description, STRATEGY_TAG)

        try:
            search_template = load_template("open_web_search")
            feedback_template = load_template("open_web_feedback")
        except TemplateMissing:
            return PipelineResult.empty(item, strategy=STRATEGY_TAG)

        state = OpenWebSearchState(
            max_attempts=tuning.open_web_max_attempts,
            messages=self._initial_messages(item, search_template),
        )

        while state.can_continue:
            attempt = state.start_round()
            logger.info(f"[OpenWeb] [Item {item.id}] Attempt {attempt}/{state.max_attempts}")
            trace.thought("discovery", f"Open-web search attempt {attempt}")
            await self._run_round(job, state, feedback_template, trace)

        if not state.accepted:
            logger.info(f"[OpenWeb] [Item {item.id}] No valid candidate after {state.round} attempts")
            log_job_end(logger, item.id, -1, 0, (time.monotonic() - started) * 1000)
            return PipelineResult.empty(item, strategy=STRATEGY_TAG)

        winner_index = -1
        viable = [c for c in state.accepted if c.is_viable]
        selection = await select_best(
            item.description, viable, self.llm, item.max_price, item.quantity, item.id
        )
        if selection is not None:
            trace.thought("selection", {
                "winner_index": selection.winner_index,
                "reasoning": selection.reasoning,
                "fallback": selection.used_fallback,
            })
            winner = viable[selection.winner_index]
            winner_index = next(i for i, c in enumerate(state.accepted) if c is winner)
            logger.info(f"[OpenWeb] [Item {item.id}] WINNER: {winner.title} ({winner.source})")

        log_job_end(logger, item.id, winner_index, len(state.accepted), (time.monotonic() - started) * 1000)
        return PipelineResult(
            item_id=item.id,
            description=item.description,
            target_price=item.max_price,
            quantity=item.quantity,
            candidates=state.accepted,
            winner_index=winner_index,
            strategy=STRATEGY_TAG,
        )

    async def _run_round(
        self,
        job: SourcingJob,
        state: OpenWebSearchState,
        feedback_template: str,
        trace: JobTrace,
    ) -> None:
        item = job.item

        try:
            response = await self.llm.complete("open_web", list(state.messages))
            content = response.content
        except SourcingError as e:
            logger.warning(f"[OpenWeb] [Item {item.id}] Provider unavailable: {e.message}")
            content = ""

        if not content or not content.strip():
            logger.info(f"[OpenWeb] [Item {item.id}] Empty answer, stopping")
            state.finished = True
            return

        state.messages.append({"role": "assistant", "content": content})

        parsed = parse_json(content, expect=list, default=[])
        offers = [o for o in parsed.data if isinstance(o, dict)] if parsed.ok else []
        candidates = []
        for offer in offers:
            candidate = offer_to_candidate(offer)
            if candidate is None or candidate.link in state.seen_links:
                continue
            state.seen_links.add(candidate.link)
            candidates.append(candidate)

        logger.info(f"[OpenWeb] [Item {item.id}] {len(candidates)} links found")
        if not candidates:
            state.add_feedback(NO_CANDIDATES_MESSAGE)
            return

        async with page_session(job.browser, owner=f"item {item.id} round {state.round}") as page:
            for candidate in candidates:
                await self._evaluate(page, item, candidate, state, trace)

        if state.accepted:
            logger.info(f"[OpenWeb] [Item {item.id}] {len(state.accepted)} valid candidates this round")
            return

        logger.info(f"[OpenWeb] [Item {item.id}] All candidates rejected, sending feedback")
        state.add_feedback(render_template(feedback_template, {
            "REJECTIONS": "\n".join(state.rejection_reasons),
            "DESCRIPTION": item.description,
        }))

    async def _evaluate(
        self,
        page: Page,
        item: Item,
        candidate: Candidate,
        state: OpenWebSearchState,
        trace: JobTrace,
    ) -> None:
        logger.info(f"[OpenWeb] [Item {item.id}] Visiting: {candidate.link}")
        try:
            scraped = await self.scraper.scrape(page, candidate.link) or {}
        except Exception as e:
            logger.warning(f"[OpenWeb] [Item {item.id}] Scrape failed for {candidate.link}: {e}")
            scraped = {}

        candidate.description = str(scraped.get("description") or scraped.get("text") or "")
        if not candidate.price:
            candidate.price = parse_price(scraped.get("price")) or 0.0
        candidate.set_fingerprint()

        if not candidate.price:
            candidate.risk_score = 10
            candidate.reasoning = "No price available"
        else:
            await validate_one(
                item.description,
                candidate,
                self.llm,
                description_chars=self.settings.sourcing.description_chars,
                item_id=item.id,
            )

        trace.thought("validation", {
            "title": candidate.title,
            "risk": candidate.risk_score,
            "reasoning": candidate.reasoning,
            "link": candidate.link,
        })

        if candidate.risk_score < self.settings.sourcing.open_web_accept_below:
            state.accepted.append(candidate)
        else:
            state.rejection_reasons.append(f"- Link: {candidate.link}\n  Reason: {candidate.reasoning}")
