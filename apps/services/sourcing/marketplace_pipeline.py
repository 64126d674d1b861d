"""
apps/services/sourcing/marketplace_pipeline.py

Primary pipeline: marketplace search -> AI decision.

Stages (one page per job, closed on every exit path):
    analyze -> plan -> collect -> flag anomalies -> filter titles ->
    enrich -> reject kill-words -> validate -> resolve ambiguities -> select

PortalBlocked and PageAcquisitionError propagate to the caller (the
FallbackCoordinator); every AI stage degrades to its own default.
"""
import logging
import time
from typing import Optional

from libs.core.config import Settings, get_settings
from libs.core.logging_config import log_job_end, log_job_start, log_stage
from apps.services.sourcing.ambiguity_resolver import resolve_ambiguities
from apps.services.sourcing.browser import page_session
from apps.services.sourcing.detail_enricher import enrich_candidates
from apps.services.sourcing.item_analyzer import analyze_item
from apps.services.sourcing.models import JobTrace, PipelineResult, SourcingJob
from apps.services.sourcing.price_anomaly import flag_price_anomalies
from apps.services.sourcing.scheduler import BackoffDelay, FixedDelay, RequestScheduler
from apps.services.sourcing.scraper import MarketplaceScraper
from apps.services.sourcing.search_collector import SearchCollector
from apps.services.sourcing.selector import select_best
from apps.services.sourcing.strategy_planner import plan_strategies
from apps.services.sourcing.title_filter import filter_titles
from apps.services.sourcing.validator import item_spec_text, reject_kill_words, validate_candidates

logger = logging.getLogger(__name__)


class MarketplacePipeline:
    """Runs the marketplace search and decision stages for one item at a time."""

    name = "marketplace"

    def __init__(
        self,
        scraper: MarketplaceScraper,
        llm,
        settings: Optional[Settings] = None,
        search_scheduler: Optional[RequestScheduler] = None,
        detail_scheduler: Optional[RequestScheduler] = None,
    ):
        self.scraper = scraper
        self.llm = llm
        self.settings = settings or get_settings()
        tuning = self.settings.sourcing
        self.search_scheduler = search_scheduler or RequestScheduler(
            BackoffDelay(tuning.search_delay_s), name="search"
        )
        self.detail_scheduler = detail_scheduler or RequestScheduler(
            FixedDelay(tuning.detail_delay_s), name="details"
        )

    async def run(self, job: SourcingJob, trace: Optional[JobTrace] = None) -> PipelineResult:
        """
        Run the pipeline for one job.

        Raises:
            PortalBlocked: The marketplace blocked the scraper
            PageAcquisitionError: No page could be opened
        """
        item = job.item
        tuning = self.settings.sourcing
        trace = trace or JobTrace(item_id=item.id)
        started = time.monotonic()

        async with page_session(job.browser, owner=f"item {item.id}") as page:
            analysis = await analyze_item(item, self.llm, trace)
            strategies = plan_strategies(item.description, analysis, tuning.max_query_length)
            strategy_tag = strategies[0].type.value
            log_job_start(logger, item.id, item.description, strategy_tag)

            collector = SearchCollector(
                self.scraper,
                self.search_scheduler,
                require_new=tuning.require_new,
                item_id=item.id,
            )
            candidates = await collector.collect(page, strategies)
            log_stage(logger, item.id, "collect", f"{len(candidates)} candidates")

            if not candidates:
                trace.thought("error", "No candidates found")
                log_job_end(logger, item.id, -1, 0, (time.monotonic() - started) * 1000)
                return PipelineResult.empty(item, strategy=strategy_tag)

            flag_price_anomalies(candidates, tuning.anomaly_threshold)

            item_spec = item_spec_text(item.description, analysis)
            candidates = await filter_titles(item_spec, candidates, self.llm, trace, item.id)
            log_stage(logger, item.id, "filter", f"{len(candidates)} remaining")

            enriched = await enrich_candidates(
                page,
                self.scraper,
                candidates,
                region=item.region or tuning.default_region,
                scheduler=self.detail_scheduler,
                limit=tuning.enrich_limit,
                item_id=item.id,
            )

        # Page released; the remaining stages only talk to the generation backends
        to_validate = reject_kill_words(enriched, analysis.negative_terms, trace, item.id)
        await validate_candidates(
            item_spec,
            to_validate,
            self.llm,
            batch_size=tuning.validation_batch_size,
            description_chars=tuning.description_chars,
            trace=trace,
            item_id=item.id,
        )
        await resolve_ambiguities(item_spec, enriched, self.llm, trace, item.id)

        winner_index = -1
        viable = [c for c in enriched if c.is_viable]
        if viable:
            selection = await select_best(
                item_spec, viable, self.llm, item.max_price, item.quantity, item.id
            )
            trace.thought("selection", {
                "winner_index": selection.winner_index,
                "reasoning": selection.reasoning,
                "fallback": selection.used_fallback,
            })
            winner = viable[selection.winner_index]
            winner_index = next(i for i, c in enumerate(enriched) if c is winner)
            logger.info(f"[Pipeline] [Item {item.id}] WINNER: {winner.title} ({winner.total_price:.2f})")
        else:
            trace.thought("selection", "No viable option")
            logger.info(f"[Pipeline] [Item {item.id}] No viable option")

        log_job_end(logger, item.id, winner_index, len(enriched), (time.monotonic() - started) * 1000)
        return PipelineResult(
            item_id=item.id,
            description=item.description,
            target_price=item.max_price,
            quantity=item.quantity,
            candidates=enriched,
            winner_index=winner_index,
            strategy=strategy_tag,
        )
