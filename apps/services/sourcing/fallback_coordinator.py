"""
apps/services/sourcing/fallback_coordinator.py

Cross-strategy escalation for one item.

    PRIMARY --(winner risk < threshold)--> return
    PRIMARY --(exception | no winner | risk >= threshold)--> SECONDARY
    SECONDARY --(viable winner)--> return
    SECONDARY --(nothing | exception)--> NO_OFFER

Failure isolation: a primary exception never prevents the secondary; a
secondary exception never escapes. The caller always gets a PipelineResult.
"""
import asyncio
import logging
from typing import Optional, Protocol

from libs.core.config import Settings, SettingsStore, get_settings
from libs.llm.router import ModelRouter
from apps.services.sourcing.marketplace_pipeline import MarketplacePipeline
from apps.services.sourcing.models import JobTrace, PipelineResult, SourcingJob
from apps.services.sourcing.open_web_pipeline import OpenWebPipeline
from apps.services.sourcing.scraper import MarketplaceScraper, OpenWebScraper

logger = logging.getLogger(__name__)


class Pipeline(Protocol):
    name: str

    async def run(self, job: SourcingJob, trace: Optional[JobTrace] = None) -> PipelineResult:
        ...


class FallbackCoordinator:
    """Runs the primary pipeline and escalates to the secondary when needed."""

    def __init__(
        self,
        primary: Pipeline,
        secondary: Pipeline,
        confidence_threshold: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        self.primary = primary
        self.secondary = secondary
        settings = settings or get_settings()
        self.confidence_threshold = (
            confidence_threshold
            if confidence_threshold is not None
            else settings.sourcing.confidence_threshold
        )

    def is_confident(self, result: Optional[PipelineResult]) -> bool:
        winner = result.winner if result else None
        return (
            winner is not None
            and winner.risk_score is not None
            and winner.risk_score < self.confidence_threshold
        )

    async def run(self, job: SourcingJob, trace: Optional[JobTrace] = None) -> PipelineResult:
        item = job.item
        trace = trace or JobTrace(item_id=item.id)

        primary_result: Optional[PipelineResult] = None
        try:
            primary_result = await self.primary.run(job, trace)
        except Exception as e:
            logger.error(f"[Coordinator] [Item {item.id}] {self.primary.name} failed: {e}")
            trace.thought("error", f"{self.primary.name} failed: {e}")

        if self.is_confident(primary_result):
            return primary_result

        if primary_result is not None and primary_result.winner is not None:
            reason = f"winner risk {primary_result.winner.risk_score} >= {self.confidence_threshold}"
        elif primary_result is not None:
            reason = "no winner"
        else:
            reason = "exception"
        logger.info(f"[Coordinator] [Item {item.id}] Escalating to {self.secondary.name} ({reason})")
        trace.thought("fallback", {"to": self.secondary.name, "reason": reason})

        try:
            secondary_result = await self.secondary.run(job, trace)
        except Exception as e:
            logger.error(f"[Coordinator] [Item {item.id}] {self.secondary.name} failed: {e}")
            trace.thought("error", f"{self.secondary.name} failed: {e}")
            secondary_result = None

        if secondary_result is not None and secondary_result.winner is not None:
            return secondary_result

        logger.info(f"[Coordinator] [Item {item.id}] NO_OFFER")
        return secondary_result or PipelineResult.empty(item)


def create_coordinator(
    marketplace_scraper: MarketplaceScraper,
    open_web_scraper: OpenWebScraper,
    llm: Optional[ModelRouter] = None,
    store: Optional[SettingsStore] = None,
    settings: Optional[Settings] = None,
) -> FallbackCoordinator:
    """Wire the default marketplace -> open-web coordinator."""
    settings = settings or get_settings()
    llm = llm or ModelRouter(store=store, settings=settings)
    return FallbackCoordinator(
        primary=MarketplacePipeline(marketplace_scraper, llm, settings),
        secondary=OpenWebPipeline(open_web_scraper, llm, settings),
        settings=settings,
    )


async def run_batch(
    jobs: list[SourcingJob],
    coordinator: FallbackCoordinator,
    max_concurrent: Optional[int] = None,
) -> list[PipelineResult]:
    """
    Run several jobs concurrently, sharing their browser.

    Results come back in job order.
    """
    if max_concurrent is None:
        max_concurrent = get_settings().sourcing.max_concurrent_jobs
    semaphore = asyncio.Semaphore(max(1, max_concurrent))

    async def _run(job: SourcingJob) -> PipelineResult:
        async with semaphore:
            return await coordinator.run(job)

    logger.info(f"[Batch] Running {len(jobs)} jobs (max {max_concurrent} concurrent)")
    return list(await asyncio.gather(*(_run(job) for job in jobs)))
