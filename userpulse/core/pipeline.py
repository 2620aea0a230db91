"""
Pipeline coordinator.

Runs one analysis job end to end:

    Context(10) -> MineSelf(30) -> MineCompetitors(55) -> DedupAndRank(65)
    -> Classify(80) -> Compose(95) -> Persist(100, done by the orchestrator)

Every milestone is written to the job store with a human-readable log line.
Summarizer calls go through ``SafeSummarizer`` and therefore never fail the
job; a crawl only fails the job when every community of an entity failed.
"""

import asyncio
import functools
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from userpulse.collector.crawler import Crawler
from userpulse.collector.product_page import fetch_page_text
from userpulse.config.settings import Settings, settings as default_settings
from userpulse.core.dedup import deduplicate
from userpulse.core.job_store import JobReporter, JobStore
from userpulse.core.ranker import RankingWeights, rank_records
from userpulse.core.report import assemble_report, build_appendix_csv, build_coverage, empty_section
from userpulse.core.summarizer import Summarizer
from userpulse.models.dtos import AnalysisResult, MiningRequest, RankedRecord, RawRecord

logger = logging.getLogger(__name__)


class PipelineCoordinator:
    """Drives the crawl, reduction and composition stages for a job."""

    def __init__(
        self,
        crawler: Crawler,
        summarizer: Summarizer,
        store: JobStore,
        settings: Optional[Settings] = None,
        page_fetcher: Optional[Callable[[str], Awaitable[str]]] = None,
    ):
        self.crawler = crawler
        self.summarizer = summarizer
        self.store = store
        self.settings = settings or default_settings
        self.page_fetcher = page_fetcher or functools.partial(
            fetch_page_text,
            timeout=self.settings.PRODUCT_PAGE_TIMEOUT_SECONDS,
            max_chars=self.settings.PRODUCT_PAGE_MAX_CHARS,
        )
        self.weights = RankingWeights.from_settings(self.settings)
        logger.info("PipelineCoordinator initialized")

    async def run(self, job_id: str, request: MiningRequest) -> AnalysisResult:
        reporter = JobReporter(self.store, job_id)
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(days=request.days)

        # Context
        await reporter.log(f"[Context] Building product context for {request.entity}")
        page_text = None
        if request.url:
            url = str(request.url)
            try:
                page_text = await self.page_fetcher(url)
                await reporter.log(f"[Context] Read {len(page_text)} characters from {url}")
            except Exception as e:
                logger.warning(f"Job {job_id}: could not read {url}: {e}")
                await reporter.log(f"[Context] Could not read {url}; describing {request.entity} by name")
        context = await self.summarizer.build_context(request.entity, page_text)
        await reporter.progress(10, f"[Context] Context ready ({len(context.keywords)} keywords)")

        # Mine own product
        own = await self.crawler.search(
            request.entity, request.communities, cutoff, request.min_score, request.max_threads,
            reporter=reporter, context=context, days=request.days,
        )
        collected: List[RawRecord] = list(own)
        await reporter.collected(collected)
        await reporter.progress(30, f"[Crawler] Found {len(own)} discussions about {request.entity}")

        # Mine competitors concurrently; gather keeps request order
        crawls = [
            asyncio.ensure_future(self.crawler.search(
                name, request.communities, cutoff, request.min_score, request.max_threads,
                reporter=reporter, context=context, days=request.days,
            ))
            for name in request.competitors
        ]
        try:
            competitor_results = await asyncio.gather(*crawls)
        except Exception:
            # One failed crawl fails the job; stop the rest hitting the Source
            for crawl in crawls:
                crawl.cancel()
            await asyncio.gather(*crawls, return_exceptions=True)
            raise
        for name, records in zip(request.competitors, competitor_results):
            collected.extend(records)
            await reporter.log(f"[Crawler] Found {len(records)} discussions about {name}")
        await reporter.collected(collected)
        await reporter.progress(55, f"[Crawler] Mined {len(collected)} items for {len(request.entities)} products")

        # Dedup and rank
        unique = deduplicate(collected, self.settings.NEAR_DUPLICATE_RATIO)
        ranked = rank_records(unique, now, self.weights)
        await reporter.progress(
            65, f"[Filter] {len(ranked)} unique items after removing {len(collected) - len(unique)} duplicates"
        )

        # Classify per entity under the shared concurrency cap
        grouped: Dict[str, List[RankedRecord]] = {name: [] for name in request.entities}
        for record in ranked:
            grouped.setdefault(record.matched_entity, []).append(record)

        semaphore = asyncio.Semaphore(self.settings.CLASSIFY_CONCURRENCY)

        async def classify(name: str) -> List[RankedRecord]:
            async with semaphore:
                return await self.summarizer.classify(grouped[name], name)

        classified = await asyncio.gather(*(classify(name) for name in request.entities))
        grouped = dict(zip(request.entities, classified))
        await reporter.progress(80, f"[Classifier] Classified {sum(len(v) for v in classified)} items into aspects")

        # Compose
        final: List[RankedRecord] = sorted(
            (r for records in classified for r in records), key=lambda r: r.rank_score, reverse=True
        )
        coverage = build_coverage(final, request.days)

        async def section(name: str, own_product: bool) -> str:
            if not grouped[name]:
                return empty_section(name)
            async with semaphore:
                return await self.summarizer.compose_section(name, grouped[name], own_product)

        await reporter.log(f"[Writer] Writing report sections for {len(request.entities)} products")
        own_section, *competitor_sections = await asyncio.gather(
            section(request.entity, True),
            *(section(name, False) for name in request.competitors),
        )
        takeaways = await self.summarizer.write_takeaways(request.entity, request.competitors, grouped, coverage)

        appendix = build_appendix_csv(final, self.settings.REPORT_APPENDIX_ROWS)
        report = assemble_report(
            request.entity,
            own_section,
            dict(zip(request.competitors, competitor_sections)),
            takeaways,
            coverage,
            appendix,
        )
        await reporter.progress(95, f"[CSV] Exported {min(len(final), self.settings.REPORT_APPENDIX_ROWS)} rows")
        logger.info(f"Job {job_id}: report ready with {coverage.total_items_used} items")
        return AnalysisResult(report=report, coverage=coverage)
