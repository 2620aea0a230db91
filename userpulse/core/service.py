"""Wiring of the store, source, summarizer, pipeline and orchestrator."""

import logging
from dataclasses import dataclass
from typing import Optional

from userpulse.collector.crawler import Crawler
from userpulse.collector.reddit_client import RedditSource
from userpulse.collector.source import Source
from userpulse.config.settings import Settings, settings as default_settings
from userpulse.core.client import AnalysisClient
from userpulse.core.job_store import InMemoryJobStore, JobStore
from userpulse.core.orchestrator import JobOrchestrator
from userpulse.core.pipeline import PipelineCoordinator
from userpulse.core.summarizer import OpenAISummarizer, SafeSummarizer, Summarizer
from userpulse.monitoring.metrics import PrometheusExporter

logger = logging.getLogger(__name__)


@dataclass
class UserPulseService:
    settings: Settings
    store: JobStore
    source: Source
    summarizer: SafeSummarizer
    pipeline: PipelineCoordinator
    orchestrator: JobOrchestrator
    prometheus_exporter: Optional[PrometheusExporter] = None

    def client(self) -> AnalysisClient:
        return AnalysisClient(self.orchestrator, self.store, self.settings)

    async def close(self) -> None:
        await self.orchestrator.shutdown()
        close = getattr(self.source, "close", None)
        if close is not None:
            await close()


def build_service(
    settings: Optional[Settings] = None,
    source: Optional[Source] = None,
    summarizer: Optional[Summarizer] = None,
    store: Optional[JobStore] = None,
    prometheus_exporter: Optional[PrometheusExporter] = None,
) -> UserPulseService:
    """
    Assemble a service. Collaborators not passed in are built from settings:
    a Reddit source, an OpenAI summarizer and an in-memory store.
    """
    settings = settings or default_settings
    if prometheus_exporter is None and settings.ENABLE_PROMETHEUS:
        prometheus_exporter = PrometheusExporter(settings.PROMETHEUS_PORT)
        prometheus_exporter.start_server()

    store = store or InMemoryJobStore()
    source = source or RedditSource(settings, prometheus_exporter=prometheus_exporter)
    safe = SafeSummarizer(
        summarizer or OpenAISummarizer(settings),
        timeout=settings.SUMMARIZER_TIMEOUT_SECONDS,
        default_aspect=settings.DEFAULT_ASPECT,
        prometheus_exporter=prometheus_exporter,
    )
    crawler = Crawler(source, safe, settings, prometheus_exporter=prometheus_exporter)
    pipeline = PipelineCoordinator(crawler, safe, store, settings)
    orchestrator = JobOrchestrator(store, pipeline.run, settings, prometheus_exporter=prometheus_exporter)
    logger.info(f"Built {settings.APP_NAME} service with {source.__class__.__name__} and {safe.inner.__class__.__name__}")
    return UserPulseService(
        settings=settings,
        store=store,
        source=source,
        summarizer=safe,
        pipeline=pipeline,
        orchestrator=orchestrator,
        prometheus_exporter=prometheus_exporter,
    )
