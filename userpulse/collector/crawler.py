"""
Per-entity crawl across many communities.

One search runs per community, at most ``CRAWL_CONCURRENCY`` at a time.
Results are gathered in community-list order so the concatenated output is
deterministic for a deterministic source. A community that fails is logged
and contributes nothing; the crawl only fails when every community does.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from userpulse.collector.evidence import extract_evidence_urls
from userpulse.collector.source import Source, time_filter_for
from userpulse.config.settings import Settings, settings as default_settings
from userpulse.core.errors import UpstreamUnavailable
from userpulse.core.job_store import JobReporter
from userpulse.core.summarizer import Summarizer
from userpulse.models.dtos import ContextPack, RawRecord, RecordKind, SourcePost, SourceReply

logger = logging.getLogger(__name__)


class Crawler:
    """Mines one entity's mentions from a set of communities."""

    def __init__(
        self,
        source: Source,
        summarizer: Summarizer,
        settings: Optional[Settings] = None,
        prometheus_exporter=None,
    ):
        self.source = source
        self.summarizer = summarizer
        self.settings = settings or default_settings
        self.prometheus_exporter = prometheus_exporter

    def _post_record(self, post: SourcePost, community: str, entity: str) -> RawRecord:
        limit = self.settings.TEXT_MAX_CHARS
        text = f"{post.title}\n\n{post.body[:limit]}" if post.body else post.title
        # Self posts link back to their own thread; only keep a genuine outbound link
        outbound = post.url if post.url and post.url.rstrip("/") != post.permalink.rstrip("/") else None
        return RawRecord(
            id=post.id,
            kind=RecordKind.POST,
            author=post.author,
            community=community,
            text=text,
            outbound_url=outbound,
            permalink=post.permalink,
            created_at=post.created_at,
            score=post.score,
            reply_count=post.reply_count,
            evidence_urls=extract_evidence_urls(text, self.settings.EVIDENCE_URL_PATTERNS),
            matched_entity=entity,
        )

    def _reply_record(self, reply: SourceReply, community: str, entity: str) -> RawRecord:
        text = reply.body[:self.settings.TEXT_MAX_CHARS]
        return RawRecord(
            id=reply.id,
            kind=RecordKind.COMMENT,
            author=reply.author,
            community=community,
            text=text,
            permalink=reply.permalink,
            created_at=reply.created_at,
            score=reply.score,
            evidence_urls=extract_evidence_urls(text, self.settings.EVIDENCE_URL_PATTERNS),
            matched_entity=entity,
        )

    async def _search_community(
        self,
        community: str,
        entity: str,
        variants: Sequence[str],
        cutoff: datetime,
        min_score: int,
        max_threads: int,
        time_filter: str,
    ) -> List[RawRecord]:
        s = self.settings
        posts = await self.source.search(
            community,
            list(variants)[:s.QUERY_VARIANT_LIMIT],
            sort="new",
            time_filter=time_filter,
            limit=s.SEARCH_RESULT_LIMIT,
        )

        records: List[RawRecord] = []
        for post in posts[:s.SEARCH_RESULT_LIMIT]:
            if post.created_at < cutoff:
                continue
            if post.score < min_score and post.reply_count < s.ENGAGEMENT_OVERRIDE_REPLIES:
                continue
            records.append(self._post_record(post, community, entity))

            if post.reply_count > s.REPLY_FETCH_THRESHOLD and len(records) < max_threads:
                try:
                    replies = await self.source.fetch_replies(post, limit=s.REPLY_LIMIT)
                except Exception as e:
                    logger.warning(f"Failed to fetch replies for {post.id} in r/{community}: {e}")
                    continue
                for reply in replies[:s.REPLY_LIMIT]:
                    if reply.score < 0:
                        continue
                    records.append(self._reply_record(reply, community, entity))

        if self.prometheus_exporter:
            self.prometheus_exporter.record_collected(
                community, RecordKind.POST.value, sum(r.kind == RecordKind.POST for r in records)
            )
            self.prometheus_exporter.record_collected(
                community, RecordKind.COMMENT.value, sum(r.kind == RecordKind.COMMENT for r in records)
            )
        return records

    async def search(
        self,
        entity: str,
        communities: Sequence[str],
        cutoff: datetime,
        min_score: int,
        max_threads: int,
        reporter: Optional[JobReporter] = None,
        context: Optional[ContextPack] = None,
        days: Optional[int] = None,
    ) -> List[RawRecord]:
        """
        Return up to ``max_threads`` relevant records mentioning ``entity``.

        Raises:
            UpstreamUnavailable: Every community search failed.
        """
        variants = await self.summarizer.resolve_variants(entity)
        logger.info(f"Searching {len(communities)} communities for {entity} using variants {variants}")
        if reporter:
            await reporter.log(f"[Crawler] Searching {len(communities)} subreddits for {entity}")

        if days is None:
            days = max(1, (datetime.now(cutoff.tzinfo) - cutoff).days)
        time_filter = time_filter_for(days)
        semaphore = asyncio.Semaphore(self.settings.CRAWL_CONCURRENCY)

        async def bounded(community: str) -> List[RawRecord]:
            async with semaphore:
                return await self._search_community(
                    community, entity, variants, cutoff, min_score, max_threads, time_filter
                )

        results = await asyncio.gather(*(bounded(c) for c in communities), return_exceptions=True)

        records: List[RawRecord] = []
        failures = 0
        for community, result in zip(communities, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                failures += 1
                logger.warning(f"Search in r/{community} for {entity} failed: {result}")
                if self.prometheus_exporter:
                    self.prometheus_exporter.record_community_failure(community)
                if reporter:
                    await reporter.log(f"[Crawler] r/{community} failed for {entity}: {result}")
                continue
            records.extend(result)

        if communities and failures == len(communities):
            raise UpstreamUnavailable(f"All {failures} community searches failed for {entity}")

        relevant = await self.summarizer.filter_relevant(records, entity, context)
        logger.info(f"{entity}: {len(records)} items collected, {len(relevant)} relevant")
        if reporter:
            await reporter.log(f"[Filter] {entity}: kept {len(relevant)} of {len(records)} items")
        return relevant[:max_threads]
