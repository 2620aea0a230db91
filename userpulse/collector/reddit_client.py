"""Reddit implementation of the discussion source, built on asyncpraw."""

import logging
import time
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import asyncpraw
from asyncpraw.models import Subreddit

from userpulse.collector.error_handler import ConsecutiveErrorTracker, with_exponential_backoff
from userpulse.collector.rate_limiter import RateLimitConfig, RateLimiter
from userpulse.config.settings import Settings
from userpulse.core.errors import UpstreamUnavailable
from userpulse.models.dtos import SourcePost, SourceReply

logger = logging.getLogger(__name__)

REDDIT_BASE_URL = "https://reddit.com"


def build_query(variants: Sequence[str]) -> str:
    """Combine name variants into one OR query with each variant quoted."""
    quoted = []
    for variant in variants:
        variant = variant.replace('"', "").strip()
        if variant and f'"{variant}"' not in quoted:
            quoted.append(f'"{variant}"')
    return " OR ".join(quoted)


def _author_name(author) -> str:
    return str(author) if author else "[deleted]"


def _permalink(path: str) -> str:
    if path.startswith("http"):
        return path
    return f"{REDDIT_BASE_URL}{path}"


def submission_to_post(submission) -> SourcePost:
    """Map an asyncpraw Submission to a ``SourcePost``."""
    return SourcePost(
        id=submission.id,
        title=submission.title or "",
        body=getattr(submission, "selftext", "") or "",
        author=_author_name(submission.author),
        score=int(submission.score or 0),
        reply_count=int(getattr(submission, "num_comments", 0) or 0),
        created_at=datetime.fromtimestamp(submission.created_utc, tz=timezone.utc),
        permalink=_permalink(submission.permalink),
        url=getattr(submission, "url", None),
    )


def comment_to_reply(comment) -> SourceReply:
    """Map an asyncpraw Comment to a ``SourceReply``."""
    return SourceReply(
        id=comment.id,
        body=comment.body or "",
        author=_author_name(comment.author),
        score=int(comment.score or 0),
        created_at=datetime.fromtimestamp(comment.created_utc, tz=timezone.utc),
        permalink=_permalink(comment.permalink),
    )


class RedditSource:
    """
    Reddit search with rate limiting and retries.

    Every request waits on the shared ``RateLimiter`` and is retried by
    ``with_exponential_backoff``; exhausted retries surface as
    ``UpstreamUnavailable`` or ``RateLimited``.
    """

    def __init__(
        self,
        settings: Settings,
        rate_limiter: Optional[RateLimiter] = None,
        error_tracker: Optional[ConsecutiveErrorTracker] = None,
        prometheus_exporter=None,
    ):
        self.settings = settings
        self.rate_limiter = rate_limiter or RateLimiter(RateLimitConfig.from_settings(settings))
        self.error_tracker = error_tracker or ConsecutiveErrorTracker(
            settings.FAILURE_THRESHOLD, prometheus_exporter=prometheus_exporter
        )
        self.prometheus_exporter = prometheus_exporter
        self._reddit: Optional[asyncpraw.Reddit] = None
        self._subreddit_cache: Dict[str, Subreddit] = {}

        retry = with_exponential_backoff(
            max_retries=settings.SOURCE_MAX_RETRIES,
            initial_backoff=settings.SOURCE_INITIAL_BACKOFF_SEC,
            max_backoff=settings.SOURCE_MAX_BACKOFF_SEC,
            error_tracker=self.error_tracker,
            rate_limiter=self.rate_limiter,
        )
        self._search_with_retry = retry(self._search_once)
        self._replies_with_retry = retry(self._replies_once)

    def initialize(self) -> asyncpraw.Reddit:
        """
        Create the asyncpraw client. Runs read-only when no username/password is configured.

        Raises:
            UpstreamUnavailable: If the application credentials are missing
        """
        if not self._reddit:
            if not (self.settings.REDDIT_CLIENT_ID and self.settings.REDDIT_CLIENT_SECRET):
                raise UpstreamUnavailable("Missing Reddit API credentials")

            kwargs = dict(
                client_id=self.settings.REDDIT_CLIENT_ID,
                client_secret=self.settings.REDDIT_CLIENT_SECRET,
                user_agent=self.settings.REDDIT_USER_AGENT,
            )
            if self.settings.REDDIT_USERNAME and self.settings.REDDIT_PASSWORD:
                kwargs.update(username=self.settings.REDDIT_USERNAME, password=self.settings.REDDIT_PASSWORD)

            logger.info("Initializing Reddit client")
            self._reddit = asyncpraw.Reddit(**kwargs)
            if "username" not in kwargs:
                self._reddit.read_only = True
        return self._reddit

    async def get_subreddit(self, name: str) -> Subreddit:
        reddit = self.initialize()
        if name not in self._subreddit_cache:
            logger.debug(f"Fetching subreddit: {name}")
            self._subreddit_cache[name] = await reddit.subreddit(name)
        return self._subreddit_cache[name]

    def _timer(self):
        return self.prometheus_exporter.time_request() if self.prometheus_exporter else nullcontext()

    def _record_limits(self) -> None:
        """Pass the X-Ratelimit values asyncprawcore last saw on to the rate limiter."""
        limits = self._reddit.auth.limits if self._reddit else {}
        remaining = limits.get("remaining")
        reset_timestamp = limits.get("reset_timestamp")
        headers = {}
        if isinstance(remaining, (int, float)):
            headers["x-ratelimit-remaining"] = remaining
        if isinstance(reset_timestamp, (int, float)):
            headers["x-ratelimit-reset"] = max(0.0, reset_timestamp - time.time())
        if headers:
            self.rate_limiter.update_from_headers(headers)

    async def _search_once(
        self, community: str, query: str, sort: str, time_filter: str, limit: int
    ) -> List[SourcePost]:
        await self.rate_limiter.pre_request()
        subreddit = await self.get_subreddit(community)
        posts = []
        with self._timer():
            async for submission in subreddit.search(query, sort=sort, time_filter=time_filter, limit=limit):
                posts.append(submission_to_post(submission))
        self._record_limits()
        return posts

    async def _replies_once(self, post_id: str, limit: int) -> List[SourceReply]:
        await self.rate_limiter.pre_request()
        reddit = self.initialize()
        replies = []
        with self._timer():
            submission = await reddit.submission(id=post_id)
            await submission.comments.replace_more(limit=0)
            async for comment in submission.comments:
                replies.append(comment_to_reply(comment))
                if len(replies) >= limit:
                    break
        self._record_limits()
        return replies

    async def search(
        self,
        community: str,
        query_variants: Sequence[str],
        *,
        sort: str = "new",
        time_filter: str = "month",
        limit: int = 50,
    ) -> List[SourcePost]:
        query = build_query(query_variants)
        logger.debug(f"Searching r/{community} for {query} (sort={sort}, t={time_filter}, limit={limit})")
        return await self._search_with_retry(community, query, sort, time_filter, limit)

    async def fetch_replies(self, post: SourcePost, limit: int = 20) -> List[SourceReply]:
        return await self._replies_with_retry(post.id, limit)

    async def close(self) -> None:
        """Close the Reddit client and release resources."""
        if self._reddit:
            logger.info("Closing Reddit client")
            await self._reddit.close()
            self._reddit = None
            self._subreddit_cache = {}
