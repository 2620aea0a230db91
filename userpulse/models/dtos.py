"""
Pydantic Data Transfer Objects (DTOs) for the UserPulse service.

These models are used for API request/response validation and for the
messages passed between the crawler, the reduction stages and the job store.
Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator
from pydantic.alias_generators import to_camel

from userpulse.config.settings import settings


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys and emitting camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RecordKind(str, Enum):
    POST = "post"
    COMMENT = "comment"


class Aspect(str, Enum):
    """Fixed taxonomy used by the classifier."""

    LAUNCH = "launch"
    PERFORMANCE = "performance"
    RELIABILITY = "reliability"
    DX = "dx"
    PRICING = "pricing"
    INTEGRATION = "integration"
    SUPPORT = "support"
    COMPARISON = "comparison"
    LOVE = "love"
    NOTLOVE = "notlove"
    FEATURE = "feature"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def order(self) -> int:
        # completed and failed share a rank; neither may follow the other
        return {"queued": 0, "running": 1, "completed": 2, "failed": 2}[self.value]


# ---------------------------------------------------------------------------
# Source-side shapes
# ---------------------------------------------------------------------------

class SourcePost(CamelModel):
    """A post as returned by a discussion source, before normalisation."""
    id: str
    title: str = ""
    body: str = ""
    author: str = "[deleted]"
    score: int = 0
    reply_count: int = 0
    created_at: datetime
    permalink: str
    url: Optional[str] = None


class SourceReply(CamelModel):
    """A top-level reply to a post, before normalisation."""
    id: str
    body: str = ""
    author: str = "[deleted]"
    score: int = 0
    created_at: datetime
    permalink: str


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class RawRecord(CamelModel):
    """
    A single mention mined from a community.

    ``text`` is already truncated by the crawler; ``evidence_urls`` keeps
    discovery order and holds no duplicates.
    """
    id: str
    kind: RecordKind
    author: str = "[deleted]"
    community: str
    text: str
    outbound_url: Optional[str] = None
    permalink: str
    created_at: datetime
    score: int = 0
    reply_count: Optional[int] = None
    evidence_urls: List[str] = Field(default_factory=list)
    matched_entity: str


class RankedRecord(RawRecord):
    """A deduplicated record carrying its rank score and, after classification, an aspect."""
    rank_score: float = Field(..., description="Weighted relevance score, higher is better")
    aspect: Optional[Aspect] = None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class MiningRequest(CamelModel):
    """Input for one analysis job: a product, its competitors and the crawl window."""
    entity: str = Field(..., min_length=1, description="The caller's own product")
    competitors: List[str] = Field(..., min_length=1, max_length=3)
    days: int = Field(default=30, ge=1, le=365, description="Look-back window in days")
    min_score: int = Field(default=5, description="Minimum post score unless engagement overrides it")
    max_threads: int = Field(default=250, ge=1, le=1000, description="Per-entity record cap")
    communities: List[str] = Field(default_factory=lambda: list(settings.DEFAULT_COMMUNITIES))
    url: Optional[HttpUrl] = Field(default=None, description="The product's home page, read to build its context")

    @field_validator("entity")
    @classmethod
    def _strip_entity(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("entity must not be blank")
        return v

    @field_validator("competitors")
    @classmethod
    def _strip_competitors(cls, v: List[str]) -> List[str]:
        cleaned = [c.strip() for c in v]
        if any(not c for c in cleaned):
            raise ValueError("competitor names must not be blank")
        return cleaned

    @field_validator("communities")
    @classmethod
    def _normalise_communities(cls, v: List[str]) -> List[str]:
        cleaned = []
        for name in v:
            name = name.strip()
            if name.lower().startswith("r/"):
                name = name[2:]
            if name and name not in cleaned:
                cleaned.append(name)
        if not cleaned:
            raise ValueError("at least one community is required")
        return cleaned

    @model_validator(mode="after")
    def _check_distinct_entities(self) -> "MiningRequest":
        seen = set()
        for name in self.entities:
            key = name.lower()
            if key in seen:
                raise ValueError(f"duplicate entity name: {name!r}")
            seen.add(key)
        return self

    @property
    def entities(self) -> List[str]:
        return [self.entity, *self.competitors]


# ---------------------------------------------------------------------------
# Report artifacts
# ---------------------------------------------------------------------------

class ContextPack(CamelModel):
    """Short description of a product plus keywords, used to steer relevance filtering."""
    context_text: str
    keywords: List[str] = Field(default_factory=list)


class CoverageMeta(CamelModel):
    days: int
    total_threads: int = 0
    total_comments: int = 0
    total_items_used: int = 0
    communities_used: List[str] = Field(default_factory=list)


class ReportSections(CamelModel):
    header: str
    sections: Dict[str, str] = Field(default_factory=dict)
    takeaways: str = ""
    appendix_csv: str = ""
    raw: str = Field(..., description="The full markdown report")
    fallback: bool = Field(default=False, description="True when synthesised without the summarizer")


class AnalysisResult(CamelModel):
    report: ReportSections
    coverage: CoverageMeta


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class Job(CamelModel):
    id: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    logs: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    result: Optional[AnalysisResult] = None
    # Raw records mined so far; feeds the caller-side timeout fallback.
    collected: List[RawRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class JobUpdate(BaseModel):
    """Partial update applied by ``JobStore.patch``. ``None`` means unchanged."""
    status: Optional[JobStatus] = None
    progress: Optional[int] = None
    append_logs: List[str] = Field(default_factory=list)
    collected: Optional[List[RawRecord]] = None


class JobSubmitted(CamelModel):
    job_id: str


class JobStatusView(CamelModel):
    id: str
    status: JobStatus
    progress: int
    logs: List[str]
    error: Optional[str] = None
    has_result: bool = False
