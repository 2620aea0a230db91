"""Relevance scoring and ordering of deduplicated records."""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from userpulse.config.settings import Settings
from userpulse.models.dtos import RankedRecord, RawRecord


@dataclass(frozen=True)
class RankingWeights:
    freshness: float = 0.40
    velocity: float = 0.25
    engagement: float = 0.20
    evidence: float = 0.10
    authority: float = 0.05
    half_life_days: float = 7.0
    velocity_scale: float = 10.0
    engagement_scale: float = 20.0
    evidence_boost: float = 0.2
    authority_boost: float = 0.1
    authority_marker: str = "official"

    @classmethod
    def from_settings(cls, settings: Settings) -> "RankingWeights":
        return cls(
            freshness=settings.RANK_WEIGHT_FRESHNESS,
            velocity=settings.RANK_WEIGHT_VELOCITY,
            engagement=settings.RANK_WEIGHT_ENGAGEMENT,
            evidence=settings.RANK_WEIGHT_EVIDENCE,
            authority=settings.RANK_WEIGHT_AUTHORITY,
            half_life_days=settings.RANK_HALF_LIFE_DAYS,
        )


def rank_score(record: RawRecord, now: datetime, weights: Optional[RankingWeights] = None) -> float:
    """
    Weighted sum of freshness, velocity, engagement, evidence and authority.

    Age is fractional and never negative, so records from the future score
    as brand new.
    """
    w = weights or RankingWeights()
    age_seconds = max(0.0, (now - record.created_at).total_seconds())
    age_days = age_seconds / 86400.0
    age_hours = max(1.0, age_seconds / 3600.0)

    freshness = math.exp(-age_days * math.log(2) / w.half_life_days)
    velocity = min(1.0, (record.score + (record.reply_count or 0)) / age_hours / w.velocity_scale)
    engagement = min(1.0, record.score / w.engagement_scale)
    evidence = w.evidence_boost if record.evidence_urls else 0.0
    authority = w.authority_boost if w.authority_marker in record.author.lower() else 0.0

    return (
        w.freshness * freshness
        + w.velocity * velocity
        + w.engagement * engagement
        + w.evidence * evidence
        + w.authority * authority
    )


def rank_records(
    records: Sequence[RawRecord], now: datetime, weights: Optional[RankingWeights] = None
) -> List[RankedRecord]:
    """Score every record and sort descending. Ties keep their input order."""
    ranked = [
        RankedRecord(**record.model_dump(exclude={"rank_score"}), rank_score=rank_score(record, now, weights))
        for record in records
    ]
    ranked.sort(key=lambda r: r.rank_score, reverse=True)
    return ranked
