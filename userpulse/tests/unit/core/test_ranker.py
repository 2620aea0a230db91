import math
from datetime import timedelta

import pytest

from userpulse.config.settings import Settings
from userpulse.core.ranker import RankingWeights, rank_records, rank_score
from userpulse.tests.stubs import NOW, make_record


def test_newer_record_scores_higher_when_otherwise_equal():
    newer = make_record("n", created_at=NOW - timedelta(days=1), score=10, reply_count=2)
    older = make_record("o", created_at=NOW - timedelta(days=10), score=10, reply_count=2)

    assert rank_score(newer, NOW) > rank_score(older, NOW)


def test_higher_score_ranks_higher_when_otherwise_equal():
    low = make_record("l", score=2)
    high = make_record("h", score=15)

    assert rank_score(high, NOW) > rank_score(low, NOW)


def test_freshness_halves_every_half_life():
    weights = RankingWeights(velocity=0, engagement=0, evidence=0, authority=0, freshness=1.0)
    record = make_record("r", created_at=NOW - timedelta(days=7), score=0, reply_count=0)

    assert rank_score(record, NOW, weights) == pytest.approx(0.5)


def test_future_timestamps_are_treated_as_brand_new():
    weights = RankingWeights(velocity=0, engagement=0, evidence=0, authority=0, freshness=1.0)
    record = make_record("r", created_at=NOW + timedelta(hours=3))

    assert rank_score(record, NOW, weights) == pytest.approx(1.0)


def test_component_values():
    record = make_record(
        "r",
        created_at=NOW - timedelta(hours=2),
        score=10,
        reply_count=10,
        author="Acme_Official",
        evidence_urls=["https://github.com/acme/acme"],
    )
    w = RankingWeights()
    age_days = 2 / 24
    expected = (
        0.40 * math.exp(-age_days * math.log(2) / 7)
        + 0.25 * min(1.0, 20 / 2 / 10)
        + 0.20 * min(1.0, 10 / 20)
        + 0.10 * 0.2
        + 0.05 * 0.1
    )

    assert rank_score(record, NOW, w) == pytest.approx(expected)


def test_negative_scores_lower_the_rank():
    record = make_record("r", score=-10, reply_count=0)
    baseline = make_record("b", score=0, reply_count=0)

    assert rank_score(record, NOW) < rank_score(baseline, NOW)


def test_rank_records_is_deterministic_and_stable_on_ties():
    records = [make_record(str(i), f"text {i}") for i in range(5)]

    first = rank_records(records, NOW)
    second = rank_records(records, NOW)

    assert [r.id for r in first] == [r.id for r in second] == ["0", "1", "2", "3", "4"]
    assert all(r.rank_score == first[0].rank_score for r in first)


def test_rank_records_sorts_descending():
    records = [
        make_record("old", created_at=NOW - timedelta(days=20), score=1),
        make_record("hot", created_at=NOW - timedelta(hours=1), score=50, reply_count=30),
        make_record("mid", created_at=NOW - timedelta(days=3), score=8),
    ]

    ranked = rank_records(records, NOW)

    assert [r.id for r in ranked] == ["hot", "mid", "old"]
    assert ranked[0].rank_score >= ranked[1].rank_score >= ranked[2].rank_score


def test_weights_from_settings():
    settings = Settings(RANK_WEIGHT_FRESHNESS=0.9, RANK_HALF_LIFE_DAYS=3)

    weights = RankingWeights.from_settings(settings)

    assert weights.freshness == 0.9
    assert weights.half_life_days == 3
    assert weights.velocity == 0.25
