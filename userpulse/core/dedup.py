"""Exact and near-duplicate removal for mined records."""

import logging
from typing import Dict, List, Sequence, Set, TypeVar

from rapidfuzz.distance import Levenshtein

from userpulse.models.dtos import RawRecord

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=RawRecord)


def is_near_duplicate(a: str, b: str, ratio: float) -> bool:
    """
    True when the edit distance between ``a`` and ``b`` is below ``ratio``
    times the shorter length. Empty texts are never near duplicates.
    """
    threshold = ratio * min(len(a), len(b))
    if threshold <= 0:
        return False
    # score_cutoff lets rapidfuzz stop early once the distance reaches the threshold
    return Levenshtein.distance(a, b, score_cutoff=int(threshold)) < threshold


def deduplicate(records: Sequence[R], near_duplicate_ratio: float = 0.2) -> List[R]:
    """
    Drop exact duplicates by id (first occurrence wins), then drop records whose
    lowercased text is a near duplicate of an already kept record with the same
    ``matched_entity``. Input order is preserved and the function is idempotent.
    """
    seen_ids: Set[str] = set()
    kept_texts: Dict[str, List[str]] = {}
    result: List[R] = []
    exact = near = 0

    for record in records:
        if record.id in seen_ids:
            exact += 1
            continue
        seen_ids.add(record.id)

        text = record.text.lower()
        group = kept_texts.setdefault(record.matched_entity, [])
        if any(is_near_duplicate(text, other, near_duplicate_ratio) for other in group):
            near += 1
            continue
        group.append(text)
        result.append(record)

    logger.debug(f"Deduplicated {len(records)} records: {exact} exact and {near} near duplicates removed")
    return result
