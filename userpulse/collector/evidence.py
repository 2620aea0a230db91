"""Extraction of supporting links (repos, docs, changelogs, blog posts) from record text."""

import re
from typing import Iterable, List

URL_PATTERN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+")

# Punctuation that commonly trails a URL in prose or markdown
_TRAILING = ".,;:!?)'\""


def extract_urls(text: str) -> List[str]:
    """Return every http(s) URL in ``text`` in order of appearance."""
    if not text:
        return []
    return [match.rstrip(_TRAILING) for match in URL_PATTERN.findall(text)]


def extract_evidence_urls(text: str, patterns: Iterable[str]) -> List[str]:
    """
    Return the URLs in ``text`` that contain any of ``patterns``.

    Matching is case-insensitive; order of first appearance is kept and
    duplicates are dropped.
    """
    needles = [p.lower() for p in patterns if p]
    evidence: List[str] = []
    for url in extract_urls(text):
        lowered = url.lower()
        if url not in evidence and any(n in lowered for n in needles):
            evidence.append(url)
    return evidence
