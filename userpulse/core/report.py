"""
Report assembly: coverage metadata, the CSV appendix, the final markdown and
the heuristic report used when no summarizer output is available.
"""

import csv
import io
import re
from typing import Dict, Iterable, List, Sequence

from userpulse.models.dtos import AnalysisResult, CoverageMeta, RawRecord, RecordKind, ReportSections

REPORT_HEADER = "# **Competitive Intelligence Report**\n\n---\n"

APPENDIX_COLUMNS = ["Competitor", "Aspect", "User Feedback", "Score", "Subreddit", "Thread Link", "Evidence URLs"]
FALLBACK_COLUMNS = ["Competitor", "User Feedback", "Score", "Subreddit", "Thread Link"]

MIN_REDDIT_LINKS = 3

_REDDIT_LINK_RE = re.compile(r"https?://(?:www\.|old\.)?reddit\.com/r/[^\s)\]]+", re.IGNORECASE)

POSITIVE_RE = re.compile(r"(love|awesome|great|fast|amazing|improve|like|good|easy|works|best)", re.IGNORECASE)
NEGATIVE_RE = re.compile(
    r"(bug|crash|slow|issue|problem|expensive|pricey|hate|bad|hard|doesn't|broken|error|downtime)", re.IGNORECASE
)
UPDATE_RE = re.compile(r"(launch|release|update|version|v\d|beta|ga|announc)", re.IGNORECASE)


def build_coverage(records: Sequence[RawRecord], days: int) -> CoverageMeta:
    """Coverage counts derived from the records that actually fed the report."""
    communities: List[str] = []
    for record in records:
        if record.community not in communities:
            communities.append(record.community)
    return CoverageMeta(
        days=days,
        total_threads=sum(1 for r in records if r.kind == RecordKind.POST),
        total_comments=sum(1 for r in records if r.kind == RecordKind.COMMENT),
        total_items_used=len(records),
        communities_used=communities,
    )


def _one_line(text: str) -> str:
    return " ".join(text.split())


def truncate(text: str, limit: int) -> str:
    text = _one_line(text)
    return text if len(text) <= limit else text[:limit - 1].rstrip() + "…"


def _to_csv(columns: List[str], rows: Iterable[List[object]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    writer.writerows(rows)
    return buffer.getvalue()


def build_appendix_csv(records: Sequence[RawRecord], limit: int = 50) -> str:
    rows = []
    for record in records[:limit]:
        aspect = getattr(record, "aspect", None)
        rows.append([
            record.matched_entity,
            aspect.value if aspect else "",
            _one_line(record.text),
            record.score,
            record.community,
            record.permalink,
            "; ".join(record.evidence_urls),
        ])
    return _to_csv(APPENDIX_COLUMNS, rows)


def count_reddit_links(markdown: str) -> int:
    return len(set(_REDDIT_LINK_RE.findall(markdown)))


def empty_section(entity: str) -> str:
    return (
        f"### **{entity}**\n\n*No Reddit discussions found for this product in the analyzed period. "
        "Consider expanding search terms or time range.*"
    )


def coverage_line(coverage: CoverageMeta) -> str:
    return (
        f"*Based on {coverage.total_threads} threads and {coverage.total_comments} comments "
        f"from {len(coverage.communities_used)} subreddits over the last {coverage.days} days.*"
    )


def evidence_note(coverage: CoverageMeta) -> str:
    return (
        "> **Note on evidence:** fewer than three Reddit discussions are linked in this report. "
        f"Only {coverage.total_items_used} relevant items were found; consider widening the time "
        "window or adding communities before drawing conclusions."
    )


def assemble_report(
    entity: str,
    own_section: str,
    competitor_sections: Dict[str, str],
    takeaways: str,
    coverage: CoverageMeta,
    appendix_csv: str,
) -> ReportSections:
    """Join the composed parts into the final markdown report."""
    parts = [
        REPORT_HEADER,
        coverage_line(coverage),
        "",
        own_section,
        "\n---\n",
        "## **Competitor Analysis**",
        "",
        "\n\n---\n\n".join(competitor_sections.values()),
        "\n---\n",
        takeaways,
    ]
    raw = "\n".join(parts)
    if count_reddit_links(raw) < MIN_REDDIT_LINKS:
        raw = f"{raw}\n\n{evidence_note(coverage)}"

    sections = {entity: own_section, **competitor_sections}
    return ReportSections(
        header=REPORT_HEADER,
        sections=sections,
        takeaways=takeaways,
        appendix_csv=appendix_csv,
        raw=raw,
    )


def _heuristic_section(name: str, records: Sequence[RawRecord]) -> str:
    updates = [r for r in records if UPDATE_RE.search(r.text)][:3]
    loves = [r for r in records if POSITIVE_RE.search(r.text)][:4]
    dislikes = [r for r in records if NEGATIVE_RE.search(r.text)][:4]

    def bullets(items: Sequence[RawRecord]) -> str:
        return "\n".join(f"• {truncate(r.text, 140)}\n  [ref]({r.permalink})" for r in items)

    return "\n".join([
        f"### **{name}**",
        "",
        "#### **🚀 New Updates**",
        bullets(updates) if updates else "• No major launches mentioned in this window.",
        "",
        "#### **💚 What Users Love**",
        bullets(loves) if loves else "• Positive mentions exist but were not strongly classified in this window.",
        "",
        "#### **⚠️ What Users Dislike**",
        bullets(dislikes) if dislikes else "• Few explicit complaints detected in this window.",
        "",
        "---",
    ])


def build_fallback_report(
    records: Sequence[RawRecord],
    entities: Sequence[str],
    days: int,
    appendix_rows: int = 200,
    max_items: int = 250,
) -> AnalysisResult:
    """
    Keyword-based report built from raw records alone.

    Used when the pipeline could not deliver in time; it never calls the
    summarizer and always produces a non-empty report, even with no records.
    """
    coverage = build_coverage(records, days)
    grouped: Dict[str, List[RawRecord]] = {}
    for record in records[:max_items]:
        grouped.setdefault(record.matched_entity, []).append(record)

    sections = {name: _heuristic_section(name, grouped.get(name, [])) for name in entities}
    takeaways = "\n".join([
        "## **💡 Strategic Takeaways**",
        "",
        "1. Focus on repeatedly mentioned pain points and turn them into roadmap items.",
        "2. Emphasize strengths users already praise in your marketing and onboarding.",
        "3. Track new launches closely to adjust positioning within 1-2 weeks of release.",
    ])
    header = "\n".join([
        "# **Competitive Intelligence Report**",
        "",
        "---",
        "",
        f"*Report generated via heuristic fallback (no AI model). Data from {coverage.total_threads} threads "
        f"and {coverage.total_comments} comments across {len(coverage.communities_used)} subreddits "
        f"over {coverage.days} days.*",
        "",
    ])
    raw = "\n".join([header, "## **Competitor Analysis**", "", "\n".join(sections.values()), takeaways])
    csv_rows = [
        [r.matched_entity, _one_line(r.text), r.score, r.community, r.permalink]
        for r in records[:appendix_rows]
    ]
    report = ReportSections(
        header=header,
        sections=sections,
        takeaways=takeaways,
        appendix_csv=_to_csv(FALLBACK_COLUMNS, csv_rows),
        raw=raw,
        fallback=True,
    )
    return AnalysisResult(report=report, coverage=coverage)
