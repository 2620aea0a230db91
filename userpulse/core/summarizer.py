"""
Summarizer collaborator: query expansion, relevance filtering, aspect
classification and report writing.

``OpenAISummarizer`` talks to the OpenAI chat completions API and raises the
service's typed errors. ``SafeSummarizer`` wraps any summarizer, bounds every
call with a timeout and degrades to a deterministic fallback instead of
raising, so summarizer problems never fail a job.
"""

import asyncio
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

import openai
from openai import AsyncOpenAI

from userpulse.config.settings import Settings, settings as default_settings
from userpulse.core.errors import MalformedUpstreamResponse, RateLimited, UpstreamUnavailable
from userpulse.models.dtos import Aspect, ContextPack, CoverageMeta, RankedRecord, RawRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

JSON_SYSTEM_PROMPT = "You are a JSON-only assistant. Always respond with valid JSON and nothing else."

SECTION_SYSTEM_PROMPT = """
You are a competitive intelligence analyst writing ONE product section of a report based on Reddit discussions.

Rules:
1. Extract real insights from the provided posts. Never use placeholder text.
2. Every claim must be backed by a provided post with a [ref](permalink) link.
3. Weigh higher-scored and more discussed items more heavily.
4. Professional, analytical tone.

Output format:

### **{Product Name}**

#### **🚀 New Updates**
• **{update}** followed by 2-3 sentences and [ref](url) links

#### **💚 What Users Love**
• **{praised aspect}** followed by why, a short quote and [ref](url) links

#### **⚠️ What Users Dislike**
• **{problem}** followed by severity, context and [ref](url) links

If a subsection has no data write "(No updates/praise/complaints found in recent discussions)".
"""

OWN_PRODUCT_SYSTEM_PROMPT = """
You are analyzing Reddit discussions about the founder's OWN product. Founders need the truth, not flattery.

Output format:

## **Your Product: {Product Name}**

#### **💚 What Users Appreciate**
• **{aspect}** with examples, a short quote and [ref](url) links

#### **🔧 Pain Points & Issues**
• **{problem}** with impact, what users suggest instead and [ref](url) links

#### **🎯 Feature Requests & Opportunities**
• **{request}** with why users want it and [ref](url) links

Every insight must link to a provided Reddit discussion.
"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code fence from a model reply."""
    return _FENCE_RE.sub("", content.strip()).strip()


def fallback_variants(name: str) -> List[str]:
    variants = []
    for v in (name, name.lower()):
        if v and v not in variants:
            variants.append(v)
    return variants


def fallback_context(name: str) -> ContextPack:
    return ContextPack(
        context_text=f"{name} is a software product that provides solutions for users.",
        keywords=[name.lower(), "software", "product"],
    )


def placeholder_section(name: str) -> str:
    return f"### **{name}**\n• Unable to retrieve detailed section within time limit."


def fallback_takeaways(entity: str) -> str:
    return (
        f"## **💡 Strategic Takeaways for {entity}**\n\n"
        "• **Monitor competitor launches**: Track the release cadence of competing products "
        "and respond to the features users discuss most.\n\n"
        "• **Address recurring complaints**: Prioritise the reliability, performance and pricing "
        "issues that users raise about the category.\n\n"
        "• **Engage where users talk**: Join the communities in this report and collect "
        "first-hand feedback on your roadmap."
    )


class Summarizer(Protocol):
    """Language-model backed operations used by the crawler and the pipeline."""

    async def resolve_variants(self, name: str) -> List[str]:
        ...

    async def filter_relevant(
        self, records: Sequence[RawRecord], entity: str, context: Optional[ContextPack] = None
    ) -> List[RawRecord]:
        ...

    async def classify(self, records: Sequence[RankedRecord], entity: str) -> List[RankedRecord]:
        ...

    async def compose_section(self, entity: str, records: Sequence[RankedRecord], own_product: bool = False) -> str:
        ...

    async def build_context(self, entity: str, page_text: Optional[str] = None) -> ContextPack:
        ...

    async def write_takeaways(
        self,
        entity: str,
        competitors: Sequence[str],
        grouped: Dict[str, List[RankedRecord]],
        coverage: CoverageMeta,
    ) -> str:
        ...


def _record_payload(record: RankedRecord) -> Dict[str, Any]:
    return {
        "type": record.kind.value,
        "aspect": record.aspect.value if record.aspect else "general",
        "subreddit": record.community,
        "score": record.score,
        "num_comments": record.reply_count or 0,
        "dateUTC": record.created_at.isoformat(),
        "title_or_text": record.text[:400],
        "permalink": record.permalink,
        "outbound_urls": record.evidence_urls[:4],
    }


class OpenAISummarizer:
    """Summarizer backed by OpenAI chat completions."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[AsyncOpenAI] = None):
        self.settings = settings or default_settings
        self._client = client
        self.batch_size = max(1, self.settings.SUMMARIZER_BATCH_SIZE)

    @property
    def client(self) -> AsyncOpenAI:
        # Created on first use so a missing key degrades calls instead of failing startup
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.settings.OPENAI_API_KEY)
        return self._client

    async def _complete(self, system: str, user: str, operation: str) -> str:
        logger.debug(f"[{operation}] requesting completion from {self.settings.OPENAI_MODEL}")
        try:
            response = await self.client.chat.completions.create(
                model=self.settings.OPENAI_MODEL,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                max_tokens=self.settings.OPENAI_MAX_TOKENS,
                temperature=self.settings.OPENAI_TEMPERATURE,
            )
        except openai.RateLimitError as e:
            raise RateLimited(f"[{operation}] summarizer rate limited: {e}") from e
        except openai.OpenAIError as e:
            raise UpstreamUnavailable(f"[{operation}] summarizer request failed: {e}") from e

        if not response.choices or not response.choices[0].message.content:
            raise MalformedUpstreamResponse(f"[{operation}] empty completion")
        return response.choices[0].message.content.strip()

    async def _complete_json(self, user: str, operation: str) -> Any:
        content = strip_code_fences(await self._complete(JSON_SYSTEM_PROMPT, user, operation))
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise MalformedUpstreamResponse(
                f"[{operation}] reply is not JSON: {content[:100]!r}"
            ) from e

    async def resolve_variants(self, name: str) -> List[str]:
        prompt = (
            f'Generate search query variants for a Reddit search for the product "{name}".\n\n'
            "Include the exact name, a lowercase version, common abbreviations, alternative names "
            "and forms with or without spaces and hyphens.\n\n"
            "Return ONLY a JSON array of strings."
        )
        result = await self._complete_json(prompt, "resolve_variants")
        if not isinstance(result, list) or not all(isinstance(v, str) for v in result):
            raise MalformedUpstreamResponse("[resolve_variants] expected a JSON array of strings")
        variants: List[str] = []
        for v in result:
            v = v.strip()
            if v and v not in variants:
                variants.append(v)
        return variants

    async def filter_relevant(
        self, records: Sequence[RawRecord], entity: str, context: Optional[ContextPack] = None
    ) -> List[RawRecord]:
        kept: List[RawRecord] = []
        for start in range(0, len(records), self.batch_size):
            batch = records[start:start + self.batch_size]
            about = f"\nProduct context: {context.context_text}\n" if context else ""
            lines = "\n".join(f"{i}: {r.text[:200]}" for i, r in enumerate(batch))
            prompt = (
                f"Filter Reddit posts and comments for items related to {entity} or its competitors.{about}\n"
                "Be very inclusive: keep product mentions, comparisons, user experiences, bugs, pricing and similar.\n\n"
                f"Items:\n{lines}\n\n"
                "Return ONLY a JSON array of the indices to keep, for example [0,1,2]."
            )
            indices = await self._complete_json(prompt, "filter_relevant")
            if not isinstance(indices, list):
                raise MalformedUpstreamResponse("[filter_relevant] expected a JSON array of indices")
            wanted = {i for i in indices if isinstance(i, int) and 0 <= i < len(batch)}
            kept.extend(r for i, r in enumerate(batch) if i in wanted)
        return kept

    async def classify(self, records: Sequence[RankedRecord], entity: str) -> List[RankedRecord]:
        taxonomy = ", ".join(a.value for a in Aspect)
        default = Aspect(self.settings.DEFAULT_ASPECT)
        classified: List[RankedRecord] = []
        for start in range(0, len(records), self.batch_size):
            batch = records[start:start + self.batch_size]
            lines = "\n".join(f"{i}: {r.text[:150]}" for i, r in enumerate(batch))
            prompt = (
                f"Classify these Reddit items about {entity} into aspects.\n\n"
                f"Categories: {taxonomy}\n\n"
                f"Items:\n{lines}\n\n"
                'Return ONLY a JSON array with one object per item, in order: [{"aspect": "love"}, ...]'
            )
            labels = await self._complete_json(prompt, "classify")
            if not isinstance(labels, list):
                raise MalformedUpstreamResponse("[classify] expected a JSON array")
            for i, record in enumerate(batch):
                label = labels[i].get("aspect") if i < len(labels) and isinstance(labels[i], dict) else None
                try:
                    aspect = Aspect(label)
                except ValueError:
                    aspect = default
                classified.append(record.model_copy(update={"aspect": aspect}))
        return classified

    async def compose_section(self, entity: str, records: Sequence[RankedRecord], own_product: bool = False) -> str:
        posts = [_record_payload(r) for r in records[:60]]
        payload = json.dumps({"product": entity, "total_posts": len(posts), "posts": posts}, indent=2)
        system = OWN_PRODUCT_SYSTEM_PROMPT if own_product else SECTION_SYSTEM_PROMPT
        user = f"PRODUCT TO ANALYZE: {entity}\n\nREDDIT POSTS DATA (JSON):\n{payload}"
        return await self._complete(system, user, "compose_section")

    @staticmethod
    def _parse_context(result: Any) -> ContextPack:
        if not isinstance(result, dict) or not isinstance(result.get("contextText"), str):
            raise MalformedUpstreamResponse("[build_context] expected a contextText field")
        keywords = [k for k in result.get("keywords", []) if isinstance(k, str)]
        return ContextPack(context_text=result["contextText"], keywords=keywords)

    async def build_context(self, entity: str, page_text: Optional[str] = None) -> ContextPack:
        answer_format = (
            'Respond ONLY with JSON in this exact format: {"contextText": "what the product does, '
            'its key features and target audience", "keywords": ["keyword1", "keyword2"]}'
        )
        if page_text:
            prompt = (
                f'Analyze this web page of the product "{entity}" and describe it for a Reddit search.\n\n'
                f"WEBPAGE CONTENT:\n{page_text}\n\n"
                "Focus the keywords on terms that would appear in Reddit discussions about this product.\n\n"
                f"{answer_format}"
            )
            try:
                return self._parse_context(await self._complete_json(prompt, "build_context"))
            except MalformedUpstreamResponse as e:
                logger.warning(f"[build_context] page-based context for {entity} failed ({e}); using the name")

        prompt = f'Generate a context summary for the product "{entity}".\n\n{answer_format}'
        return self._parse_context(await self._complete_json(prompt, "build_context"))

    async def write_takeaways(
        self,
        entity: str,
        competitors: Sequence[str],
        grouped: Dict[str, List[RankedRecord]],
        coverage: CoverageMeta,
    ) -> str:
        def top(name: str, n: int) -> List[Dict[str, Any]]:
            return [
                {"aspect": r.aspect.value if r.aspect else None, "score": r.score}
                for r in grouped.get(name, [])[:n]
            ]

        summary = {
            "founder_product": {"name": entity, "mentions": len(grouped.get(entity, [])), "top_aspects": top(entity, 5)},
            "competitors": [
                {"name": c, "mentions": len(grouped.get(c, [])), "top_aspects": top(c, 3)} for c in competitors
            ],
            "total_posts_analyzed": coverage.total_items_used,
            "subreddits_covered": coverage.communities_used,
            "time_period": f"{coverage.days} days",
        }
        user = (
            f"ANALYZED DATA SUMMARY:\n{json.dumps(summary, indent=2)}\n\n"
            f"Based on this Reddit analysis, write 3 specific, actionable strategic recommendations for {entity}: "
            "a competitive advantage, a feature priority and a market opportunity.\n\n"
            f"Start with the heading: ## **💡 Strategic Takeaways for {entity}**\n"
            "Format each as: • **[Action Title]**: [2-3 sentences on why and how]. No generic advice."
        )
        system = (
            f"You are a strategic advisor helping {entity} beat their competition. "
            "Give specific, actionable advice based on Reddit user feedback."
        )
        return await self._complete(system, user, "write_takeaways")


class SafeSummarizer:
    """
    Wraps a summarizer so that every call finishes within ``timeout`` seconds
    and never raises. Each operation has a fixed fallback:

    - ``resolve_variants``: the name and its lowercase form
    - ``filter_relevant``: the input unchanged, also when nothing was selected
    - ``classify``: every record tagged with the default aspect
    - ``compose_section``: a labelled placeholder section
    - ``build_context`` / ``write_takeaways``: generic text
    """

    def __init__(
        self,
        inner: Summarizer,
        timeout: Optional[float] = None,
        default_aspect: Optional[str] = None,
        prometheus_exporter=None,
    ):
        self.inner = inner
        self.timeout = default_settings.SUMMARIZER_TIMEOUT_SECONDS if timeout is None else timeout
        self.default_aspect = Aspect(default_aspect or default_settings.DEFAULT_ASPECT)
        self.prometheus_exporter = prometheus_exporter

    async def _guard(self, operation: str, call: Callable[[], Any], fallback: Callable[[], T]) -> T:
        try:
            return await asyncio.wait_for(call(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{operation}] summarizer timed out after {self.timeout:.0f}s; using fallback")
        except Exception as e:
            logger.warning(f"[{operation}] summarizer failed ({e.__class__.__name__}: {e}); using fallback")
        if self.prometheus_exporter:
            self.prometheus_exporter.record_summarizer_fallback(operation)
        return fallback()

    async def resolve_variants(self, name: str) -> List[str]:
        variants = await self._guard(
            "resolve_variants", lambda: self.inner.resolve_variants(name), lambda: fallback_variants(name)
        )
        return variants or fallback_variants(name)

    async def filter_relevant(
        self, records: Sequence[RawRecord], entity: str, context: Optional[ContextPack] = None
    ) -> List[RawRecord]:
        if not records:
            return []
        kept = await self._guard(
            "filter_relevant",
            lambda: self.inner.filter_relevant(records, entity, context),
            lambda: list(records),
        )
        if not kept:
            logger.info(f"[filter_relevant] nothing selected for {entity}; keeping all {len(records)} items")
            return list(records)
        return kept

    async def classify(self, records: Sequence[RankedRecord], entity: str) -> List[RankedRecord]:
        if not records:
            return []

        def tag_default() -> List[RankedRecord]:
            return [r.model_copy(update={"aspect": self.default_aspect}) for r in records]

        classified = await self._guard("classify", lambda: self.inner.classify(records, entity), tag_default)
        if len(classified) != len(records):
            logger.warning(f"[classify] got {len(classified)} labels for {len(records)} items; using default aspect")
            return tag_default()
        return classified

    async def compose_section(self, entity: str, records: Sequence[RankedRecord], own_product: bool = False) -> str:
        section = await self._guard(
            "compose_section",
            lambda: self.inner.compose_section(entity, records, own_product),
            lambda: placeholder_section(entity),
        )
        return section.strip() or placeholder_section(entity)

    async def build_context(self, entity: str, page_text: Optional[str] = None) -> ContextPack:
        return await self._guard(
            "build_context",
            lambda: self.inner.build_context(entity, page_text),
            lambda: fallback_context(entity),
        )

    async def write_takeaways(
        self,
        entity: str,
        competitors: Sequence[str],
        grouped: Dict[str, List[RankedRecord]],
        coverage: CoverageMeta,
    ) -> str:
        takeaways = await self._guard(
            "write_takeaways",
            lambda: self.inner.write_takeaways(entity, competitors, grouped, coverage),
            lambda: fallback_takeaways(entity),
        )
        return takeaways.strip() or fallback_takeaways(entity)
