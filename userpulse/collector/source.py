"""Interface every discussion source implements."""

from typing import List, Protocol, Sequence, runtime_checkable

from userpulse.models.dtos import SourcePost, SourceReply


@runtime_checkable
class Source(Protocol):
    """A searchable discussion platform split into named communities."""

    async def search(
        self,
        community: str,
        query_variants: Sequence[str],
        *,
        sort: str = "new",
        time_filter: str = "month",
        limit: int = 50,
    ) -> List[SourcePost]:
        """Return up to ``limit`` posts in ``community`` matching any of ``query_variants``."""
        ...

    async def fetch_replies(self, post: SourcePost, limit: int = 20) -> List[SourceReply]:
        """Return up to ``limit`` top-level replies of ``post``."""
        ...


def time_filter_for(days: int) -> str:
    """Smallest platform time filter that still covers a ``days`` look-back window."""
    if days <= 1:
        return "day"
    if days <= 7:
        return "week"
    if days <= 31:
        return "month"
    if days <= 365:
        return "year"
    return "all"
