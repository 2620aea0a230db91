"""Reads a product's own web page so the summarizer can describe it from real copy."""

import asyncio
import logging

import aiohttp
from bs4 import BeautifulSoup

from userpulse.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

PAGE_USER_AGENT = "Mozilla/5.0 (compatible; UserPulse/0.1)"


def html_to_text(html: str) -> str:
    """Visible text of an HTML document, whitespace collapsed."""
    soup = BeautifulSoup(html, "html.parser")

    for element in soup(["script", "style", "noscript", "nav", "header", "footer"]):
        element.decompose()

    return " ".join(soup.get_text(separator=" ", strip=True).split())


async def fetch_page_text(url: str, timeout: float = 10.0, max_chars: int = 4000) -> str:
    """
    Download ``url`` and return at most ``max_chars`` of its visible text.

    Raises:
        UpstreamUnavailable: The page could not be fetched or has no readable text.
    """
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    try:
        async with aiohttp.ClientSession(
            timeout=client_timeout, headers={"User-Agent": PAGE_USER_AGENT}
        ) as session:
            async with session.get(url) as response:
                if response.status != 200:
                    raise UpstreamUnavailable(f"Fetching {url} returned HTTP {response.status}")
                html = await response.text(errors="replace")
    except asyncio.TimeoutError as e:
        raise UpstreamUnavailable(f"Fetching {url} timed out after {timeout:.0f}s") from e
    except aiohttp.ClientError as e:
        raise UpstreamUnavailable(f"Fetching {url} failed: {e}") from e

    text = html_to_text(html)
    if not text:
        raise UpstreamUnavailable(f"No readable text at {url}")
    logger.info(f"Read {len(text)} characters from {url}")
    return text[:max_chars]
