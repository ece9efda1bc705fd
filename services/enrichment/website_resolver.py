"""Website resolver - find a business website via search when a source omits it.

Tries DuckDuckGo, then Google. The first result link that isn't a
directory, social or map domain (and is a sane length) wins.
"""

import re
from typing import Awaitable, Callable, List, Optional
from urllib.parse import quote_plus, unquote

from bs4 import BeautifulSoup
from loguru import logger
from pydantic import BaseModel

from lib.fetcher import FetchResult
from services.discovery.models import Entity

DENYLIST_RE = re.compile(
    r"google\.|duckduckgo|youtube\.|yelp\.|yellowpages\.|bbb\.org|facebook\.|instagram\.|"
    r"twitter\.|linkedin\.|mapquest|angi\.|homeadvisor|thumbtack|nextdoor|tripadvisor|"
    r"pinterest|tiktok|reddit|wikipedia",
    re.IGNORECASE,
)
UDDG_RE = re.compile(r"uddg=(https?%3A[^&]+)")
MAX_URL_LENGTH = 200


class SearchBackend(BaseModel):
    name: str
    url_template: str
    wait_selector: str
    link_selector: str

    def url(self, query: str) -> str:
        return self.url_template.format(q=quote_plus(query))


DEFAULT_BACKENDS = [
    SearchBackend(
        name="duckduckgo",
        url_template="https://duckduckgo.com/?q={q}",
        wait_selector=".result__a",
        link_selector='a.result__a, a[data-testid="result-title-a"], a[href*="//"]',
    ),
    SearchBackend(
        name="google",
        url_template="https://www.google.com/search?q={q}",
        wait_selector="div#search",
        link_selector='a[href^="http"]',
    ),
]


def candidate_url(href: str) -> Optional[str]:
    """Usable website from a search result href, or None."""
    m = UDDG_RE.search(href or "")
    if m:
        href = unquote(m.group(1))
    if not href or not href.startswith("http"):
        return None
    if DENYLIST_RE.search(href):
        return None
    if len(href) >= MAX_URL_LENGTH:
        return None
    return href.split("?")[0]


def pick_website(html: str, link_selector: str) -> Optional[str]:
    soup = BeautifulSoup(html or "", "html.parser")
    for a in soup.select(link_selector):
        url = candidate_url(a.get("href", ""))
        if url:
            return url
    return None


def search_query(entity: Entity) -> str:
    return " ".join(p for p in (entity.name, entity.locality, entity.region) if p)


class WebsiteResolver:
    """Fills Entity.website in place. Idempotent for entities that have one."""

    def __init__(
        self,
        fetch: Callable[..., Awaitable[Optional[FetchResult]]],
        backends: Optional[List[SearchBackend]] = None,
        pause: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        """
        Args:
            fetch: async (url, wait_selector=...) -> FetchResult | None
            backends: search backends in the order tried
            pause: async callable awaited after each lookup (rate limiting)
        """
        self._fetch = fetch
        self.backends = backends or DEFAULT_BACKENDS
        self._pause = pause
        self.found = 0
        self.missing = 0

    async def find_website(self, entity: Entity) -> Optional[str]:
        if entity.website:
            return entity.website

        query = search_query(entity)
        try:
            for backend in self.backends:
                result = await self._fetch(backend.url(query), wait_selector=backend.wait_selector)
                if result is None:
                    logger.debug(f"{backend.name}: no page for '{query}'")
                    continue
                url = pick_website(result.html, backend.link_selector)
                if url:
                    entity.website = url
                    self.found += 1
                    logger.debug(f"Website for {entity.name}: {url} ({backend.name})")
                    return url
        finally:
            if self._pause is not None:
                await self._pause()

        self.missing += 1
        logger.debug(f"No website found for {entity.name}")
        return None
