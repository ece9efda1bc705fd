"""HTTP page fetcher for business websites.

Plain httpx with browser headers. Used for enrichment, where sites are
mostly static and a real browser would be slow. Discovery sources use
lib.browser.BrowserFetcher instead.
"""

import re
from typing import Optional

import httpx
from loguru import logger
from pydantic import BaseModel

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

ACCEPTED_CONTENT_TYPES = ("text/html", "text/xml", "application/json")

URL_PREFIXES = ("https://www.", "https://", "http://www.", "http://")


class FetchResult(BaseModel):
    html: str
    final_url: str
    content_type: str = ""


def bare_domain(url: str) -> str:
    """Strip scheme, www. and trailing slash (path is kept)."""
    d = re.sub(r"^https?://", "", (url or "").strip())
    d = re.sub(r"^www\.", "", d)
    return d.rstrip("/")


class HttpFetcher:
    """Async fetcher with redirects, hard timeout and optional proxy.

    Usage:
        async with HttpFetcher(timeout=20.0) as fetcher:
            result = await fetcher.fetch("https://example.com/")
    """

    def __init__(
        self,
        timeout: float = 20.0,
        proxy: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self.proxy = proxy
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "HttpFetcher":
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=BROWSER_HEADERS,
                timeout=self.timeout,
                follow_redirects=True,
                max_redirects=10,
                proxy=self.proxy,
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("HttpFetcher used outside 'async with'")
        return self._client

    async def fetch(self, url: str) -> Optional[FetchResult]:
        """GET a page. None on network error, status >= 400, or non-text content."""
        try:
            resp = await self.client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"Fetch failed {url[:80]}: {e}")
            return None
        if resp.status_code >= 400:
            logger.debug(f"Fetch {url[:80]}: HTTP {resp.status_code}")
            return None
        content_type = resp.headers.get("content-type", "")
        if not any(t in content_type for t in ACCEPTED_CONTENT_TYPES):
            return None
        return FetchResult(html=resp.text, final_url=str(resp.url), content_type=content_type)

    async def resolve_url(self, website: str) -> Optional[str]:
        """First reachable URL among https://www., https://, http://www., http://.

        Returns the final URL after redirects, without trailing slash.
        """
        domain = bare_domain(website)
        if not domain:
            return None
        for prefix in URL_PREFIXES:
            candidate = f"{prefix}{domain}"
            try:
                resp = await self.client.get(candidate, timeout=10.0)
            except httpx.HTTPError:
                continue
            if resp.status_code < 400:
                return str(resp.url).rstrip("/")
        return None
