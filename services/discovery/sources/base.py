"""
Base source adapter - one public directory that lists businesses.
"""

import asyncio
import random
import re
from abc import ABC, abstractmethod
from typing import Awaitable, List, Optional, Protocol

from bs4 import BeautifulSoup, Tag

from lib.fetcher import FetchResult
from services.discovery.catalog import Region
from services.discovery.errors import BlockedError, TransportError
from services.discovery.models import RawRecord

BLOCK_SIGNATURES = re.compile(
    r"challenge|captcha|blocked|access denied|unusual traffic|enable js",
    re.IGNORECASE,
)
MIN_PAGE_LENGTH = 2000

PHONE_RE = re.compile(r"(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}")
ADDRESS_RE = re.compile(
    r"\d{1,6}\s+(?:[NSEW]\.?\s+)?[A-Z][a-zA-Z]+(?:\s+[A-Za-z]+){0,4}\s+"
    r"(?:St|Street|Ave|Avenue|Blvd|Boulevard|Dr|Drive|Rd|Road|Ln|Lane|Way|Ct|Court|Pl|Place|"
    r"Pkwy|Parkway|Hwy|Highway|Cir|Circle|Loop|Trail|Tr|Pike|Run|Pass|Row)\.?"
    r"(?:\s*(?:#|Ste|Suite|Apt|Unit|Bldg|Floor|Fl)\s*[A-Za-z0-9-]+)?",
    re.IGNORECASE,
)


class PageFetcher(Protocol):
    def fetch(self, url: str, wait_selector: Optional[str] = None) -> Awaitable[Optional[FetchResult]]: ...


def first_match(pattern: re.Pattern, text: str) -> str:
    m = pattern.search(text or "")
    return m.group(0) if m else ""


def text_of(el: Optional[Tag]) -> str:
    return el.get_text(" ", strip=True) if el is not None else ""


class SourceAdapter(ABC):
    """
    Abstract base class for directory sources.

    Subclasses implement:
    - name: identifier stored on every RawRecord
    - discover(): fetch and parse one (region, category, locality) search

    discover() returns [] for empty results and raises TransportError or
    BlockedError only for fetch failures.
    """

    def __init__(self, page_delay_s: float = 3.0):
        self.page_delay_s = page_delay_s

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this source (e.g., 'yellowpages')."""
        pass

    @abstractmethod
    async def discover(
        self,
        fetcher: PageFetcher,
        region: Region,
        category: str,
        locality: str,
    ) -> List[RawRecord]:
        pass

    async def load(self, fetcher: PageFetcher, url: str, wait_selector: Optional[str] = None) -> BeautifulSoup:
        """Fetch a page and reject missing or challenge pages.

        Raises:
            TransportError: No page came back
            BlockedError: Page is too short or looks like an anti-bot challenge
        """
        result = await fetcher.fetch(url, wait_selector=wait_selector)
        if result is None or not result.html:
            raise TransportError(self.name, f"no response from {url[:80]}")
        if len(result.html) < MIN_PAGE_LENGTH:
            raise BlockedError(self.name, f"short page ({len(result.html)} chars) from {url[:80]}")

        soup = BeautifulSoup(result.html, "html.parser")
        head = f"{text_of(soup.title)} {text_of(soup.body)[:500]}"
        if BLOCK_SIGNATURES.search(head):
            raise BlockedError(self.name, f"challenge page at {url[:80]}")
        return soup

    async def between_pages(self) -> None:
        await asyncio.sleep(self.page_delay_s + random.random() * 2)

    def record(
        self,
        name: str,
        region: Region,
        category: str,
        locality: str,
        phone: str = "",
        address: str = "",
        website: str = "",
    ) -> RawRecord:
        return RawRecord(
            name=name,
            phone=phone,
            address=address,
            locality=locality,
            region=region.name,
            website=website,
            category=category,
            source=self.name,
        )

    @staticmethod
    def seen_name(records: List[RawRecord], name: str, locality: str) -> bool:
        return any(r.name == name and r.locality == locality for r in records)
