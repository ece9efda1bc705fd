"""Better Business Bureau search results."""

import re
from typing import List
from urllib.parse import quote

from services.discovery.catalog import Region
from services.discovery.models import RawRecord
from services.discovery.sources.base import PHONE_RE, PageFetcher, SourceAdapter, first_match, text_of
from services.discovery.sources.registry import register

LINK_SELECTORS = ['a[href*="/profile/"]', 'a[href*="bbb.org/us/"]', 'h3 a[href*="/us/"]']
NAV_WORDS = re.compile(
    r"^(bbb|better business|search|find|accredit|view news|start with trust|file a complaint|for businesses)",
    re.IGNORECASE,
)


def search_url(region: Region, category: str, locality: str) -> str:
    return (
        f"https://www.bbb.org/search?find_country=US&find_loc={quote(locality)}%2C+{region.key}"
        f"&find_text={quote(category)}&page=1&sort=Relevance"
    )


@register("bbb")
class BBBSource(SourceAdapter):
    name = "bbb"

    async def discover(self, fetcher: PageFetcher, region: Region, category: str, locality: str) -> List[RawRecord]:
        soup = await self.load(fetcher, search_url(region, category, locality), 'a[href*="/profile/"]')
        links = []
        for selector in LINK_SELECTORS:
            links = soup.select(selector)
            if len(links) > 2:
                break

        records: List[RawRecord] = []
        for a in links:
            name = text_of(a)
            if len(name) < 3 or len(name) > 200 or NAV_WORDS.search(name):
                continue
            if any(r.name == name for r in records):
                continue
            div = a.find_parent("div")
            section = div.parent if div is not None and div.parent is not None else div
            records.append(self.record(
                name, region, category, locality,
                phone=first_match(PHONE_RE, text_of(section)),
            ))
        return records
