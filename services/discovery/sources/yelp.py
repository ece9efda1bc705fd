"""Yelp search results. Yelp blocks aggressively; the rate gate gives it extra delay."""

import re
from typing import List
from urllib.parse import quote

from services.discovery.catalog import Region
from services.discovery.models import RawRecord
from services.discovery.sources.base import PHONE_RE, PageFetcher, SourceAdapter, first_match, text_of
from services.discovery.sources.registry import register

BIZ_SLUG = re.compile(r"/biz/([\w-]+)")
NAV_WORDS = re.compile(
    r"^(yelp|more|see|read|write|photo|map|direction|filter|review|claim|sign|get|request|ad\b)",
    re.IGNORECASE,
)


def search_url(region: Region, category: str, locality: str) -> str:
    return (
        f"https://www.yelp.com/search?find_desc={quote(category)}"
        f"&find_loc={quote(f'{locality}, {region.key}')}"
    )


@register("yelp")
class YelpSource(SourceAdapter):
    name = "yelp"

    async def discover(self, fetcher: PageFetcher, region: Region, category: str, locality: str) -> List[RawRecord]:
        soup = await self.load(fetcher, search_url(region, category, locality), 'a[href*="/biz/"]')
        records: List[RawRecord] = []
        slugs = set()
        for a in soup.select('a[href*="/biz/"]'):
            m = BIZ_SLUG.search(a.get("href", ""))
            if not m or m.group(1) in slugs:
                continue
            slugs.add(m.group(1))

            name = re.sub(r"^\d+\.\s*", "", text_of(a))
            if len(name) < 3 or len(name) > 150 or NAV_WORDS.search(name):
                continue
            if self.seen_name(records, name, locality):
                continue

            container = a if a.get("class") else a.find_parent(class_=True)
            for _ in range(2):
                if container is not None and container.parent is not None:
                    container = container.parent
            records.append(self.record(
                name, region, category, locality,
                phone=first_match(PHONE_RE, text_of(container)),
            ))
        return records
