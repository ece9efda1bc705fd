"""Google Maps search results (place links and feed entries)."""

import re
from typing import List
from urllib.parse import quote

from services.discovery.catalog import Region
from services.discovery.models import RawRecord
from services.discovery.sources.base import (
    ADDRESS_RE,
    PHONE_RE,
    PageFetcher,
    SourceAdapter,
    first_match,
    text_of,
)
from services.discovery.sources.registry import register

NAV_WORDS = re.compile(r"^(google|maps|search|directions|sponsored)", re.IGNORECASE)


def search_url(region: Region, category: str, locality: str) -> str:
    return f"https://www.google.com/maps/search/{quote(f'{category} in {locality}, {region.key}')}"


def clean_name(raw: str) -> str:
    name = re.sub(r"\d+\.\d+\s*\(\d+\).*$", "", raw)
    return re.sub(r"·.*$", "", name).strip()


@register("google_maps")
class GoogleMapsSource(SourceAdapter):
    name = "google_maps"

    async def discover(self, fetcher: PageFetcher, region: Region, category: str, locality: str) -> List[RawRecord]:
        soup = await self.load(fetcher, search_url(region, category, locality), 'a[href*="maps/place"]')
        records: List[RawRecord] = []

        for a in soup.select('a[href*="/maps/place/"]'):
            name = clean_name(text_of(a) or a.get("aria-label", ""))
            if len(name) < 3 or len(name) > 150 or NAV_WORDS.search(name):
                continue
            if self.seen_name(records, name, locality):
                continue
            parent = a
            for _ in range(3):
                if parent.parent is not None:
                    parent = parent.parent
            parent_text = text_of(parent)
            address = first_match(ADDRESS_RE, a.get("aria-label", "")) or first_match(ADDRESS_RE, parent_text)
            records.append(self.record(
                name, region, category, locality,
                phone=first_match(PHONE_RE, parent_text),
                address=address,
            ))

        for a in soup.select('[role="feed"] a, .Nv2PK a'):
            label = a.get("aria-label", "")
            name = re.sub(r"\d+\.\d+\s*stars?.*$", "", label, flags=re.IGNORECASE).strip()
            if len(name) < 3 or self.seen_name(records, name, locality):
                continue
            records.append(self.record(name, region, category, locality))
        return records
