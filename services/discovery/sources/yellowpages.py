"""Yellow Pages listings: up to 3 result pages per search."""

import re
from typing import List

from loguru import logger

from services.discovery.catalog import Region, yp_slug
from services.discovery.errors import TransportError
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

MAX_PAGES = 3
LINK_SELECTORS = [
    ".result .business-name a",
    ".info h2 a",
    'a[href*="/mip/"]',
    ".srp-listing h2 a",
    ".v-card .info h2 a",
]
NAV_WORDS = re.compile(r"^(browse|search|find|sort|sign|log|yellow pages|advertise|claim)", re.IGNORECASE)
NOT_A_WEBSITE = re.compile(r"yellowpages|yp\.com|intelius|thryv|superpages|dexknows", re.IGNORECASE)
LISTING_CLASS = re.compile(r"^(result|srp-listing|v-card)$")


def search_url(region: Region, category: str, locality: str, page: int = 1) -> str:
    city = locality.lower().replace(" ", "-").replace("'", "")
    url = f"https://www.yellowpages.com/{city}-{region.slug}/{yp_slug(category)}"
    return f"{url}?page={page}" if page > 1 else url


@register("yellowpages")
class YellowPagesSource(SourceAdapter):
    name = "yellowpages"

    @staticmethod
    def _listing_box(a):
        """Nearest ancestor that looks like one listing: long enough and holding a phone."""
        box = a
        for _ in range(8):
            if box.parent is None:
                break
            box = box.parent
            box_text = text_of(box)
            if len(box_text) > 100 and re.search(r"\(\d{3}\)", box_text):
                break
        return box

    async def discover(self, fetcher: PageFetcher, region: Region, category: str, locality: str) -> List[RawRecord]:
        records: List[RawRecord] = []
        for page in range(1, MAX_PAGES + 1):
            try:
                soup = await self.load(fetcher, search_url(region, category, locality, page), ".search-results")
            except TransportError:
                if page == 1:
                    raise
                logger.debug(f"yellowpages: stopping at page {page} for {category}/{locality}")
                break

            links = []
            for selector in LINK_SELECTORS:
                links = soup.select(selector)
                if links:
                    break

            found = 0
            for a in links:
                name = re.sub(r"^\d+\.\s*", "", text_of(a))
                if len(name) < 3 or len(name) > 200 or NAV_WORDS.search(name):
                    continue
                if self.seen_name(records, name, locality):
                    continue

                box = a.find_parent(class_=LISTING_CLASS) or self._listing_box(a)
                box_text = text_of(box)

                website = ""
                for link in box.select('a[href^="http"]'):
                    href = link.get("href", "")
                    label = text_of(link).lower()
                    if NOT_A_WEBSITE.search(href):
                        continue
                    if "website" in label or "visit" in label:
                        website = href
                        break
                if not website:
                    link = box.select_one('a.track-visit-website, a[data-analytics="visit_website"]')
                    if link is not None:
                        website = link.get("href", "")

                records.append(self.record(
                    name, region, category, locality,
                    phone=first_match(PHONE_RE, box_text),
                    address=first_match(ADDRESS_RE, box_text),
                    website=website,
                ))
                found += 1

            if found == 0:
                break
            if page < MAX_PAGES:
                await self.between_pages()
        return records
