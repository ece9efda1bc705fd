"""Tests for directory source adapters."""

from typing import Dict, Optional
from unittest.mock import AsyncMock

import pytest

from lib.fetcher import FetchResult
from services.discovery.catalog import REGIONS
from services.discovery.errors import BlockedError, TransportError
from services.discovery.sources import (
    BBBSource,
    GoogleMapsSource,
    SourceAdapter,
    YellowPagesSource,
    YelpSource,
    get_source,
    list_sources,
)
from services.discovery.sources import yellowpages, yelp

PADDING = "<!-- " + "listing markup " * 200 + " -->"
AZ = REGIONS["AZ"]


def page(body: str, title: str = "Results") -> str:
    return f"<html><head><title>{title}</title></head><body>{body}{PADDING}</body></html>"


class FakeFetcher:
    def __init__(self, pages: Dict[str, str]):
        self.pages = pages
        self.calls = []

    async def fetch(self, url: str, wait_selector: Optional[str] = None) -> Optional[FetchResult]:
        self.calls.append((url, wait_selector))
        html = self.pages.get(url)
        if html is None:
            return None
        return FetchResult(html=html, final_url=url, content_type="text/html")


YP_PAGE_1 = page("""
<div class="search-results organic">
  <div class="result"><div class="info">
    <h2 class="n">1. <a class="business-name" href="/phoenix-az/mip/sunrise-bakery-1"><span>Sunrise Bakery</span></a></h2>
    <div class="phones phone primary">(602) 555-1234</div>
    <div class="adr"><div class="street-address">12 Main St</div><div class="locality">Phoenix, AZ 85001</div></div>
    <div class="links">
      <a class="track-visit-website" href="https://www.sunrisebakery.com">Website</a>
      <a href="https://www.yellowpages.com/phoenix-az/mip/sunrise-bakery-1#reviews">Reviews</a>
    </div>
  </div></div>
  <div class="result"><div class="info">
    <h2 class="n">2. <a class="business-name" href="/phoenix-az/mip/desert-donuts-2"><span>Desert Donuts</span></a></h2>
    <div class="phones phone primary">(480) 555-9876</div>
    <div class="adr"><div class="street-address">455 Camelback Rd</div><div class="locality">Phoenix, AZ 85016</div></div>
    <div class="links"><a href="https://www.yellowpages.com/phoenix-az/mip/desert-donuts-2">More Info</a></div>
  </div></div>
</div>
""")
YP_PAGE_EMPTY = page('<div class="search-results organic"><p>No results found</p></div>')


class TestRegistry:

    @pytest.mark.no_db
    def test_builtin_sources_registered(self):
        assert set(list_sources()) >= {"yellowpages", "yelp", "bbb", "google_maps"}

    @pytest.mark.no_db
    def test_get_source(self):
        cls = get_source("yelp")
        assert issubclass(cls, SourceAdapter)
        assert cls().name == "yelp"

    @pytest.mark.no_db
    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown source"):
            get_source("craigslist")


class TestLoad:

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_missing_page(self):
        with pytest.raises(TransportError) as exc:
            await YelpSource().load(FakeFetcher({}), "https://www.yelp.com/search")
        assert not isinstance(exc.value, BlockedError)

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_short_page_is_blocked(self):
        fetcher = FakeFetcher({"https://www.yelp.com/search": "<html><body>hi</body></html>"})
        with pytest.raises(BlockedError):
            await YelpSource().load(fetcher, "https://www.yelp.com/search")

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_challenge_page_is_blocked(self):
        html = page("<p>Please verify you are human</p>", title="Security Challenge")
        fetcher = FakeFetcher({"https://www.yelp.com/search": html})
        with pytest.raises(BlockedError):
            await YelpSource().load(fetcher, "https://www.yelp.com/search")


class TestYellowPages:

    @pytest.mark.no_db
    def test_search_url(self):
        assert yellowpages.search_url(AZ, "bakery", "Phoenix") == "https://www.yellowpages.com/phoenix-az/bakeries"
        assert yellowpages.search_url(REGIONS["ID"], "florist", "Coeur d'Alene", page=2) == (
            "https://www.yellowpages.com/coeur-dalene-id/florists?page=2"
        )

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_parses_listings_and_stops_on_empty_page(self):
        base = "https://www.yellowpages.com/phoenix-az/bakeries"
        fetcher = FakeFetcher({base: YP_PAGE_1, base + "?page=2": YP_PAGE_EMPTY})
        source = YellowPagesSource()
        source.between_pages = AsyncMock()

        records = await source.discover(fetcher, AZ, "bakery", "Phoenix")

        assert [url for url, _ in fetcher.calls] == [base, base + "?page=2"]
        source.between_pages.assert_awaited_once()
        assert [r.name for r in records] == ["Sunrise Bakery", "Desert Donuts"]

        sunrise, donuts = records
        assert sunrise.phone == "(602) 555-1234"
        assert sunrise.address == "12 Main St"
        assert sunrise.website == "https://www.sunrisebakery.com"
        assert (sunrise.locality, sunrise.region, sunrise.category, sunrise.source) == (
            "Phoenix", "Arizona", "bakery", "yellowpages",
        )
        assert donuts.phone == "(480) 555-9876"
        assert donuts.address == "455 Camelback Rd"
        assert donuts.website == ""

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_later_page_failure_keeps_results(self):
        base = "https://www.yellowpages.com/phoenix-az/bakeries"
        source = YellowPagesSource()
        source.between_pages = AsyncMock()
        records = await source.discover(FakeFetcher({base: YP_PAGE_1}), AZ, "bakery", "Phoenix")
        assert len(records) == 2

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_first_page_failure_raises(self):
        with pytest.raises(TransportError):
            await YellowPagesSource().discover(FakeFetcher({}), AZ, "bakery", "Phoenix")


YELP_PAGE = page("""
<ul>
  <li><div><div><h3><a class="css-19v1rkv" href="/biz/sunrise-bakery-phoenix?osq=bakery">1. Sunrise Bakery</a></h3>
    <p>(602) 555-1234</p></div></div></li>
  <li><div><div><h3><a class="css-19v1rkv" href="/biz/sunrise-bakery-phoenix?hrid=x">Read more</a></h3></div></div></li>
  <li><div><div><h3><a class="css-19v1rkv" href="/biz/desert-donuts-phoenix">2. Desert Donuts</a></h3>
    <p>(480) 555-9876</p></div></div></li>
  <li><div><div><a class="css-ad" href="/biz/yelp-for-business">Yelp for Business</a></div></div></li>
</ul>
""")


class TestYelp:

    @pytest.mark.no_db
    def test_search_url(self):
        assert yelp.search_url(AZ, "auto repair", "Phoenix") == (
            "https://www.yelp.com/search?find_desc=auto%20repair&find_loc=Phoenix%2C%20AZ"
        )

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_parses_biz_links(self):
        url = yelp.search_url(AZ, "bakery", "Phoenix")
        records = await YelpSource().discover(FakeFetcher({url: YELP_PAGE}), AZ, "bakery", "Phoenix")

        assert [(r.name, r.phone) for r in records] == [
            ("Sunrise Bakery", "(602) 555-1234"),
            ("Desert Donuts", "(480) 555-9876"),
        ]
        assert all(r.source == "yelp" for r in records)


class TestBBB:

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_parses_profiles(self):
        html = page("""
        <div><div><h3><a href="https://www.bbb.org/us/az/phoenix/profile/bakery/sunrise-bakery-1126-1">Sunrise Bakery</a></h3></div>
          <p>(602) 555-1234</p></div>
        <div><div><h3><a href="https://www.bbb.org/us/az/phoenix/profile/bakery/desert-donuts-1126-2">Desert Donuts</a></h3></div>
          <p>(480) 555-9876</p></div>
        """)

        class AnyUrl(FakeFetcher):
            async def fetch(self, url, wait_selector=None):
                return FetchResult(html=html, final_url=url)

        records = await BBBSource().discover(AnyUrl({}), AZ, "bakery", "Phoenix")
        assert [(r.name, r.phone) for r in records] == [
            ("Sunrise Bakery", "(602) 555-1234"),
            ("Desert Donuts", "(480) 555-9876"),
        ]


class TestGoogleMaps:

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_place_links_and_feed(self):
        html = page("""
        <div><div><div>
          <a href="https://www.google.com/maps/place/Sunrise+Bakery/@33.4,-112.0" aria-label="Sunrise Bakery">Sunrise Bakery 4.8(120) · Bakery</a>
          <span>12 Main St · (602) 555-1234</span>
        </div></div></div>
        <div role="feed"><a href="#" aria-label="Desert Donuts 4.5 stars 88 Reviews">Desert Donuts</a></div>
        """)

        class AnyUrl(FakeFetcher):
            async def fetch(self, url, wait_selector=None):
                return FetchResult(html=html, final_url=url)

        records = await GoogleMapsSource().discover(AnyUrl({}), AZ, "bakery", "Phoenix")

        assert [r.name for r in records] == ["Sunrise Bakery", "Desert Donuts"]
        assert records[0].phone == "(602) 555-1234"
        assert records[0].address == "12 Main St"
        assert records[1].source == "google_maps"
