"""
Directory sources. Importing this package registers every adapter.

Usage:
    from services.discovery.sources import get_source

    adapter = get_source("yellowpages")()
    records = await adapter.discover(browser, REGIONS["AZ"], "plumber", "Phoenix")
"""

from services.discovery.sources.base import SourceAdapter
from services.discovery.sources.registry import register, get_source, list_sources

from services.discovery.sources.yellowpages import YellowPagesSource
from services.discovery.sources.yelp import YelpSource
from services.discovery.sources.bbb import BBBSource
from services.discovery.sources.google_maps import GoogleMapsSource

__all__ = [
    "SourceAdapter",
    "register",
    "get_source",
    "list_sources",
    "YellowPagesSource",
    "YelpSource",
    "BBBSource",
    "GoogleMapsSource",
]
