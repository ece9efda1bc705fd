"""
Run statistics, recomputed from the entity set on demand.

Nothing here is a running counter: after a resume the numbers come out the
same as if the run had never stopped. The only retained state is the
rolling log of recent errors.
"""

from collections import deque
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from services.discovery.catalog import REGIONS
from services.discovery.models import (
    CONFIDENCE_INFERRED,
    CONFIDENCE_INFERRED_MX_OK,
    CONFIDENCE_INFERRED_NO_MX,
    CONFIDENCE_NO_MX,
    CONFIDENCE_VERIFIED,
    CONFIDENCE_WHOIS,
    Entity,
)


class ErrorEntry(BaseModel):
    time: str
    source: str
    message: str


class ErrorLog:
    """Keeps the most recent N errors for the dashboard."""

    def __init__(self, size: int = 20):
        self._entries: deque[ErrorEntry] = deque(maxlen=size)

    def record(self, source: str, message: str) -> None:
        entry = ErrorEntry(
            time=datetime.now(timezone.utc).strftime("%H:%M:%S"),
            source=source,
            message=str(message)[:100],
        )
        self._entries.append(entry)
        logger.debug(f"[{source}] {entry.message}")

    @property
    def entries(self) -> List[ErrorEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class RegionStats(BaseModel):
    discovered: int = 0
    contacts: int = 0
    verified: int = 0


class RunStats(BaseModel):
    """Snapshot of a run, derived from entities."""

    phase: str = ""
    by_source: Dict[str, int] = Field(default_factory=dict)
    total_entities: int = 0
    categories_tracked: int = 0
    websites_found: int = 0
    websites_missing: int = 0
    enriched: int = 0
    emails_total: int = 0
    emails_verified: int = 0
    emails_inferred: int = 0
    emails_whois: int = 0
    emails_no_mx: int = 0
    facebook: int = 0
    instagram: int = 0
    linkedin: int = 0
    twitter: int = 0
    new_businesses: int = 0
    established_businesses: int = 0
    by_region: Dict[str, RegionStats] = Field(default_factory=dict)
    recent_errors: List[ErrorEntry] = Field(default_factory=list)

    @property
    def social_total(self) -> int:
        return self.facebook + self.instagram + self.linkedin + self.twitter


def compute_stats(
    entities: Iterable[Entity],
    cat_counts: Optional[Dict[str, int]] = None,
    errors: Optional[ErrorLog] = None,
    phase: str = "",
) -> RunStats:
    stats = RunStats(phase=phase, categories_tracked=len(cat_counts or {}))
    verified_tags = (CONFIDENCE_VERIFIED, CONFIDENCE_INFERRED_MX_OK)
    inferred_tags = (CONFIDENCE_INFERRED, CONFIDENCE_INFERRED_MX_OK, CONFIDENCE_INFERRED_NO_MX)

    for e in entities:
        stats.total_entities += 1
        for source in e.sources:
            stats.by_source[source] = stats.by_source.get(source, 0) + 1

        if e.website:
            stats.websites_found += 1
        else:
            stats.websites_missing += 1
        if e.enriched_at:
            stats.enriched += 1

        verified = sum(1 for c in e.contacts if c.confidence in verified_tags)
        stats.emails_total += len(e.contacts)
        stats.emails_verified += verified
        stats.emails_inferred += sum(1 for c in e.contacts if c.confidence in inferred_tags)
        stats.emails_whois += sum(1 for c in e.contacts if c.confidence == CONFIDENCE_WHOIS)
        stats.emails_no_mx += sum(
            1 for c in e.contacts if c.confidence in (CONFIDENCE_NO_MX, CONFIDENCE_INFERRED_NO_MX)
        )

        stats.facebook += bool(e.facts.facebook)
        stats.instagram += bool(e.facts.instagram)
        stats.linkedin += bool(e.facts.linkedin)
        stats.twitter += bool(e.facts.twitter)

        if e.domain_age is not None:
            if e.domain_age < 2:
                stats.new_businesses += 1
            else:
                stats.established_businesses += 1

        region_name = REGIONS[e.region_key].name if e.region_key in REGIONS else (e.region or "Other")
        region = stats.by_region.setdefault(region_name, RegionStats())
        region.discovered += 1
        region.contacts += len(e.contacts)
        region.verified += verified

    if errors is not None:
        stats.recent_errors = errors.entries
    return stats
