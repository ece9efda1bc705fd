"""
Entity resolution - merge directory sightings into deduplicated businesses.

A candidate matches an existing entity on the first of:
  1. equal website domain
  2. equal 10-digit phone
  3. name similarity >= 0.85
  4. name similarity > 0.70 and same locality

Matching is a linear scan over existing entities, in arrival order.
"""

import re
from typing import List, Optional

from services.discovery.models import Entity, RawRecord

LEGAL_SUFFIXES = re.compile(
    r"\b(llc|inc|corp|ltd|co|company|enterprises|services|solutions|group|"
    r"associates|partners|pllc|lp|llp)\b"
)

STRONG_NAME_MATCH = 0.85
WEAK_NAME_MATCH = 0.70

# Fields backfilled from a matching candidate when empty on the entity
BACKFILL_FIELDS = ("phone", "address", "locality", "website", "category")


def normalize_name(name: str) -> str:
    n = (name or "").lower()
    n = LEGAL_SUFFIXES.sub("", n)
    n = re.sub(r"[^a-z0-9\s]", "", n)
    return re.sub(r"\s+", " ", n).strip()


def normalize_phone(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")[-10:]


def normalize_domain(url: str) -> str:
    d = (url or "").strip().lower()
    d = re.sub(r"^https?://", "", d)
    d = re.sub(r"^www\.", "", d)
    return re.sub(r"/.*$", "", d).strip()


def _bigrams(s: str) -> List[str]:
    return [s[i:i + 2] for i in range(len(s) - 1)]


def dice_coefficient(a: str, b: str) -> float:
    """Bigram Dice similarity. Each bigram of `b` is consumed at most once."""
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    ab, bb = _bigrams(a), _bigrams(b)
    if not ab or not bb:
        return 0.0
    used = set()
    matches = 0
    for gram in ab:
        for i, other in enumerate(bb):
            if i not in used and gram == other:
                matches += 1
                used.add(i)
                break
    return (2 * matches) / (len(ab) + len(bb))


def is_same_business(entity: Entity, candidate: RawRecord) -> bool:
    da, db = normalize_domain(entity.website), normalize_domain(candidate.website)
    if da and db and da == db:
        return True

    pa, pb = normalize_phone(entity.phone), normalize_phone(candidate.phone)
    if pa and pa == pb:
        return True

    score = dice_coefficient(normalize_name(entity.name), normalize_name(candidate.name))
    if score >= STRONG_NAME_MATCH:
        return True
    if score > WEAK_NAME_MATCH and (entity.locality or "").lower() == (candidate.locality or "").lower():
        return True
    return False


def resolve(entities: List[Entity], candidate: RawRecord) -> Optional[int]:
    """Index of the first entity the candidate refers to, or None."""
    for i, entity in enumerate(entities):
        if is_same_business(entity, candidate):
            return i
    return None


def merge_into(entity: Entity, candidate: RawRecord) -> None:
    """Backfill empty fields and record the candidate's source."""
    for field in BACKFILL_FIELDS:
        if not getattr(entity, field) and getattr(candidate, field):
            setattr(entity, field, getattr(candidate, field))
    if candidate.source and candidate.source not in entity.sources:
        entity.sources.append(candidate.source)


class EntityResolver:
    """Streaming dedup over the run's entity set."""

    def __init__(self, entities: Optional[List[Entity]] = None):
        self.entities: List[Entity] = entities if entities is not None else []

    def add(self, candidate: RawRecord, region_key: str = "") -> tuple[Entity, bool]:
        """Merge a candidate into the entity set.

        Returns:
            (entity, created) where created is False when merged into an existing one
        """
        idx = resolve(self.entities, candidate)
        if idx is not None:
            entity = self.entities[idx]
            merge_into(entity, candidate)
            return entity, False

        entity = Entity.from_record(candidate, region_key=region_key)
        self.entities.append(entity)
        return entity, True

    def __len__(self) -> int:
        return len(self.entities)
