"""Data models for business discovery and enrichment.

RawRecord is one directory sighting. Entity is the deduplicated business,
split into identity, contact, company facts and enrichment metadata.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# Contact confidence tags
CONFIDENCE_FOUND = "found"
CONFIDENCE_VERIFIED = "verified"
CONFIDENCE_INFERRED = "inferred"
CONFIDENCE_INFERRED_MX_OK = "inferred_mx_ok"
CONFIDENCE_INFERRED_NO_MX = "inferred_no_mx"
CONFIDENCE_NO_MX = "no_mx"
CONFIDENCE_WHOIS = "whois"

CONFIDENCE_TAGS = (
    CONFIDENCE_FOUND,
    CONFIDENCE_VERIFIED,
    CONFIDENCE_INFERRED,
    CONFIDENCE_INFERRED_MX_OK,
    CONFIDENCE_INFERRED_NO_MX,
    CONFIDENCE_NO_MX,
    CONFIDENCE_WHOIS,
)


class RawRecord(BaseModel):
    """One source's sighting of a business."""

    model_config = ConfigDict(frozen=True)

    name: str
    phone: str = ""
    address: str = ""
    locality: str = ""
    region: str = ""
    website: str = ""
    category: str = ""
    source: str = ""


class Contact(BaseModel):
    """A person or mailbox at a business."""

    email: str
    first_name: str = ""
    last_name: str = ""
    title: str = ""
    phone: str = ""
    confidence: str = CONFIDENCE_FOUND
    source_page: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class NamedPerson(BaseModel):
    """A name found on a page without an email (input to pattern inference)."""

    first_name: str
    last_name: str = ""
    title: str = ""
    phone: str = ""
    source_page: str = ""


class CompanyFacts(BaseModel):
    """Facts scraped from the business's own site."""

    name: str = ""
    phone: str = ""
    address: str = ""
    rating: Optional[str] = None
    review_count: Optional[str] = None
    site_title: str = ""
    description: str = ""
    facebook: str = ""
    instagram: str = ""
    linkedin: str = ""
    twitter: str = ""

    def merge(self, other: "CompanyFacts") -> None:
        """Fill empty fields from another page's facts. Never overwrites."""
        for field in type(self).model_fields:
            if not getattr(self, field) and getattr(other, field):
                setattr(self, field, getattr(other, field))

    @property
    def has_social(self) -> bool:
        return bool(self.facebook or self.instagram or self.linkedin or self.twitter)


class Entity(BaseModel):
    """Deduplicated canonical business."""

    # Identity
    name: str
    category: str = ""
    region: str = ""
    locality: str = ""
    region_key: str = ""
    sources: List[str] = Field(default_factory=list)

    # Contact
    phone: str = ""
    address: str = ""
    website: str = ""

    # Company facts and contacts
    facts: CompanyFacts = Field(default_factory=CompanyFacts)
    contacts: List[Contact] = Field(default_factory=list)

    # Enrichment metadata
    domain_age: Optional[float] = None
    age_label: str = ""
    year_founded: str = ""
    enriched_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: RawRecord, region_key: str = "") -> "Entity":
        return cls(
            name=record.name,
            category=record.category,
            region=record.region,
            locality=record.locality,
            region_key=region_key,
            sources=[record.source] if record.source else [],
            phone=record.phone,
            address=record.address,
            website=record.website,
        )

    def contacts_with(self, *confidences: str) -> List[Contact]:
        return [c for c in self.contacts if c.confidence in confidences]


class WorkUnit(BaseModel):
    """One (category, region, source, locality) scheduling atom."""

    model_config = ConfigDict(frozen=True)

    category: str
    region: str
    source: str
    locality: str


class CheckpointState(BaseModel):
    """Durable snapshot of a run.

    `regions`, `categories`, `sources` and `seed` let a resumed run rebuild the same
    shuffled work queues. `pending` holds indexes of entities from the current
    chunk whose rows have not been emitted yet.
    """

    entities: List[Entity] = Field(default_factory=list)
    cat_counts: dict[str, int] = Field(default_factory=dict)
    cat_work_idx: dict[str, int] = Field(default_factory=dict)
    phase: str = "discover"
    regions: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    seed: int = 0
    pending: List[int] = Field(default_factory=list)
    saved_at: Optional[str] = None
