"""Flatten entities into the fixed 18-column output schema."""

from datetime import date
from typing import List, Optional

from services.discovery.models import Entity

HEADERS = [
    "First Name", "Last Name", "Email", "Title", "Company Name", "Location",
    "Website", "Phone", "Facebook", "Instagram", "LinkedIn", "Twitter/X",
    "Source", "Confidence", "Biz Age", "Year Founded", "Industry", "Date",
]


def entity_rows(entity: Entity, today: Optional[str] = None) -> List[List[str]]:
    """One row per contact, or a single company-only row when there are none."""
    today = today or date.today().isoformat()
    location = ", ".join(p for p in (entity.locality, entity.region) if p)
    f = entity.facts
    sources = ", ".join(s for s in entity.sources if s)
    tail = [entity.age_label, entity.year_founded, entity.category, today]

    if not entity.contacts:
        return [[
            "", "", "", "", entity.name, location, entity.website, entity.phone,
            f.facebook, f.instagram, f.linkedin, f.twitter, sources, "", *tail,
        ]]

    return [
        [
            c.first_name, c.last_name, c.email, c.title, entity.name, location,
            entity.website, c.phone or entity.phone,
            f.facebook, f.instagram, f.linkedin, f.twitter, sources, c.confidence, *tail,
        ]
        for c in entity.contacts
    ]
