"""Email local-part pattern detection and synthesis.

Given contacts whose name and email are both known, find the site's naming
convention (first.last, flast, ...) and apply it to names found without an
email. Pure functions, no network.
"""

import re
from typing import Iterable, List, Optional, Set

from services.discovery.models import CONFIDENCE_INFERRED, Contact, NamedPerson

# Enumeration order breaks ties
PATTERNS = ("first", "first.last", "firstlast", "flast", "first_last", "firstl", "last")


def _local_part(pattern: str, f: str, l: str) -> str:
    return {
        "first": f,
        "first.last": f"{f}.{l}",
        "firstlast": f"{f}{l}",
        "flast": f"{f[0]}{l}",
        "first_last": f"{f}_{l}",
        "firstl": f"{f}{l[0]}",
        "last": l,
    }[pattern]


def detect_pattern(contacts: Iterable[Contact]) -> Optional[str]:
    """Most common pattern among named contacts. First pattern wins on ties."""
    votes = {p: 0 for p in PATTERNS}
    for c in contacts:
        if not c.email or not c.first_name or not c.last_name:
            continue
        f = re.sub(r"[^a-z]", "", c.first_name.lower())
        l = re.sub(r"[^a-z]", "", c.last_name.lower())
        if not f or not l:
            continue
        local = c.email.split("@")[0].lower()
        for pattern in PATTERNS:
            if local == _local_part(pattern, f, l):
                votes[pattern] += 1
                break

    best, best_count = None, 0
    for pattern in PATTERNS:
        if votes[pattern] > best_count:
            best, best_count = pattern, votes[pattern]
    return best if best_count >= 1 else None


def generate_email(pattern: str, first: str, last: str, domain: str) -> Optional[str]:
    f = re.sub(r"[^a-z]", "", (first or "").lower())
    l = re.sub(r"[^a-z]", "", (last or "").lower())
    if not f or not l or pattern not in PATTERNS or not domain:
        return None
    return f"{_local_part(pattern, f, l)}@{domain}"


def infer_contacts(
    pattern: str,
    people: Iterable[NamedPerson],
    domain: str,
    known_emails: Set[str],
) -> List[Contact]:
    """Synthesize `inferred` contacts, skipping addresses already known.

    known_emails is updated in place.
    """
    inferred = []
    for person in people:
        email = generate_email(pattern, person.first_name, person.last_name, domain)
        if not email or email in known_emails:
            continue
        known_emails.add(email)
        inferred.append(Contact(
            email=email,
            first_name=person.first_name,
            last_name=person.last_name,
            title=person.title,
            phone=person.phone,
            confidence=CONFIDENCE_INFERRED,
            source_page=person.source_page,
        ))
    return inferred
