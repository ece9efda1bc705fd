"""RDAP domain lookup for registrant contact and registration date.

Queries the rdap.org bootstrap proxy (WHOIS replacement). Most registrants
are privacy-protected, so the registration date is the common payoff: it
gives the business's domain age.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from services.discovery.errors import MetadataUnavailable
from services.discovery.resolution import normalize_domain

RDAP_PROXY = "https://rdap.org/domain"


class Registrant(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""


class DomainMetadata(BaseModel):
    domain: str
    registrant: Registrant = Field(default_factory=Registrant)
    admin: Registrant = Field(default_factory=Registrant)
    registered_at: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return bool(
            self.registrant.name or self.registrant.email
            or self.admin.name or self.admin.email
            or self.registered_at
        )


def domain_age_years(registered_at: str, now: Optional[datetime] = None) -> Optional[float]:
    """Years since registration, rounded to 0.1."""
    try:
        created = datetime.fromisoformat(registered_at.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    years = (now - created).total_seconds() / (365.25 * 24 * 3600)
    return round(years, 1)


def classify_age(years: float) -> str:
    if years < 1:
        return "NEW (<1 yr)"
    if years < 2:
        return "NEW (1-2 yrs)"
    if years < 5:
        return "Growing (2-5 yrs)"
    if years < 10:
        return "Established (5-10 yrs)"
    return "Mature (10+ yrs)"


def _apply_vcard(vcard_array: list, target: Registrant, fill_only: bool = False) -> None:
    """Copy fn/email/tel/adr from a jCard (RFC 7095) into target."""
    if not vcard_array or len(vcard_array) < 2:
        return
    for field in vcard_array[1]:
        if not isinstance(field, list) or len(field) < 4:
            continue
        prop, value = field[0], field[3]
        if prop == "adr":
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value if v and not isinstance(v, list))
            attr = "address"
        elif prop == "fn":
            attr = "name"
        elif prop == "email":
            attr = "email"
        elif prop == "tel":
            attr = "phone"
        else:
            continue
        if not isinstance(value, str) or not value.strip():
            continue
        if fill_only and getattr(target, attr):
            continue
        setattr(target, attr, value.strip())


def parse_rdap(domain: str, data: dict) -> DomainMetadata:
    meta = DomainMetadata(domain=domain)

    for entity in data.get("entities", []) or []:
        roles = entity.get("roles", []) or []
        if "registrant" in roles:
            target = meta.registrant
        elif "administrative" in roles:
            target = meta.admin
        else:
            continue
        _apply_vcard(entity.get("vcardArray"), target)
        for sub in entity.get("entities", []) or []:
            _apply_vcard(sub.get("vcardArray"), target, fill_only=True)

    for event in data.get("events", []) or []:
        if event.get("eventAction") == "registration":
            meta.registered_at = event.get("eventDate")

    return meta


class RdapClient:
    """Domain Metadata Client backed by RDAP."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 15.0):
        self.client = client
        self.timeout = timeout

    async def lookup(self, domain: str) -> DomainMetadata:
        """Registration data for a domain.

        Raises:
            MetadataUnavailable: No usable registration data (404, rate limit,
                network failure, or an empty record)
        """
        domain = normalize_domain(domain)
        if not domain or "." not in domain:
            raise MetadataUnavailable(f"not a domain: {domain!r}")

        url = f"{RDAP_PROXY}/{domain}"
        try:
            resp = await self.client.get(
                url, timeout=self.timeout, follow_redirects=True,
                headers={"Accept": "application/rdap+json, application/json"},
            )
        except httpx.HTTPError as e:
            raise MetadataUnavailable(f"RDAP request failed for {domain}: {e}") from e

        if resp.status_code == 429:
            logger.warning(f"RDAP rate limited for {domain}, backing off")
            await asyncio.sleep(10)
            raise MetadataUnavailable(f"RDAP rate limited for {domain}")
        if resp.status_code != 200:
            raise MetadataUnavailable(f"RDAP {resp.status_code} for {domain}")

        try:
            data = resp.json()
        except ValueError as e:
            raise MetadataUnavailable(f"RDAP returned invalid JSON for {domain}") from e

        meta = parse_rdap(domain, data)
        if not meta.has_data:
            raise MetadataUnavailable(f"No registration data for {domain}")
        return meta
