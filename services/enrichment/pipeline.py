"""
Enrichment pipeline - turn a business with a website into contacts.

Layers, each tolerant of failure in the previous one:
  1. RESOLVE   canonical reachable URL (https://www., https://, http://www., http://)
  2. CRAWL     homepage + contact/team/about pages, merge contacts and facts
  3. RDAP      registrant contact, domain age, year founded
  4. INFER     email pattern -> emails for names found without one
  5. MX        mail-exchange check on every contact

Usage:
    async with HttpFetcher() as http:
        pipeline = EnrichmentPipeline(http, RdapClient(http.client), MxVerifier())
        await pipeline.enrich(entity)
"""

import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Protocol, Set

from loguru import logger

from lib.fetcher import FetchResult
from lib.rdap_client import DomainMetadata, classify_age, domain_age_years
from services.discovery.errors import ExtractionError, MetadataUnavailable
from services.discovery.models import (
    CONFIDENCE_FOUND,
    CONFIDENCE_INFERRED,
    CONFIDENCE_INFERRED_MX_OK,
    CONFIDENCE_INFERRED_NO_MX,
    CONFIDENCE_NO_MX,
    CONFIDENCE_VERIFIED,
    CONFIDENCE_WHOIS,
    Contact,
    Entity,
    NamedPerson,
)
from services.discovery.resolution import normalize_domain
from services.enrichment.email_patterns import detect_pattern, infer_contacts
from services.enrichment.extractor import extract, find_pages, first_name, last_name, valid_email

# Stop crawling subpages once this many named contacts are known
ENOUGH_NAMED_CONTACTS = 5

INFERRED_FAMILY = (CONFIDENCE_INFERRED, CONFIDENCE_INFERRED_MX_OK, CONFIDENCE_INFERRED_NO_MX)


class PageSource(Protocol):
    async def resolve_url(self, website: str) -> Optional[str]: ...

    async def fetch(self, url: str) -> Optional[FetchResult]: ...


class MetadataSource(Protocol):
    async def lookup(self, domain: str) -> DomainMetadata: ...


class MailChecker(Protocol):
    async def has_mx(self, email_or_domain: str) -> bool: ...


def mx_confidence(confidence: str, has_mx: bool) -> str:
    """Confidence after an MX check."""
    if confidence in INFERRED_FAMILY:
        return CONFIDENCE_INFERRED_MX_OK if has_mx else CONFIDENCE_INFERRED_NO_MX
    if not has_mx:
        return CONFIDENCE_NO_MX
    if confidence in (CONFIDENCE_FOUND, CONFIDENCE_NO_MX):
        return CONFIDENCE_VERIFIED
    return confidence


class EnrichmentPipeline:
    """Per-entity enrichment. Holds the run-wide MX cache via its MailChecker."""

    def __init__(
        self,
        pages: PageSource,
        metadata: MetadataSource,
        mail: MailChecker,
        max_pages: int = 15,
        page_pause: Optional[Callable[[], Awaitable[None]]] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ):
        self.pages = pages
        self.metadata = metadata
        self.mail = mail
        self.max_pages = max_pages
        self._page_pause = page_pause
        self._should_stop = should_stop or (lambda: False)

    # ── Layer functions ──────────────────────────────────────────────

    async def _layer_resolve(self, tag: str, entity: Entity) -> Optional[str]:
        t0 = time.monotonic()
        base_url = await self.pages.resolve_url(entity.website)
        elapsed = time.monotonic() - t0
        if not base_url:
            logger.info(f"{tag} [1/5 RESOLVE] Unreachable: {entity.website} [{elapsed:.1f}s]")
            return None
        logger.debug(f"{tag} [1/5 RESOLVE] {base_url} [{elapsed:.1f}s]")
        return base_url

    async def _layer_crawl(
        self,
        tag: str,
        entity: Entity,
        base_url: str,
        known: Set[str],
        names: List[NamedPerson],
    ) -> None:
        t0 = time.monotonic()
        home = await self.pages.fetch(base_url + "/")
        if home is None:
            logger.info(f"{tag} [2/5 CRAWL] Homepage fetch failed")
            return

        paths = find_pages(home.html, base_url, self.max_pages)
        logger.debug(f"{tag} [2/5 CRAWL] {len(paths)} relevant pages")

        for i, path in enumerate(paths):
            if i == 0:
                page_url, page = base_url, home
            else:
                if self._should_stop():
                    break
                named = sum(1 for c in entity.contacts if c.first_name)
                if named >= ENOUGH_NAMED_CONTACTS:
                    logger.debug(f"{tag} [2/5 CRAWL] Comprehensive directory found")
                    break
                if self._page_pause is not None:
                    await self._page_pause()
                page_url = base_url + path
                page = await self.pages.fetch(page_url)
                if page is None:
                    continue

            try:
                result = extract(page.html, page_url)
            except ExtractionError as e:
                logger.warning(f"{tag} [2/5 CRAWL] Skipping {page_url}: {e}")
                continue

            for contact in result.contacts:
                if contact.email in known:
                    continue
                known.add(contact.email)
                entity.contacts.append(contact)
                if contact.first_name:
                    logger.debug(f"{tag}   {contact.full_name} ({contact.title}): {contact.email}")
            names.extend(result.names_without_email)
            entity.facts.merge(result.facts)

        if not entity.phone and entity.facts.phone:
            entity.phone = entity.facts.phone
        if not entity.address and entity.facts.address:
            entity.address = entity.facts.address

        elapsed = time.monotonic() - t0
        socials = [
            label for label, value in (
                ("FB", entity.facts.facebook), ("IG", entity.facts.instagram),
                ("LI", entity.facts.linkedin), ("X", entity.facts.twitter),
            ) if value
        ]
        logger.info(
            f"{tag} [2/5 CRAWL] {len(entity.contacts)} contacts, {len(names)} names"
            f"{', social: ' + ', '.join(socials) if socials else ''} [{elapsed:.1f}s]"
        )

    async def _layer_metadata(self, tag: str, entity: Entity, domain: str, known: Set[str]) -> None:
        t0 = time.monotonic()
        try:
            meta = await self.metadata.lookup(domain)
        except MetadataUnavailable as e:
            logger.debug(f"{tag} [3/5 RDAP] {e} [{time.monotonic() - t0:.1f}s]")
            return

        reg = meta.registrant if (meta.registrant.name or meta.registrant.email) else meta.admin
        email = (reg.email or "").lower()
        if email and valid_email(email) and email not in known:
            known.add(email)
            entity.contacts.append(Contact(
                email=email,
                first_name=first_name(reg.name),
                last_name=last_name(reg.name),
                title="Owner (WHOIS)",
                phone=reg.phone,
                confidence=CONFIDENCE_WHOIS,
                source_page="WHOIS/RDAP",
            ))
            logger.info(f"{tag} [3/5 RDAP] HIT: {reg.name or 'Unknown'} | {email}")
        if not entity.address and reg.address:
            entity.address = reg.address

        if meta.registered_at:
            entity.year_founded = meta.registered_at.split("-")[0]
            age = domain_age_years(meta.registered_at)
            if age is not None:
                entity.domain_age = age
                entity.age_label = classify_age(age)
        logger.debug(
            f"{tag} [3/5 RDAP] registered={meta.registered_at} age={entity.age_label or '?'} "
            f"[{time.monotonic() - t0:.1f}s]"
        )

    def _layer_infer(
        self, tag: str, entity: Entity, domain: str, known: Set[str], names: List[NamedPerson],
    ) -> None:
        pattern = detect_pattern(entity.contacts)
        if not pattern or not names:
            return
        inferred = infer_contacts(pattern, names, domain, known)
        entity.contacts.extend(inferred)
        logger.info(f"{tag} [4/5 INFER] Pattern {pattern}@{domain}: {len(inferred)}/{len(names)} names")

    async def _layer_verify(self, tag: str, entity: Entity) -> None:
        verified = 0
        for contact in entity.contacts:
            try:
                ok = await self.mail.has_mx(contact.email)
            except Exception as e:
                logger.debug(f"{tag} [5/5 MX] {contact.email}: {e}")
                ok = False
            contact.confidence = mx_confidence(contact.confidence, ok)
            verified += ok
        if entity.contacts:
            logger.debug(f"{tag} [5/5 MX] {verified}/{len(entity.contacts)} MX verified")

    # ── Entry point ──────────────────────────────────────────────────

    async def enrich(self, entity: Entity) -> Entity:
        """Enrich an entity in place and return it."""
        tag = f"[{entity.name[:40]}]"
        if not entity.website:
            return entity

        t0 = time.monotonic()
        base_url = await self._layer_resolve(tag, entity)
        if not base_url:
            return entity

        domain = normalize_domain(base_url)
        known = {c.email for c in entity.contacts}
        names: List[NamedPerson] = []

        await self._layer_crawl(tag, entity, base_url, known, names)
        await self._layer_metadata(tag, entity, domain, known)
        self._layer_infer(tag, entity, domain, known, names)
        await self._layer_verify(tag, entity)

        entity.enriched_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
        verified = len(entity.contacts_with(CONFIDENCE_VERIFIED, CONFIDENCE_INFERRED_MX_OK))
        inferred = len(entity.contacts_with(*INFERRED_FAMILY))
        logger.info(
            f"{tag} {len(entity.contacts)} contacts ({verified} verified, {inferred} inferred) "
            f"[{time.monotonic() - t0:.1f}s]"
        )
        return entity
