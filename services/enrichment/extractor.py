"""
Content extractor - contacts, company facts and social links from one page.

Methods, in order:
  1. JSON-LD / schema.org (incl. @graph and employee/member lists)
  2. mailto: links, with name/title/phone from surrounding markup
  3. data-email attributes
  4. staff/team cards
  5. full-page email regex
  6. obfuscated "name [at] domain [dot] com"
  7. footer phone/address
  8. og:title / <title> / meta description
  9. first tel: link
Plus social profile links and names without emails (for pattern inference).
"""

import json
import re
from typing import List, Optional, Set
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag
from loguru import logger
from pydantic import BaseModel, Field

from services.discovery.errors import ExtractionError
from services.discovery.models import CompanyFacts, Contact, NamedPerson

EMAIL_RE = re.compile(
    r"\b[A-Za-z0-9](?:[A-Za-z0-9._%+-]*[A-Za-z0-9])?@[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?\.[A-Za-z]{2,}\b"
)
PHONE_RE = re.compile(
    r"(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}(?:\s*(?:ext\.?|x)\s*\d{1,5})?",
    re.IGNORECASE,
)
ADDRESS_RE = re.compile(
    r"\d{1,6}\s+(?:[NSEW]\.?\s+)?[A-Z][a-zA-Z]+(?:\s+[A-Za-z]+){0,4}\s+"
    r"(?:St|Street|Ave|Avenue|Blvd|Boulevard|Dr|Drive|Rd|Road|Ln|Lane|Way|Ct|Court|Pl|Place|"
    r"Pkwy|Parkway|Hwy|Highway|Cir|Circle|Loop|Trail|Tr|Pike|Run|Pass|Row)\.?"
    r"(?:\s*(?:#|Ste|Suite|Apt|Unit|Bldg|Floor|Fl)\s*[A-Za-z0-9-]+)?",
    re.IGNORECASE,
)
OBFUSCATED_RE = re.compile(
    r"\b[a-zA-Z0-9._-]+\s*[\[({]?\s*at\s*[\])}]?\s*[a-zA-Z0-9.-]+\s*[\[({]?\s*dot\s*[\])}]?\s*[a-zA-Z]{2,}\b",
    re.IGNORECASE,
)
_OBF_AT = re.compile(r"\s*[\[({]?\s*\bat\b\s*[\])}]?\s*", re.IGNORECASE)
_OBF_DOT = re.compile(r"\s*[\[({]?\s*\bdot\b\s*[\])}]?\s*", re.IGNORECASE)

FACEBOOK_RE = re.compile(r"https?://(?:www\.)?facebook\.com/[a-zA-Z0-9._-]+/?", re.IGNORECASE)
INSTAGRAM_RE = re.compile(r"https?://(?:www\.)?instagram\.com/[a-zA-Z0-9._-]+/?", re.IGNORECASE)
LINKEDIN_RE = re.compile(r"https?://(?:www\.)?linkedin\.com/(?:company|in)/[a-zA-Z0-9._-]+/?", re.IGNORECASE)
TWITTER_RE = re.compile(r"https?://(?:www\.)?(?:twitter|x)\.com/[a-zA-Z0-9._-]+/?", re.IGNORECASE)

SOCIAL_RULES = {
    # field: (href must match, href must not match, raw-html fallback)
    "facebook": (
        re.compile(r"facebook\.com/[a-zA-Z0-9]"),
        re.compile(r"facebook\.com/(sharer|dialog|share|login|plugins)"),
        FACEBOOK_RE,
    ),
    "instagram": (
        re.compile(r"instagram\.com/[a-zA-Z0-9]"),
        re.compile(r"instagram\.com/(accounts|explore|p/)"),
        INSTAGRAM_RE,
    ),
    "linkedin": (
        re.compile(r"linkedin\.com/(company|in)/"),
        None,
        LINKEDIN_RE,
    ),
    "twitter": (
        re.compile(r"(?:twitter|x)\.com/[a-zA-Z0-9]"),
        re.compile(r"(?:twitter|x)\.com/(share|intent|home|search)"),
        TWITTER_RE,
    ),
}

SKIP_EMAILS = [
    "noreply", "no-reply", "donotreply", "admin@", "webmaster@", "postmaster@",
    "hostmaster@", "abuse@", "privacy@", "ssl@", "info@example", "test@", "example@",
    "placeholder@", "dummy@", "fake@", "sentry", "wordpress", "wixpress", "squarespace",
    "godaddy", "cloudflare", "w3.org", "schema.org", "googleapis", "jquery",
    "bootstrapcdn", "cookie", "email@email", "support@wix", "sample@", "demo@", "user@",
    "username@", "@sentry", "change@me", "your@email", "name@company",
    ".png", ".jpg", ".gif", ".css", ".js", ".svg", ".woff",
]

CARD_SELECTORS = ",".join([
    ".team-member", ".staff-member", ".employee", ".person", ".member",
    '[class*="team-card"]', '[class*="staff-card"]', '[class*="bio"]',
    '[class*="people-card"]', '[class*="contact-card"]', ".profile",
    '[class*="personnel"]', '[class*="directory-item"]', '[class*="agent-card"]',
    '[class*="doctor-card"]', '[class*="attorney"]', '[class*="provider-card"]',
    '[class*="advisor"]',
])
NAME_SELECTORS = 'h2,h3,h4,h5,strong,.name,[class*="name"]'
TITLE_SELECTORS = '.title,[class*="title"],[class*="position"],[class*="role"],em,.subtitle'

PAGE_PATTERNS = [
    re.compile(r"\b(contact|reach|get.?in.?touch)\b", re.IGNORECASE),
    re.compile(r"\b(team|staff|people|employees|crew|directory)\b", re.IGNORECASE),
    re.compile(r"\b(about|company|who.?we.?are)\b", re.IGNORECASE),
    re.compile(r"\b(leadership|management|directors|partners|attorneys|doctors|providers)\b", re.IGNORECASE),
    re.compile(r"\b(our.?team|meet|our.?people|our.?staff)\b", re.IGNORECASE),
    re.compile(r"\b(agents?|advisors?|consultants?|specialists?)\b", re.IGNORECASE),
]


class ExtractResult(BaseModel):
    contacts: List[Contact] = Field(default_factory=list)
    names_without_email: List[NamedPerson] = Field(default_factory=list)
    facts: CompanyFacts = Field(default_factory=CompanyFacts)


def valid_email(email: str) -> bool:
    if not email or len(email) > 80 or len(email) < 6:
        return False
    lowered = email.lower()
    if any(s in lowered for s in SKIP_EMAILS):
        return False
    parts = lowered.split("@")
    if len(parts) != 2:
        return False
    domain = parts[1]
    return "." in domain and not domain.startswith(".") and not domain.endswith(".")


def first_name(full: str) -> str:
    parts = (full or "").split()
    return parts[0] if parts else ""


def last_name(full: str) -> str:
    parts = (full or "").split()
    return " ".join(parts[1:]) if len(parts) > 1 else ""


def _text(el: Optional[Tag]) -> str:
    return el.get_text(" ", strip=True) if el is not None else ""


def _first_phone(text: str) -> str:
    m = PHONE_RE.search(text or "")
    return m.group(0) if m else ""


def _person_contact(email: str, name: str, title: str, phone: str, page_url: str) -> Contact:
    return Contact(
        email=email,
        first_name=first_name(name),
        last_name=last_name(name),
        title=title,
        phone=phone,
        source_page=page_url,
    )


def extract_social(soup: BeautifulSoup, raw_html: str) -> dict:
    social = {}
    hrefs = [a.get("href", "") for a in soup.find_all("a", href=True)]
    for field, (must, must_not, fallback) in SOCIAL_RULES.items():
        for href in hrefs:
            if must.search(href) and not (must_not and must_not.search(href)):
                social[field] = href.split("?")[0]
                break
        if field not in social:
            m = fallback.search(raw_html or "")
            if m:
                social[field] = m.group(0).split("?")[0]
    return social


class _PageExtraction:
    """State for one page: the emails seen so far and what's been collected."""

    def __init__(self, soup: BeautifulSoup, page_url: str, raw_html: str):
        self.soup = soup
        self.page_url = page_url
        self.raw_html = raw_html
        self.emails: Set[str] = set()
        self.result = ExtractResult()

    def add(self, email: str, name: str = "", title: str = "", phone: str = "") -> None:
        email = email.strip().lower()
        if not valid_email(email) or email in self.emails:
            return
        self.emails.add(email)
        self.result.contacts.append(_person_contact(email, name, title, phone, self.page_url))

    def json_ld(self) -> None:
        facts = self.result.facts
        for script in self.soup.find_all("script", type="application/ld+json"):
            try:
                data = json.loads(script.string or script.get_text() or "")
            except (json.JSONDecodeError, TypeError):
                continue
            if isinstance(data, list):
                items = data
            elif isinstance(data, dict) and isinstance(data.get("@graph"), list):
                items = data["@graph"]
            else:
                items = [data]

            for item in items:
                if not isinstance(item, dict):
                    continue
                if isinstance(item.get("email"), str):
                    self.add(
                        item["email"].replace("mailto:", ""),
                        str(item.get("name") or ""),
                        str(item.get("jobTitle") or ""),
                        str(item.get("telephone") or ""),
                    )
                if item.get("telephone"):
                    facts.phone = str(item["telephone"])
                if item.get("name") and not facts.name:
                    facts.name = str(item["name"])
                address = item.get("address")
                if isinstance(address, str) and address.strip():
                    facts.address = address.strip()
                elif isinstance(address, dict):
                    joined = " ".join(
                        str(address.get(k) or "")
                        for k in ("streetAddress", "addressLocality", "addressRegion")
                    ).strip()
                    if joined:
                        facts.address = re.sub(r"\s+", " ", joined)
                rating = item.get("aggregateRating")
                if isinstance(rating, dict):
                    if rating.get("ratingValue") is not None:
                        facts.rating = str(rating["ratingValue"])
                    if rating.get("reviewCount") is not None:
                        facts.review_count = str(rating["reviewCount"])

                people = item.get("employee") or item.get("member") or item.get("employees") or item.get("members")
                if people:
                    for p in people if isinstance(people, list) else [people]:
                        if isinstance(p, dict) and isinstance(p.get("email"), str):
                            self.add(
                                p["email"].replace("mailto:", ""),
                                str(p.get("name") or ""),
                                str(p.get("jobTitle") or ""),
                                str(p.get("telephone") or ""),
                            )

    def mailto_links(self) -> None:
        for a in self.soup.select('a[href^="mailto:"]'):
            email = a["href"].replace("mailto:", "").split("?")[0].strip().lower()
            if not EMAIL_RE.fullmatch(email) or not valid_email(email) or email in self.emails:
                continue
            name = title = phone = ""
            ctx = a
            for _ in range(6):
                ctx = ctx.parent
                if ctx is None or ctx.name == "[document]":
                    break
                text = _text(ctx)
                if 20 < len(text) < 600:
                    name = _text(ctx.select_one(NAME_SELECTORS))
                    title = _text(ctx.select_one(TITLE_SELECTORS))
                    phone = _first_phone(text) or phone
                    if 2 < len(name) < 60:
                        break
            if title == name or len(title) > 80:
                title = ""
            if len(name) >= 60:
                name = ""
            self.add(email, name, title, phone)

    def data_attributes(self) -> None:
        for el in self.soup.select("[data-email],[data-mail],[data-staff-email]"):
            email = el.get("data-email") or el.get("data-mail") or el.get("data-staff-email") or ""
            self.add(email, el.get("data-name", ""), el.get("data-title", ""))

    def cards(self) -> None:
        for card in self.soup.select(CARD_SELECTORS):
            text = _text(card)
            for raw in EMAIL_RE.findall(text):
                name = _text(card.select_one(NAME_SELECTORS))
                title = _text(card.select_one(TITLE_SELECTORS))
                self.add(raw, name, title if len(title) < 80 else "", _first_phone(text))

    def page_text(self) -> str:
        body = self.soup.body or self.soup
        return re.sub(r"\s+", " ", body.get_text(" "))

    def full_page(self, text: str) -> None:
        for raw in EMAIL_RE.findall(text):
            self.add(raw)

    def obfuscated(self, text: str) -> None:
        for m in OBFUSCATED_RE.finditer(text):
            cleaned = _OBF_DOT.sub(".", _OBF_AT.sub("@", m.group(0))).lower()
            if EMAIL_RE.fullmatch(cleaned):
                self.add(cleaned)

    def footer(self) -> None:
        facts = self.result.facts
        for f in self.soup.select('footer,.footer,[class*="footer"],[id*="footer"]'):
            text = _text(f)
            if not facts.phone:
                facts.phone = _first_phone(text)
            if not facts.address:
                m = ADDRESS_RE.search(text)
                if m:
                    facts.address = m.group(0)

    def meta(self) -> None:
        facts = self.result.facts
        og = self.soup.select_one('meta[property="og:title"]')
        facts.site_title = (og.get("content", "") if og else "") or _text(self.soup.title)
        desc = self.soup.select_one('meta[name="description"]')
        if desc and desc.get("content"):
            facts.description = desc["content"]

    def tel_link(self) -> None:
        if self.result.facts.phone:
            return
        a = self.soup.select_one('a[href^="tel:"]')
        if a is not None:
            self.result.facts.phone = re.sub(r"[^\d+-]", "", a["href"].replace("tel:", ""))

    def social(self) -> None:
        for field, url in extract_social(self.soup, self.raw_html).items():
            setattr(self.result.facts, field, url)

    def names_without_email(self) -> None:
        known = {c.full_name for c in self.result.contacts}
        seen = set()
        for card in self.soup.select(CARD_SELECTORS + ",.wp-block-column,.elementor-widget-container"):
            name = _text(card.select_one(NAME_SELECTORS))
            if not (3 < len(name) < 60 and name[0].isupper() and " " in name):
                continue
            if name in known or name in seen:
                continue
            seen.add(name)
            title = _text(card.select_one(TITLE_SELECTORS))
            self.result.names_without_email.append(NamedPerson(
                first_name=first_name(name),
                last_name=last_name(name),
                title=title if len(title) < 80 else "",
                phone=_first_phone(_text(card)),
                source_page=self.page_url,
            ))


def extract(html: str, page_url: str) -> ExtractResult:
    """Run every extraction method over one page.

    Raises:
        ExtractionError: If the page can't be parsed at all
    """
    if not isinstance(html, str):
        raise ExtractionError(f"{page_url}: page body is not text")
    try:
        soup = BeautifulSoup(html, "html.parser")
    except (ValueError, TypeError, AssertionError) as e:
        raise ExtractionError(f"{page_url}: {e}") from e

    page = _PageExtraction(soup, page_url, html)
    page.social()
    page.json_ld()
    page.mailto_links()
    page.data_attributes()
    page.cards()
    text = page.page_text()
    page.full_page(text)
    page.obfuscated(text)
    page.footer()
    page.meta()
    page.tel_link()
    page.names_without_email()

    logger.debug(
        f"Extracted {page_url[:80]}: {len(page.result.contacts)} contacts, "
        f"{len(page.result.names_without_email)} names"
    )
    return page.result


def find_pages(html: str, base_url: str, max_pages: int = 15) -> List[str]:
    """Same-site paths worth crawling, '/' first, capped at max_pages."""
    soup = BeautifulSoup(html or "", "html.parser")
    pages = ["/"]
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if href.startswith("/") and not href.startswith("//"):
            path = href
        elif base_url and base_url in href:
            path = urlparse(href).path
        else:
            continue
        path = path.split("?")[0].split("#")[0]
        if 1 < len(path) < 150 and path not in pages and any(p.search(path) for p in PAGE_PATTERNS):
            pages.append(path)
    return pages[:max_pages]
