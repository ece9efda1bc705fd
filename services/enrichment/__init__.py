"""Enrichment service.

Turns a discovered business into a lead: website, contacts, social
profiles, domain age.

Components:
- Website resolver: search-engine lookup for businesses without a site (website_resolver.py)
- Extractor: contacts and company facts from one page (extractor.py)
- Email patterns: infer addresses for names without one (email_patterns.py)
- Pipeline: the per-business layers (pipeline.py)
"""

from services.enrichment.pipeline import EnrichmentPipeline, mx_confidence
from services.enrichment.website_resolver import WebsiteResolver
from services.enrichment.extractor import ExtractResult, extract, find_pages
from services.enrichment.email_patterns import detect_pattern, generate_email, infer_contacts

__all__ = [
    "EnrichmentPipeline",
    "mx_confidence",
    "WebsiteResolver",
    "ExtractResult",
    "extract",
    "find_pages",
    "detect_pattern",
    "generate_email",
    "infer_contacts",
]
